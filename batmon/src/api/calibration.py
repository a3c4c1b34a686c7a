"""
Calibration endpoints: status read-out and test commands.

GET /v1/calibration returns the current state with its payload, the gap
notice and the last/recent results. POST /v1/calibration/start, /stop and
/acknowledge drive the CalibrationEngine; they require the Bearer token
when one is configured.

Handlers go through BatteryMonitor.run_serialized, the same path the poll
loop publishes snapshots on, so commands and snapshots reach the engine one
at a time and their document writes stay off the event loop.

CHANGELOG:
- 2026-10-19: Initial creation
- 2026-10-19: Route engine access through the monitor's serialized worker

TODO:
- None
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from batmon.src.api.deps import MonitorDep, require_token
from batmon.src.calibration import CalibrationEngine
from batmon.src.documents import StateTag, state_to_fields
from batmon.src.models import CalibrationResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/calibration", tags=["calibration"])


# ---------------------------------------------------------------------------
# Pydantic response models
# ---------------------------------------------------------------------------


class CalibrationStatus(BaseModel):
    """Current calibration state and results.

    Attributes:
        state: Tag of the current state.
        start: Run start time (running only).
        start_percent: Percentage at run start (running only).
        result: Result payload (completed only).
        is_active: True while a test is requested, running or paused.
        gap_notice: True after a run was reset because of a sample gap.
        max_gap_s: Effective maximum gap between samples.
        sample_count: Samples buffered for the current run.
        last_result: Most recently completed result.
        recent_results: Completed results, oldest first.
    """

    state: StateTag
    start: datetime | None = None
    start_percent: int | None = None
    result: CalibrationResult | None = None
    is_active: bool
    gap_notice: bool
    max_gap_s: float
    sample_count: int
    last_result: CalibrationResult | None = None
    recent_results: list[CalibrationResult]


def _status(engine: CalibrationEngine) -> CalibrationStatus:
    return CalibrationStatus(
        **state_to_fields(engine.state),
        is_active=engine.is_active,
        gap_notice=engine.gap_notice,
        max_gap_s=engine.max_gap_s,
        sample_count=len(engine.samples),
        last_result=engine.last_result,
        recent_results=engine.recent_results,
    )


def _start(engine: CalibrationEngine) -> CalibrationStatus:
    engine.start()
    return _status(engine)


def _stop(engine: CalibrationEngine) -> CalibrationStatus:
    engine.stop()
    return _status(engine)


def _acknowledge(engine: CalibrationEngine) -> CalibrationStatus:
    engine.acknowledge_gap_notice()
    return _status(engine)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("", response_model=CalibrationStatus, response_model_by_alias=False)
async def get_calibration(monitor: MonitorDep) -> CalibrationStatus:
    """Return the current calibration status."""
    return await monitor.run_serialized(_status, monitor.calibration)


@router.post(
    "/start",
    response_model=CalibrationStatus,
    response_model_by_alias=False,
    dependencies=[Depends(require_token)],
)
async def start_calibration(monitor: MonitorDep) -> CalibrationStatus:
    """Request a new endurance test."""
    logger.info("Calibration start requested over HTTP")
    return await monitor.run_serialized(_start, monitor.calibration)


@router.post(
    "/stop",
    response_model=CalibrationStatus,
    response_model_by_alias=False,
    dependencies=[Depends(require_token)],
)
async def stop_calibration(monitor: MonitorDep) -> CalibrationStatus:
    """Abort any endurance test."""
    logger.info("Calibration stop requested over HTTP")
    return await monitor.run_serialized(_stop, monitor.calibration)


@router.post(
    "/acknowledge",
    response_model=CalibrationStatus,
    response_model_by_alias=False,
    dependencies=[Depends(require_token)],
)
async def acknowledge_gap_notice(monitor: MonitorDep) -> CalibrationStatus:
    """Clear the gap auto-reset notice."""
    return await monitor.run_serialized(_acknowledge, monitor.calibration)
