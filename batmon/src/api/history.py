"""
GET /v1/history endpoint for stored battery readings.

Returns the readings of a trailing window (``hours`` or ``days``), or the
whole retained history when neither is given, optionally downsampled to at
most ``max_points`` readings for charting.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from batmon.src.api.deps import MonitorDep
from batmon.src.models import Reading
from batmon.src.store import downsample

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["history"])


# ---------------------------------------------------------------------------
# Pydantic response models
# ---------------------------------------------------------------------------


class HistoryResponse(BaseModel):
    """Response model for the history endpoint.

    Attributes:
        total: Number of readings in the window before downsampling.
        readings: Readings in timestamp order.
    """

    total: int
    readings: list[Reading]


# ---------------------------------------------------------------------------
# Route
# ---------------------------------------------------------------------------


@router.get(
    "/history",
    response_model=HistoryResponse,
    response_model_by_alias=False,
)
async def get_history(
    monitor: MonitorDep,
    hours: Annotated[
        float | None,
        Query(gt=0, description="Trailing window in hours."),
    ] = None,
    days: Annotated[
        float | None,
        Query(gt=0, description="Trailing window in days."),
    ] = None,
    max_points: Annotated[
        int | None,
        Query(ge=1, description="Downsample to at most this many readings."),
    ] = None,
) -> HistoryResponse:
    """Return stored readings for a trailing window.

    Raises:
        HTTPException: 422 if both ``hours`` and ``days`` are given.
    """
    if hours is not None and days is not None:
        raise HTTPException(
            status_code=422,
            detail="Pass either 'hours' or 'days', not both.",
        )

    if hours is not None:
        readings = monitor.history.recent_by_hours(hours)
    elif days is not None:
        readings = monitor.history.recent_by_days(days)
    else:
        readings = monitor.history.items

    total = len(readings)
    if max_points is not None:
        readings = downsample(readings, max_points)

    logger.debug("History query: total=%d returned=%d", total, len(readings))
    return HistoryResponse(total=total, readings=readings)
