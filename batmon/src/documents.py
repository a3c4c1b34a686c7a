"""
Versioned schemas for the persisted history and calibration documents.

Both documents are JSON objects carrying a ``version`` field plus explicitly
optional fields. Missing optional fields decode to ``None`` (unknown), never
to zero. Decoding never raises: a malformed document is logged and replaced
by the default (empty history, Idle calibration).

History document::

    {"version": 1, "readings": [{"timestamp": ..., "percentage": ...,
      "isCharging": ..., "voltage": ..., "temperature": ...,
      "maxCapacity"?: ..., "designCapacity"?: ...}, ...]}

A bare JSON array of readings (the unversioned layout) is still accepted.

Calibration document::

    {"version": 1, "state": "idle"|"waitingFull"|"running"|"paused"|"completed",
     "start"?: ..., "startPercent"?: ..., "result"?: {...}, "last"?: {...},
     "recent"?: [{...}, ...], "samples"?: [...], "lastSampleAt"?: ...,
     "maxGapS"?: ..., "gapNotice"?: bool}

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal, assert_never

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from batmon.src.models import (
    CalibrationResult,
    CalibrationState,
    Completed,
    Idle,
    Paused,
    Reading,
    Running,
    WaitingFull,
)

logger = logging.getLogger(__name__)

HISTORY_SCHEMA_VERSION: int = 1
"""Current layout version of the history document."""

CALIBRATION_SCHEMA_VERSION: int = 1
"""Current layout version of the calibration document."""

StateTag = Literal["idle", "waitingFull", "running", "paused", "completed"]


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HistoryDocument(_Schema):
    """Persisted reading history."""

    version: int = HISTORY_SCHEMA_VERSION
    readings: list[Reading] = Field(default_factory=list)


class CalibrationDocument(_Schema):
    """Persisted calibration state, results and in-flight sample buffer."""

    version: int = CALIBRATION_SCHEMA_VERSION
    state: StateTag = "idle"
    start: datetime | None = None
    start_percent: int | None = None
    result: CalibrationResult | None = None
    last: CalibrationResult | None = None
    recent: list[CalibrationResult] = Field(default_factory=list)
    samples: list[Reading] = Field(default_factory=list)
    last_sample_at: datetime | None = None
    max_gap_s: float | None = None
    gap_notice: bool = False


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def encode_history(readings: list[Reading]) -> dict[str, Any]:
    """Serialize readings into a JSON-compatible history document."""
    doc = HistoryDocument(readings=readings)
    return doc.model_dump(mode="json", by_alias=True, exclude_none=True)


def decode_history(raw: Any) -> list[Reading]:
    """Decode a history document, falling back to an empty history.

    Args:
        raw: Parsed JSON (dict for versioned documents, list for the
            unversioned array layout), or None when no document exists.

    Returns:
        Readings in stored order. Empty on missing or malformed input.
    """
    if raw is None:
        return []
    if isinstance(raw, list):
        raw = {"version": 0, "readings": raw}
    try:
        doc = HistoryDocument.model_validate(raw)
    except ValidationError:
        logger.warning("Malformed history document, starting empty", exc_info=True)
        return []
    if doc.version > HISTORY_SCHEMA_VERSION:
        logger.warning(
            "History document version %d is newer than supported %d",
            doc.version,
            HISTORY_SCHEMA_VERSION,
        )
    return doc.readings


# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------


def encode_calibration(doc: CalibrationDocument) -> dict[str, Any]:
    """Serialize a calibration document, omitting absent optional fields."""
    return doc.model_dump(mode="json", by_alias=True, exclude_none=True)


def decode_calibration(raw: Any) -> CalibrationDocument:
    """Decode a calibration document, falling back to the Idle default."""
    if raw is None:
        return CalibrationDocument()
    try:
        return CalibrationDocument.model_validate(raw)
    except ValidationError:
        logger.warning(
            "Malformed calibration document, resetting to idle", exc_info=True
        )
        return CalibrationDocument()


def state_to_fields(state: CalibrationState) -> dict[str, Any]:
    """Flatten a calibration state into document fields."""
    match state:
        case Idle():
            return {"state": "idle"}
        case WaitingFull():
            return {"state": "waitingFull"}
        case Running(start=start, start_percent=start_percent):
            return {"state": "running", "start": start, "start_percent": start_percent}
        case Paused():
            return {"state": "paused"}
        case Completed(result=result):
            return {"state": "completed", "result": result}
        case _:
            assert_never(state)


def state_from_document(doc: CalibrationDocument) -> CalibrationState:
    """Rebuild the calibration state stored in *doc*.

    A ``running`` or ``completed`` tag whose payload is missing cannot be
    restored faithfully and decodes to Idle.
    """
    match doc.state:
        case "idle":
            return Idle()
        case "waitingFull":
            return WaitingFull()
        case "running":
            if doc.start is None or doc.start_percent is None:
                logger.warning("Running state without start payload, using idle")
                return Idle()
            return Running(start=doc.start, start_percent=doc.start_percent)
        case "paused":
            return Paused()
        case "completed":
            if doc.result is None:
                logger.warning("Completed state without result, using idle")
                return Idle()
            return Completed(result=doc.result)
        case _:
            assert_never(doc.state)
