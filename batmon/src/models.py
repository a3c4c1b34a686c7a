"""
Pydantic models for battery telemetry, analytics output and calibration state.

Defines the ephemeral Snapshot produced by the external reader, the persisted
Reading derived from it, the AnalysisResult value object, and the tagged
CalibrationState variants with their CalibrationResult payload.

Persisted models serialize with camelCase aliases (``isCharging``,
``maxCapacity``, ...) so the on-disk documents keep their established field
names, while Python code uses snake_case attribute names.

CHANGELOG:
- 2026-10-19: Initial creation
- 2026-10-19: Normalize non-positive capacities on every Reading; export assume_utc

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PowerSource(StrEnum):
    """Where the device currently draws power from."""

    AC = "ac"
    BATTERY = "battery"
    UNKNOWN = "unknown"


class Recommendation(StrEnum):
    """Replacement recommendation tier derived from the health analysis."""

    REPLACE_SOON = "replace_soon"
    MONITOR = "monitor"
    HEALTHY = "healthy"

    @property
    def message(self) -> str:
        """Human-readable recommendation text."""
        return _RECOMMENDATION_MESSAGES[self]


_RECOMMENDATION_MESSAGES: dict[Recommendation, str] = {
    Recommendation.REPLACE_SOON: "Replacement recommended soon.",
    Recommendation.MONITOR: (
        "Monitor: possible degradation, reduce thermal load."
    ),
    Recommendation.HEALTHY: "Healthy, no replacement needed.",
}


# ---------------------------------------------------------------------------
# Base configuration
# ---------------------------------------------------------------------------


class _Document(BaseModel):
    """Base for immutable models persisted with camelCase field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


def assume_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes so all timestamps stay comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _known_capacity(value: int | None) -> int | None:
    """Map non-positive capacities to None (unknown)."""
    if value is None or value <= 0:
        return None
    return value


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class Snapshot(BaseModel):
    """Instantaneous battery reading from the external platform reader.

    Attributes:
        percentage: State of charge, 0-100.
        is_charging: True while the battery is being charged.
        power_source: Current power source.
        time_to_empty_min: Reader's time-to-empty estimate in minutes.
        time_to_full_min: Reader's time-to-full estimate in minutes.
        design_capacity: Design capacity in mAh, None when unknown.
        max_capacity: Current full-charge capacity in mAh, None when unknown.
        cycle_count: Charge cycle count.
        voltage: Battery voltage in volts.
        temperature: Battery temperature in degrees Celsius.
    """

    percentage: int = Field(ge=0, le=100)
    is_charging: bool = False
    power_source: PowerSource = PowerSource.UNKNOWN
    time_to_empty_min: int | None = None
    time_to_full_min: int | None = None
    design_capacity: int | None = None
    max_capacity: int | None = None
    cycle_count: int = 0
    voltage: float = 0.0
    temperature: float = 0.0

    @property
    def wear_percent(self) -> float:
        """Capacity loss relative to design capacity, in percent (>= 0)."""
        design = self.design_capacity or 0
        current = self.max_capacity or 0
        if design <= 0 or current <= 0:
            return 0.0
        return max(0.0, (1.0 - current / design) * 100.0)

    @property
    def on_battery(self) -> bool:
        """True when discharging from the battery (not charging, not on AC)."""
        return not self.is_charging and self.power_source == PowerSource.BATTERY


class Reading(_Document):
    """A persisted, timestamped telemetry sample.

    Capacity fields are None when unknown (including aggregated readings);
    a zero capacity is never stored.
    """

    timestamp: datetime
    percentage: int
    is_charging: bool
    voltage: float
    temperature: float
    max_capacity: int | None = None
    design_capacity: int | None = None

    normalize_timestamp = field_validator("timestamp")(assume_utc)
    normalize_capacities = field_validator("max_capacity", "design_capacity")(
        _known_capacity
    )

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot, *, ts: datetime) -> Reading:
        """Build a Reading from a Snapshot taken at *ts*."""
        return cls(
            timestamp=ts,
            percentage=snapshot.percentage,
            is_charging=snapshot.is_charging,
            voltage=snapshot.voltage,
            temperature=snapshot.temperature,
            max_capacity=snapshot.max_capacity,
            design_capacity=snapshot.design_capacity,
        )


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class AnalysisResult(BaseModel):
    """Discharge and health analysis over a reading window.

    Attributes:
        avg_discharge_per_hour: First-to-last average discharge rate (%/h).
        trend_discharge_per_hour: Least-squares discharge rate (%/h).
        estimated_runtime_hours: Estimated runtime from 100% to 0% (hours).
        anomalies: Human-readable anomaly descriptions.
        health_score: Composite health score, 0-100.
        recommendation: Replacement recommendation tier.
        micro_drop_events: Number of fast percentage drops in the window.
    """

    model_config = ConfigDict(frozen=True)

    avg_discharge_per_hour: float = 0.0
    trend_discharge_per_hour: float = 0.0
    estimated_runtime_hours: float = 0.0
    anomalies: list[str] = Field(default_factory=list)
    health_score: int = Field(default=100, ge=0, le=100)
    recommendation: Recommendation = Recommendation.HEALTHY
    micro_drop_events: int = 0


# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------


class CalibrationResult(_Document):
    """Outcome of one completed endurance test."""

    started_at: datetime
    finished_at: datetime
    start_percent: int
    end_percent: int
    duration_hours: float
    avg_discharge_per_hour: float
    estimated_runtime_hours: float
    report_path: str | None = None

    normalize_started_at = field_validator("started_at")(assume_utc)
    normalize_finished_at = field_validator("finished_at")(assume_utc)


class Idle(BaseModel):
    """No test in progress."""

    model_config = ConfigDict(frozen=True)

    tag: Literal["idle"] = "idle"


class WaitingFull(BaseModel):
    """Test requested; waiting for a full charge on battery power."""

    model_config = ConfigDict(frozen=True)

    tag: Literal["waitingFull"] = "waitingFull"


class Running(BaseModel):
    """Continuous discharge run in progress."""

    model_config = ConfigDict(frozen=True)

    tag: Literal["running"] = "running"
    start: datetime
    start_percent: int

    normalize_start = field_validator("start")(assume_utc)


class Paused(BaseModel):
    """External power was connected during a run."""

    model_config = ConfigDict(frozen=True)

    tag: Literal["paused"] = "paused"


class Completed(BaseModel):
    """Run reached the end threshold and produced a result."""

    model_config = ConfigDict(frozen=True)

    tag: Literal["completed"] = "completed"
    result: CalibrationResult


CalibrationState = Idle | WaitingFull | Running | Paused | Completed
"""Exactly one calibration state is active at a time."""


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

Clock = Callable[[], datetime]
"""Zero-argument callable returning the current aware datetime."""


def utc_now() -> datetime:
    """Default clock: current time in UTC."""
    return datetime.now(tz=UTC)
