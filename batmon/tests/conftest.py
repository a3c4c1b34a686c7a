"""
Shared test fixtures for battery monitor tests.

Provides a controllable clock, a Snapshot factory, a DocumentStore rooted in
tmp_path, and environment isolation for BatmonSettings tests. All BATMON_
env vars are cleaned before each test.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from batmon.src.models import PowerSource, Snapshot
from batmon.src.persistence import DocumentStore

# All BatmonSettings environment variable names, used for cleanup.
_ALL_BATMON_ENV_VARS = (
    "BATMON_DATA_DIR",
    "BATMON_HEALTH_PATH",
    "BATMON_POLL_INTERVAL_S",
    "BATMON_HISTORY_FULL_RESOLUTION_DAYS",
    "BATMON_HISTORY_RETENTION_DAYS",
    "BATMON_HISTORY_BUCKET_S",
    "BATMON_CALIBRATION_FULL_PERCENT",
    "BATMON_CALIBRATION_END_PERCENT",
    "BATMON_CALIBRATION_MAX_GAP_S",
    "BATMON_CALIBRATION_RECENT_LIMIT",
    "BATMON_API_TOKEN",
)

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
"""Reference start time for the fake clock."""


class FakeClock:
    """Manually advanced clock, callable like ``utc_now``."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        """Move forward by ``timedelta(**kwargs)`` and return the new time."""
        self.now += timedelta(**kwargs)
        return self.now


def make_snapshot(
    percentage: int = 80,
    *,
    charging: bool = False,
    source: PowerSource = PowerSource.BATTERY,
    design_capacity: int | None = 5000,
    max_capacity: int | None = 4750,
    cycle_count: int = 120,
    voltage: float = 12.1,
    temperature: float = 30.0,
) -> Snapshot:
    """Build a Snapshot with plausible defaults (discharging on battery)."""
    return Snapshot(
        percentage=percentage,
        is_charging=charging,
        power_source=source,
        design_capacity=design_capacity,
        max_capacity=max_capacity,
        cycle_count=cycle_count,
        voltage=voltage,
        temperature=temperature,
    )


@pytest.fixture(autouse=True)
def _clean_batmon_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all BATMON_ env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_BATMON_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def clock() -> FakeClock:
    """A fake clock starting at T0."""
    return FakeClock()


@pytest.fixture()
def documents(tmp_path: Path) -> DocumentStore:
    """A DocumentStore writing into a fresh data directory."""
    return DocumentStore(tmp_path / "data")


@pytest.fixture()
def snapshot() -> Callable[..., Snapshot]:
    """The make_snapshot factory, e.g. ``snapshot(99)``."""
    return make_snapshot
