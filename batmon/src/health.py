"""
Health file writer for the battery monitor daemon.

Writes a JSON health file at a configurable path with three fields:
- last_poll_ts: ISO timestamp of the most recent poll.
- history_count: Number of readings currently held by the history store.
- calibration_state: Tag of the current calibration state.

The file is rewritten on every update, providing a simple liveness signal
that a supervisor or monitoring probe can inspect.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
from pathlib import Path

from batmon.src.models import Clock, utc_now


class HealthWriter:
    """Writes daemon health status to a JSON file.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
        clock: Source of the current time.
    """

    def __init__(self, path: str | Path, *, clock: Clock = utc_now) -> None:
        self.path = Path(path)
        self._clock = clock
        self._last_poll_ts: str | None = None
        self._history_count: int = 0
        self._calibration_state: str = "idle"

    def record_poll(self, *, history_count: int, calibration_state: str) -> None:
        """Record a poll with the current store and calibration status."""
        self._last_poll_ts = self._clock().isoformat()
        self._history_count = history_count
        self._calibration_state = calibration_state
        self._write()

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        data = {
            "last_poll_ts": self._last_poll_ts,
            "history_count": self._history_count,
            "calibration_state": self._calibration_state,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data))
