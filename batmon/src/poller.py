"""
Snapshot poller wrapping the external platform battery reader.

The platform reader is an external collaborator exposing a synchronous
``read() -> Snapshot``. The poller runs it in a worker thread so a slow
platform call never blocks the event loop, and it is designed to be robust:

- Exponential backoff on consecutive read failures (capped at MAX_BACKOFF_S).
- Never propagates reader exceptions to the caller; returns None instead.
- Logs warnings on errors.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from batmon.src.models import Snapshot

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BASE_BACKOFF_S: float = 1.0
"""Initial backoff delay in seconds after the first read failure."""

MAX_BACKOFF_S: float = 60.0
"""Maximum backoff delay in seconds (cap for exponential growth)."""


class SnapshotReader(Protocol):
    """Interface of the platform battery reader."""

    def read(self) -> Snapshot:
        """Return the current battery snapshot."""
        ...


class SnapshotPoller:
    """Stateful reader wrapper with exponential backoff.

    Maintains a failure counter so that consecutive read failures cause an
    exponentially growing sleep before the next attempt. The backoff resets
    to zero after any successful read.

    Args:
        reader: Platform reader producing Snapshots.
    """

    def __init__(self, reader: SnapshotReader) -> None:
        self._reader = reader
        self._consecutive_failures: int = 0

    @property
    def consecutive_failures(self) -> int:
        """Number of failed reads since the last success."""
        return self._consecutive_failures

    def backoff_delay(self) -> float:
        """Seconds to wait before the next attempt (0 after a success)."""
        if self._consecutive_failures == 0:
            return 0.0
        return min(
            BASE_BACKOFF_S * (2 ** (self._consecutive_failures - 1)),
            MAX_BACKOFF_S,
        )

    async def poll(self) -> Snapshot | None:
        """Read one Snapshot, backing off after previous failures.

        Returns:
            The Snapshot on success, or None on any reader error.
        """
        delay = self.backoff_delay()
        if delay > 0:
            logger.warning(
                "Backoff: sleeping %.1fs before retry (consecutive failures: %d)",
                delay,
                self._consecutive_failures,
            )
            await asyncio.sleep(delay)

        try:
            snapshot = await asyncio.to_thread(self._reader.read)
        except Exception:
            logger.warning("Battery reader failed", exc_info=True)
            snapshot = None

        if snapshot is not None:
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1
        return snapshot
