"""
In-process snapshot stream connecting the poll loop to its consumers.

The poll loop publishes every Snapshot it reads; the history store and the
calibration engine subscribe at bind time and unsubscribe at teardown.
Delivery is synchronous and in subscription order. A subscriber that raises
is logged and skipped so one faulty consumer never starves the others.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from batmon.src.models import Snapshot

logger = logging.getLogger(__name__)

SnapshotHandler = Callable[[Snapshot], object]


class SnapshotStream:
    """Synchronous publish/subscribe hub for Snapshots."""

    def __init__(self) -> None:
        self._subscribers: list[SnapshotHandler] = []

    def subscribe(self, handler: SnapshotHandler) -> Callable[[], None]:
        """Register *handler* and return a callable that unregisters it."""
        self._subscribers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return _unsubscribe

    def publish(self, snapshot: Snapshot) -> None:
        """Deliver *snapshot* to every current subscriber."""
        for handler in list(self._subscribers):
            try:
                handler(snapshot)
            except Exception:
                logger.warning("Snapshot subscriber %r failed", handler, exc_info=True)

    @property
    def subscriber_count(self) -> int:
        """Number of registered subscribers."""
        return len(self._subscribers)
