"""
Battery monitor composition root.

Wires the document store, history store, analytics engine and calibration
engine to a single SnapshotStream. Every published Snapshot is delivered,
in this order, to:

1. the latest-snapshot tracker (so analysis always has a current snapshot),
2. the HistoryStore (append + compaction + persistence),
3. the CalibrationEngine (state machine step).

Coroutines deliver snapshots and calibration commands through
``run_serialized``, which runs them in a worker thread one at a time so the
document writes never block the event loop.

CHANGELOG:
- 2026-10-19: Initial creation
- 2026-10-19: Serialized off-loop delivery for the poll loop and HTTP commands

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from batmon.src.analytics import AnalyticsEngine, WindowedRate
from batmon.src.calibration import CalibrationEngine, ReportGenerator
from batmon.src.models import AnalysisResult, Clock, Snapshot, utc_now
from batmon.src.persistence import DocumentStore
from batmon.src.store import HistoryStore
from batmon.src.stream import SnapshotStream

if TYPE_CHECKING:
    from batmon.src.config import BatmonSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BatteryMonitor:
    """Owns the monitoring components and their shared snapshot stream.

    Args:
        data_dir: Directory for the persisted documents.
        clock: Source of the current time, shared by every component.
        full_resolution_days: Passed to the HistoryStore.
        retention_days: Passed to the HistoryStore.
        bucket_s: Passed to the HistoryStore.
        full_percent: Passed to the CalibrationEngine.
        end_percent: Passed to the CalibrationEngine.
        max_gap_s: Passed to the CalibrationEngine.
        recent_limit: Passed to the CalibrationEngine.
        report_generator: Optional external report generator.
    """

    def __init__(
        self,
        data_dir: str | Path,
        *,
        clock: Clock = utc_now,
        full_resolution_days: int = 7,
        retention_days: int = 30,
        bucket_s: int = 300,
        full_percent: int = 99,
        end_percent: int = 5,
        max_gap_s: float = 300.0,
        recent_limit: int = 5,
        report_generator: ReportGenerator | None = None,
    ) -> None:
        self.documents = DocumentStore(data_dir)
        self.stream = SnapshotStream()
        self.history = HistoryStore(
            self.documents,
            clock=clock,
            full_resolution_days=full_resolution_days,
            retention_days=retention_days,
            bucket_s=bucket_s,
        )
        self.analytics = AnalyticsEngine(clock=clock)
        self.calibration = CalibrationEngine(
            self.documents,
            clock=clock,
            full_percent=full_percent,
            end_percent=end_percent,
            max_gap_s=max_gap_s,
            recent_limit=recent_limit,
            analytics=self.analytics,
            report_generator=report_generator,
            history_store=self.history,
        )
        self.latest_snapshot: Snapshot | None = None
        self._unsubscribe_latest: Callable[[], None] | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: BatmonSettings,
        *,
        clock: Clock = utc_now,
        report_generator: ReportGenerator | None = None,
    ) -> BatteryMonitor:
        """Build a monitor from validated settings."""
        return cls(
            settings.data_dir,
            clock=clock,
            full_resolution_days=settings.history_full_resolution_days,
            retention_days=settings.history_retention_days,
            bucket_s=settings.history_bucket_s,
            full_percent=settings.calibration_full_percent,
            end_percent=settings.calibration_end_percent,
            max_gap_s=float(settings.calibration_max_gap_s),
            recent_limit=settings.calibration_recent_limit,
            report_generator=report_generator,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Load persisted state and subscribe every component to the stream."""
        self.history.start()
        self._unsubscribe_latest = self.stream.subscribe(self._remember)
        self.history.bind(self.stream)
        self.calibration.bind(self.stream)
        logger.info(
            "Monitor started: history=%d calibration=%s",
            len(self.history),
            self.calibration.state.tag,
        )

    def stop(self) -> None:
        """Unsubscribe every component and flush state to disk."""
        self.calibration.unbind()
        self.history.unbind()
        if self._unsubscribe_latest is not None:
            self._unsubscribe_latest()
            self._unsubscribe_latest = None
        logger.info("Monitor stopped")

    def publish(self, snapshot: Snapshot) -> None:
        """Deliver one Snapshot to every subscribed component."""
        self.stream.publish(snapshot)

    async def run_serialized(self, func: Callable[..., T], *args: Any) -> T:
        """Run *func* in a worker thread, one call at a time.

        Snapshot delivery and calibration commands go through here so the
        document writes they trigger stay off the event loop and never
        overlap.
        """
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    async def publish_async(self, snapshot: Snapshot) -> None:
        """Deliver one Snapshot from a coroutine without blocking the loop."""
        await self.run_serialized(self.publish, snapshot)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def analyze_recent(self, hours: float = 24.0) -> AnalysisResult | None:
        """Analyze the last *hours* of history against the latest snapshot.

        Returns:
            The AnalysisResult, or None before any snapshot has been seen.
        """
        if self.latest_snapshot is None:
            return None
        return self.analytics.analyze(
            self.history.recent_by_hours(hours),
            self.latest_snapshot,
        )

    def windowed_rates(self) -> dict[str, WindowedRate]:
        """1h/24h/7d discharge rates over the full history."""
        return self.analytics.windowed_rates(self.history.items)

    def _remember(self, snapshot: Snapshot) -> None:
        self.latest_snapshot = snapshot
