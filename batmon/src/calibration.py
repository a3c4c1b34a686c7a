"""
Endurance test (calibration) state machine with crash-safe persistence.

Guides a full discharge test from ~100% down to the end threshold (5%)
without manual supervision:

    Idle --start()--> WaitingFull --full on battery--> Running
    Running --charging or AC--> Paused --full on battery--> Running (restart)
    Running --sample gap > max gap--> WaitingFull (gap notice raised)
    Running --percentage <= end threshold--> Completed{result}
    any --stop()--> Idle

Transitions are driven only by incoming Snapshots and the explicit
``start()``/``stop()`` commands. Resuming from Paused restarts the run with a
cleared buffer: an interruption breaks the continuous-discharge assumption.

Every transition (and every accepted sample) rewrites the ``calibration``
document with the state, its payload, the last and recent results and the
in-flight sample buffer. On bind the last persisted state is restored as-is;
the next Snapshot is evaluated against it normally.

The engine expects serialized delivery: one Snapshot or command at a time.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, assert_never

from batmon.src.analytics import AnalyticsEngine
from batmon.src.documents import (
    CalibrationDocument,
    decode_calibration,
    encode_calibration,
    state_from_document,
    state_to_fields,
)
from batmon.src.models import (
    AnalysisResult,
    CalibrationResult,
    CalibrationState,
    Clock,
    Completed,
    Idle,
    Paused,
    PowerSource,
    Reading,
    Running,
    Snapshot,
    WaitingFull,
    utc_now,
)
from batmon.src.persistence import CALIBRATION_DOCUMENT, DocumentStore

if TYPE_CHECKING:
    from batmon.src.store import HistoryStore
    from batmon.src.stream import SnapshotStream

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

FULL_PERCENT: int = 99
"""A run starts once the battery is at least this full, on battery power."""

END_PERCENT: int = 5
"""A run completes once the battery drops to this percentage."""

MAX_GAP_S: float = 300.0
"""Maximum seconds between accepted samples before a run is abandoned."""

RECENT_RESULTS_LIMIT: int = 5
"""How many completed results are kept."""

_MIN_DURATION_H: float = 0.001

ReportGenerator = Callable[
    [AnalysisResult, Snapshot, list[Reading], CalibrationResult],
    str | None,
]
"""External report generator; returns a report reference (path) or None."""


class CalibrationEngine:
    """State machine driving the endurance test.

    Args:
        documents: Document store holding the ``calibration`` document.
        clock: Source of the current time.
        full_percent: Start threshold for a run.
        end_percent: Completion threshold for a run.
        max_gap_s: Maximum seconds between accepted samples while running.
        recent_limit: Capacity of the recent-results ring buffer.
        analytics: Analytics engine invoked on completion.
        report_generator: Optional external report generator.
        history_store: Optional history store for reviewing finished runs.
        on_change: Optional observer called with the new state after
            every transition.
    """

    def __init__(
        self,
        documents: DocumentStore,
        *,
        clock: Clock = utc_now,
        full_percent: int = FULL_PERCENT,
        end_percent: int = END_PERCENT,
        max_gap_s: float = MAX_GAP_S,
        recent_limit: int = RECENT_RESULTS_LIMIT,
        analytics: AnalyticsEngine | None = None,
        report_generator: ReportGenerator | None = None,
        history_store: HistoryStore | None = None,
        on_change: Callable[[CalibrationState], None] | None = None,
    ) -> None:
        self._documents = documents
        self._clock = clock
        self._full_percent = full_percent
        self._end_percent = end_percent
        self._default_max_gap_s = max_gap_s
        self._max_gap_override_s: float | None = None
        self._analytics = analytics if analytics is not None else AnalyticsEngine(clock=clock)
        self._report_generator = report_generator
        self._history_store = history_store
        self._on_change = on_change

        self._state: CalibrationState = Idle()
        self._last_result: CalibrationResult | None = None
        self._recent: deque[CalibrationResult] = deque(maxlen=recent_limit)
        self._samples: list[Reading] = []
        self._last_sample_at: datetime | None = None
        self._gap_notice = False
        self._unsubscribe: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> CalibrationState:
        """Current calibration state."""
        return self._state

    @property
    def last_result(self) -> CalibrationResult | None:
        """Most recently completed result."""
        return self._last_result

    @property
    def recent_results(self) -> list[CalibrationResult]:
        """Completed results, oldest first (bounded)."""
        return list(self._recent)

    @property
    def samples(self) -> list[Reading]:
        """Copy of the current run's sample buffer."""
        return list(self._samples)

    @property
    def gap_notice(self) -> bool:
        """True after a run was abandoned because of a sample gap."""
        return self._gap_notice

    @property
    def max_gap_s(self) -> float:
        """Effective maximum gap between accepted samples, in seconds."""
        if self._max_gap_override_s is not None:
            return self._max_gap_override_s
        return self._default_max_gap_s

    @property
    def is_active(self) -> bool:
        """True while a test is requested, running or paused."""
        return isinstance(self._state, (WaitingFull, Running, Paused))

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def bind(self, stream: SnapshotStream) -> None:
        """Restore persisted state and start handling Snapshots from *stream*."""
        self.unbind()
        self.load()
        self._unsubscribe = stream.subscribe(self.handle)

    def unbind(self) -> None:
        """Stop handling Snapshots and flush state to disk."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            self.save()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin a new test: wait for a full charge on battery power."""
        self._reset_buffer()
        self._gap_notice = False
        self._transition(WaitingFull())

    def stop(self) -> None:
        """Abort any test and return to Idle (idempotent)."""
        self._reset_buffer()
        self._gap_notice = False
        self._transition(Idle())

    def set_max_gap(self, seconds: float) -> None:
        """Override the maximum sample gap (clamped to >= 0) and persist it."""
        self._max_gap_override_s = max(0.0, seconds)
        self.save()

    def acknowledge_gap_notice(self) -> None:
        """Clear the gap auto-reset notice."""
        if self._gap_notice:
            self._gap_notice = False
            self.save()

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def handle(self, snapshot: Snapshot) -> CalibrationState:
        """Advance the state machine with one Snapshot and return the new state."""
        now = self._clock()
        match self._state:
            case Idle() | Completed():
                pass
            case WaitingFull() | Paused():
                if snapshot.on_battery and snapshot.percentage >= self._full_percent:
                    self._begin_run(snapshot, now)
            case Running(start=start, start_percent=start_percent):
                self._handle_running(snapshot, now, start, start_percent)
            case _:
                assert_never(self._state)
        return self._state

    def _handle_running(
        self,
        snapshot: Snapshot,
        now: datetime,
        start: datetime,
        start_percent: int,
    ) -> None:
        if snapshot.is_charging or snapshot.power_source == PowerSource.AC:
            self._transition(Paused())
            return

        gap_s = self._seconds_since_last_sample(now)
        if gap_s is not None and gap_s > self.max_gap_s:
            logger.warning(
                "Calibration sample gap of %.0fs exceeds %.0fs, resetting run",
                gap_s,
                self.max_gap_s,
            )
            self._reset_buffer()
            self._gap_notice = True
            self._transition(WaitingFull())
            return

        self._samples.append(Reading.from_snapshot(snapshot, ts=now))
        self._last_sample_at = now

        if snapshot.percentage <= self._end_percent:
            self._complete(snapshot, now, start, start_percent)
        else:
            self.save()

    def _begin_run(self, snapshot: Snapshot, now: datetime) -> None:
        self._reset_buffer()
        self._last_sample_at = now
        self._transition(Running(start=now, start_percent=snapshot.percentage))

    def _seconds_since_last_sample(self, now: datetime) -> float | None:
        if self._last_sample_at is None:
            return None
        return (now - self._last_sample_at).total_seconds()

    def _complete(
        self,
        snapshot: Snapshot,
        now: datetime,
        start: datetime,
        start_percent: int,
    ) -> None:
        duration_h = (now - start).total_seconds() / 3600.0
        rate = (start_percent - snapshot.percentage) / max(duration_h, _MIN_DURATION_H)
        result = CalibrationResult(
            started_at=start,
            finished_at=now,
            start_percent=start_percent,
            end_percent=snapshot.percentage,
            duration_hours=duration_h,
            avg_discharge_per_hour=rate,
            estimated_runtime_hours=100.0 / rate if rate > 0 else 0.0,
        )

        analysis = self._analytics.analyze(self._samples, snapshot)
        report_path = self._generate_report(analysis, snapshot, result)
        if report_path:
            result = result.model_copy(update={"report_path": report_path})

        self._last_result = result
        self._recent.append(result)
        logger.info(
            "Calibration completed: %d%% -> %d%% in %.2fh (%.2f%%/h)",
            result.start_percent,
            result.end_percent,
            result.duration_hours,
            result.avg_discharge_per_hour,
        )
        self._transition(Completed(result=result))

    def _generate_report(
        self,
        analysis: AnalysisResult,
        snapshot: Snapshot,
        result: CalibrationResult,
    ) -> str | None:
        if self._report_generator is None:
            return None
        try:
            return self._report_generator(analysis, snapshot, list(self._samples), result)
        except Exception:
            logger.warning("Report generation failed", exc_info=True)
            return None

    # ------------------------------------------------------------------
    # History review
    # ------------------------------------------------------------------

    def result_history(self, result: CalibrationResult) -> list[Reading]:
        """History readings recorded during *result*'s run (empty if no store)."""
        if self._history_store is None:
            return []
        return self._history_store.between(result.started_at, result.finished_at)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Restore state from the calibration document (Idle if absent/malformed)."""
        doc = decode_calibration(self._documents.load(CALIBRATION_DOCUMENT))
        self._state = state_from_document(doc)
        self._last_result = doc.last
        self._recent = deque(doc.recent, maxlen=self._recent.maxlen)
        self._samples = list(doc.samples)
        self._last_sample_at = doc.last_sample_at
        self._max_gap_override_s = doc.max_gap_s
        self._gap_notice = doc.gap_notice
        logger.info(
            "Calibration restored: state=%s samples=%d recent=%d",
            self._state.tag,
            len(self._samples),
            len(self._recent),
        )

    def save(self) -> None:
        """Write the full calibration document (best-effort)."""
        doc = CalibrationDocument(
            **state_to_fields(self._state),
            last=self._last_result,
            recent=list(self._recent),
            samples=list(self._samples),
            last_sample_at=self._last_sample_at,
            max_gap_s=self._max_gap_override_s,
            gap_notice=self._gap_notice,
        )
        self._documents.save(CALIBRATION_DOCUMENT, encode_calibration(doc))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _reset_buffer(self) -> None:
        self._samples.clear()
        self._last_sample_at = None

    def _transition(self, new_state: CalibrationState) -> None:
        previous = self._state
        self._state = new_state
        logger.info("Calibration state %s -> %s", previous.tag, new_state.tag)
        self.save()
        if self._on_change is not None:
            self._on_change(new_state)
