"""
Unit tests for the endurance test (calibration) state machine.

Tests verify:
- start()/stop() commands and Idle/Completed ignoring snapshots.
- WaitingFull -> Running only when full and on battery.
- Running -> Paused on charging or AC; Paused -> Running restarts the buffer.
- Running -> Completed at the end threshold with the expected result.
- Sample gaps reset the run to WaitingFull and raise the gap notice.
- set_max_gap() clamping and persistence, acknowledge_gap_notice().
- Crash safety: state, buffer and results survive a restart.
- Recent results are capped; report generator failures are tolerated.
- result_history() reads the run window from the history store.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from batmon.src.calibration import CalibrationEngine
from batmon.src.models import (
    AnalysisResult,
    CalibrationResult,
    CalibrationState,
    Completed,
    Idle,
    Paused,
    PowerSource,
    Reading,
    Running,
    Snapshot,
    WaitingFull,
)
from batmon.src.persistence import CALIBRATION_DOCUMENT, DocumentStore
from batmon.src.store import HistoryStore
from batmon.src.stream import SnapshotStream

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine(documents: DocumentStore, clock) -> CalibrationEngine:
    """An engine with default thresholds on the fake clock."""
    return CalibrationEngine(documents, clock=clock)


def _running(engine: CalibrationEngine, clock, snapshot, pct: int = 100) -> None:
    """Drive a fresh engine into Running from *pct*."""
    engine.start()
    engine.handle(snapshot(pct))
    assert isinstance(engine.state, Running)


def _complete_run(engine: CalibrationEngine, clock, snapshot) -> CalibrationResult:
    """Run a short test 100 -> 50 -> 5 with one-minute samples."""
    _running(engine, clock, snapshot)
    clock.advance(seconds=60)
    engine.handle(snapshot(50))
    clock.advance(seconds=60)
    engine.handle(snapshot(5))
    assert isinstance(engine.state, Completed)
    return engine.state.result


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    """start() and stop()."""

    def test_initial_state_is_idle(self, engine: CalibrationEngine) -> None:
        """A fresh engine is Idle and inactive."""
        assert engine.state == Idle()
        assert not engine.is_active

    def test_start_waits_for_full(self, engine: CalibrationEngine) -> None:
        """start() moves to WaitingFull."""
        engine.start()

        assert engine.state == WaitingFull()
        assert engine.is_active

    def test_stop_returns_to_idle_from_any_state(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """stop() aborts a running test and clears the buffer."""
        _running(engine, clock, snapshot)
        clock.advance(seconds=30)
        engine.handle(snapshot(99))

        engine.stop()

        assert engine.state == Idle()
        assert engine.samples == []

    def test_stop_is_idempotent(self, engine: CalibrationEngine) -> None:
        """Stopping twice stays Idle."""
        engine.stop()
        engine.stop()
        assert engine.state == Idle()

    def test_start_while_running_restarts(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """start() during a run discards it and waits for full again."""
        _running(engine, clock, snapshot)
        clock.advance(seconds=30)
        engine.handle(snapshot(98))

        engine.start()

        assert engine.state == WaitingFull()
        assert engine.samples == []

    def test_on_change_called_per_transition(self, documents: DocumentStore, clock, snapshot) -> None:
        """The observer sees every new state in order."""
        seen: list[CalibrationState] = []
        engine = CalibrationEngine(documents, clock=clock, on_change=seen.append)

        engine.start()
        engine.handle(snapshot(100))
        engine.stop()

        assert [s.tag for s in seen] == ["waitingFull", "running", "idle"]


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestIdleAndWaiting:
    """Idle and WaitingFull handling."""

    def test_idle_ignores_snapshots(self, engine: CalibrationEngine, snapshot) -> None:
        """Snapshots never leave Idle."""
        engine.handle(snapshot(100))
        assert engine.state == Idle()

    def test_waiting_full_needs_full_charge(self, engine: CalibrationEngine, snapshot) -> None:
        """98% on battery is not full enough."""
        engine.start()
        engine.handle(snapshot(98))
        assert engine.state == WaitingFull()

    def test_waiting_full_needs_battery_power(self, engine: CalibrationEngine, snapshot) -> None:
        """A full battery on AC or charging does not start the run."""
        engine.start()
        engine.handle(snapshot(100, source=PowerSource.AC))
        engine.handle(snapshot(100, charging=True))
        engine.handle(snapshot(100, source=PowerSource.UNKNOWN))

        assert engine.state == WaitingFull()

    def test_full_on_battery_starts_running(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """At 99% on battery the run starts at the clock time."""
        engine.start()
        state = engine.handle(snapshot(99))

        assert state == Running(start=clock.now, start_percent=99)
        assert engine.samples == []


class TestRunning:
    """Running handling."""

    def test_discharge_samples_are_buffered(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """Each discharging snapshot adds one reading to the buffer."""
        _running(engine, clock, snapshot)
        for pct in (99, 98, 97):
            clock.advance(seconds=60)
            engine.handle(snapshot(pct))

        assert [r.percentage for r in engine.samples] == [99, 98, 97]
        assert isinstance(engine.state, Running)

    @pytest.mark.parametrize(
        "interruption",
        [
            {"charging": True},
            {"source": PowerSource.AC},
        ],
        ids=["charging", "ac"],
    )
    def test_external_power_pauses(
        self, engine: CalibrationEngine, clock, snapshot, interruption: dict
    ) -> None:
        """Charging or AC power pauses the run."""
        _running(engine, clock, snapshot)
        clock.advance(seconds=60)
        engine.handle(snapshot(90, **interruption))

        assert engine.state == Paused()
        assert engine.is_active

    def test_resume_from_paused_restarts_buffer(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """Returning to full on battery starts a new run with an empty buffer."""
        _running(engine, clock, snapshot)
        clock.advance(seconds=60)
        engine.handle(snapshot(95))
        clock.advance(seconds=60)
        engine.handle(snapshot(95, charging=True))

        clock.advance(hours=1)
        engine.handle(snapshot(100, charging=True))
        assert engine.state == Paused()

        resumed_at = clock.advance(seconds=60)
        engine.handle(snapshot(100))

        assert engine.state == Running(start=resumed_at, start_percent=100)
        assert engine.samples == []

    def test_completes_at_end_threshold(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """Reaching 5% produces a result from the run start to now."""
        start = clock.now
        result = _complete_run(engine, clock, snapshot)

        assert result.started_at == start
        assert result.finished_at == start + timedelta(minutes=2)
        assert result.start_percent == 100
        assert result.end_percent == 5
        assert result.duration_hours == pytest.approx(2 / 60)
        assert result.avg_discharge_per_hour == pytest.approx(95 / (2 / 60))
        assert result.estimated_runtime_hours == pytest.approx(100 / (95 / (2 / 60)))
        assert result.report_path is None
        assert engine.last_result == result
        assert engine.recent_results == [result]
        assert not engine.is_active

    def test_buffer_kept_after_completion(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """The finished run's samples stay available until the next start."""
        _complete_run(engine, clock, snapshot)
        assert [r.percentage for r in engine.samples] == [50, 5]

        engine.start()
        assert engine.samples == []

    def test_completed_ignores_snapshots(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """Further snapshots do not change a completed test."""
        result = _complete_run(engine, clock, snapshot)
        clock.advance(seconds=60)
        engine.handle(snapshot(100))

        assert engine.state == Completed(result=result)

    def test_instant_completion_uses_minimum_duration(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """A zero-length run does not divide by zero."""
        _running(engine, clock, snapshot, pct=100)
        engine.handle(snapshot(5))

        assert isinstance(engine.state, Completed)
        assert engine.state.result.duration_hours == 0.0
        assert engine.state.result.avg_discharge_per_hour == pytest.approx(95 / 0.001)

    def test_custom_thresholds(self, documents: DocumentStore, clock, snapshot) -> None:
        """Configured full and end percentages are honored."""
        engine = CalibrationEngine(documents, clock=clock, full_percent=90, end_percent=20)
        engine.start()
        engine.handle(snapshot(90))
        assert isinstance(engine.state, Running)

        clock.advance(seconds=60)
        engine.handle(snapshot(20))
        assert isinstance(engine.state, Completed)


# ---------------------------------------------------------------------------
# Gaps
# ---------------------------------------------------------------------------


class TestGapReset:
    """Sample gap detection."""

    def test_gap_resets_to_waiting_full(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """A sample more than 300 s after the last one abandons the run."""
        _running(engine, clock, snapshot)
        clock.advance(seconds=60)
        engine.handle(snapshot(98))

        clock.advance(seconds=301)
        engine.handle(snapshot(90))

        assert engine.state == WaitingFull()
        assert engine.samples == []
        assert engine.gap_notice is True

    def test_gap_of_exactly_max_is_accepted(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """A 300 s gap is still within the limit."""
        _running(engine, clock, snapshot)
        clock.advance(seconds=300)
        engine.handle(snapshot(97))

        assert isinstance(engine.state, Running)
        assert len(engine.samples) == 1

    def test_gap_measured_from_run_start(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """The first sample after the start is checked against the start time."""
        _running(engine, clock, snapshot)
        clock.advance(minutes=10)
        engine.handle(snapshot(97))

        assert engine.state == WaitingFull()

    def test_run_restarts_automatically_after_gap(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """After a gap reset the next full charge on battery starts a new run."""
        _running(engine, clock, snapshot)
        clock.advance(minutes=10)
        engine.handle(snapshot(97))

        clock.advance(hours=2)
        engine.handle(snapshot(100))

        assert isinstance(engine.state, Running)
        assert engine.gap_notice is True

    def test_acknowledge_clears_notice(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """acknowledge_gap_notice() clears the notice."""
        _running(engine, clock, snapshot)
        clock.advance(minutes=10)
        engine.handle(snapshot(97))

        engine.acknowledge_gap_notice()

        assert engine.gap_notice is False

    def test_start_and_stop_clear_notice(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """Explicit commands clear the notice."""
        _running(engine, clock, snapshot)
        clock.advance(minutes=10)
        engine.handle(snapshot(97))
        engine.stop()
        assert engine.gap_notice is False

    def test_set_max_gap_is_clamped(self, engine: CalibrationEngine) -> None:
        """Negative thresholds clamp to zero."""
        engine.set_max_gap(-10)
        assert engine.max_gap_s == 0.0

    def test_set_max_gap_applies(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """A larger threshold tolerates longer gaps."""
        engine.set_max_gap(900)
        _running(engine, clock, snapshot)
        clock.advance(minutes=10)
        engine.handle(snapshot(97))

        assert isinstance(engine.state, Running)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    """Crash-safe state."""

    def test_running_state_survives_restart(self, documents: DocumentStore, clock, snapshot) -> None:
        """A new engine resumes the run with its buffer and last sample time."""
        first = CalibrationEngine(documents, clock=clock)
        _running(first, clock, snapshot)
        for pct in (99, 98):
            clock.advance(seconds=60)
            first.handle(snapshot(pct))

        second = CalibrationEngine(documents, clock=clock)
        second.load()

        assert second.state == first.state
        assert second.samples == first.samples

        clock.advance(seconds=60)
        second.handle(snapshot(97))
        assert [r.percentage for r in second.samples] == [99, 98, 97]

    def test_restart_after_long_downtime_detects_gap(
        self, documents: DocumentStore, clock, snapshot
    ) -> None:
        """The persisted last sample time makes a downtime count as a gap."""
        first = CalibrationEngine(documents, clock=clock)
        _running(first, clock, snapshot)

        clock.advance(hours=1)
        second = CalibrationEngine(documents, clock=clock)
        second.load()
        second.handle(snapshot(80))

        assert second.state == WaitingFull()
        assert second.gap_notice is True

    def test_results_and_settings_survive_restart(
        self, documents: DocumentStore, clock, snapshot
    ) -> None:
        """Completed state, results, max gap and notice are restored."""
        first = CalibrationEngine(documents, clock=clock)
        first.set_max_gap(120)
        result = _complete_run(first, clock, snapshot)

        second = CalibrationEngine(documents, clock=clock)
        second.load()

        assert second.state == Completed(result=result)
        assert second.last_result == result
        assert second.recent_results == [result]
        assert second.max_gap_s == 120.0

    def test_default_max_gap_not_persisted(self, engine: CalibrationEngine, documents: DocumentStore) -> None:
        """Only an explicit override of the gap threshold is written."""
        engine.start()
        assert "maxGapS" not in documents.load(CALIBRATION_DOCUMENT)

    def test_corrupt_document_loads_idle(self, documents: DocumentStore, clock) -> None:
        """A malformed document restores Idle."""
        documents.save(CALIBRATION_DOCUMENT, {"state": 12, "recent": "x"})
        engine = CalibrationEngine(documents, clock=clock)
        engine.load()

        assert engine.state == Idle()
        assert engine.recent_results == []

    def test_bind_loads_and_subscribes(self, documents: DocumentStore, clock, snapshot) -> None:
        """bind() restores state, then follows the stream; unbind() stops."""
        CalibrationEngine(documents, clock=clock).start()
        stream = SnapshotStream()
        engine = CalibrationEngine(documents, clock=clock)

        engine.bind(stream)
        assert engine.state == WaitingFull()

        stream.publish(snapshot(100))
        assert isinstance(engine.state, Running)

        engine.unbind()
        assert stream.subscriber_count == 0


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class TestResults:
    """Result bookkeeping and reports."""

    def test_recent_results_capped(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """Only the five most recent results are kept, oldest dropped first."""
        results = []
        for _ in range(6):
            results.append(_complete_run(engine, clock, snapshot))
            clock.advance(hours=1)

        assert engine.recent_results == results[1:]
        assert engine.last_result == results[-1]

    def test_report_generator_receives_run_data(self, documents: DocumentStore, clock, snapshot) -> None:
        """The generator gets the analysis, snapshot, samples and result."""
        calls: list[tuple] = []

        def _generator(
            analysis: AnalysisResult,
            snap: Snapshot,
            samples: list[Reading],
            result: CalibrationResult,
        ) -> str:
            calls.append((analysis, snap, samples, result))
            return "/reports/run-1.html"

        engine = CalibrationEngine(documents, clock=clock, report_generator=_generator)
        result = _complete_run(engine, clock, snapshot)

        assert result.report_path == "/reports/run-1.html"
        analysis, snap, samples, passed = calls[0]
        assert isinstance(analysis, AnalysisResult)
        assert snap.percentage == 5
        assert [r.percentage for r in samples] == [50, 5]
        assert passed.report_path is None

    def test_report_generator_failure_is_tolerated(self, documents: DocumentStore, clock, snapshot) -> None:
        """A raising generator still records the result, without a report path."""

        def _boom(*_args: object) -> str:
            raise RuntimeError("disk full")

        engine = CalibrationEngine(documents, clock=clock, report_generator=_boom)
        result = _complete_run(engine, clock, snapshot)

        assert result.report_path is None
        assert engine.last_result == result

    def test_result_history_reads_history_store(self, documents: DocumentStore, clock, snapshot) -> None:
        """History recorded during the run is returned for review."""
        store = HistoryStore(documents, clock=clock)
        engine = CalibrationEngine(documents, clock=clock, history_store=store)
        stream = SnapshotStream()
        store.bind(stream)
        engine.bind(stream)

        stream.publish(snapshot(90))
        clock.advance(seconds=60)
        engine.start()
        for pct in (100, 50, 5):
            stream.publish(snapshot(pct))
            clock.advance(seconds=60)

        result = engine.last_result
        assert result is not None
        assert [r.percentage for r in engine.result_history(result)] == [100, 50, 5]

    def test_result_history_without_store_is_empty(self, engine: CalibrationEngine, clock, snapshot) -> None:
        """Without an attached store there is nothing to review."""
        result = _complete_run(engine, clock, snapshot)
        assert engine.result_history(result) == []
