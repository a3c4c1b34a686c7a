"""
Discharge and health analytics over a window of readings.

Pure functions turn a reading window plus the current Snapshot into an
AnalysisResult:

- average discharge rate: first-to-last non-charging readings, %/h, >= 0;
- trend discharge rate: negated least-squares slope of percentage over
  elapsed hours (non-charging points, at least 4), >= 0;
- estimated runtime 100 -> 0: from the trend rate, else the average rate;
- micro-drops: consecutive non-charging pairs at most 120 s apart whose
  percentage fell by 2 or more (counted per pair, overlapping drops included);
- health score: 100 minus wear, cycle, heat and micro-drop penalties,
  clamped to 0-100;
- anomalies and a replacement recommendation tier.

Degenerate inputs (empty window, zero elapsed time, zero regression
denominator) produce zero/neutral values instead of errors.

AnalyticsEngine wraps ``analyze`` and keeps the last result for display.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from batmon.src.models import (
    AnalysisResult,
    Clock,
    Reading,
    Recommendation,
    Snapshot,
    utc_now,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

REGRESSION_MIN_POINTS: int = 4
MICRO_DROP_MAX_GAP_S: float = 120.0
MICRO_DROP_MIN_FALL: int = 2

WEAR_PENALTY_FACTOR: float = 1.2
CYCLE_PENALTY_START: int = 500
CYCLE_PENALTY_CAP: int = 30
HOT_TEMPERATURE_C: float = 40.0
HOT_PENALTY: int = 10
MICRO_DROP_PENALTY_CAP: int = 20

ANOMALY_CYCLE_COUNT: int = 800
ANOMALY_WEAR_PERCENT: float = 20.0
ANOMALY_TEMPERATURE_C: float = 45.0
ANOMALY_MICRO_DROPS: int = 3

REPLACE_HEALTH_BELOW: int = 40
REPLACE_WEAR_ABOVE: float = 40.0
MONITOR_HEALTH_BELOW: int = 60
MONITOR_WEAR_ABOVE: float = 25.0


# ---------------------------------------------------------------------------
# Rates
# ---------------------------------------------------------------------------


def _discharging(readings: Sequence[Reading]) -> list[Reading]:
    return [r for r in readings if not r.is_charging]


def _hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0


def average_discharge_rate(readings: Sequence[Reading]) -> float:
    """Average discharge in %/h between the first and last non-charging reading.

    Returns 0 with fewer than two non-charging readings or no elapsed time.
    Never negative.
    """
    points = _discharging(readings)
    if len(points) < 2:
        return 0.0
    first, last = points[0], points[-1]
    hours = _hours_between(first.timestamp, last.timestamp)
    if hours <= 0:
        return 0.0
    return max(0.0, (first.percentage - last.percentage) / hours)


def trend_discharge_rate(readings: Sequence[Reading]) -> float:
    """Discharge in %/h from an ordinary least-squares fit over non-charging points.

    The fitted slope is percent per elapsed hour; the discharge rate is its
    negation, clamped to >= 0. Needs at least four points.
    """
    points = _discharging(readings)
    if len(points) < REGRESSION_MIN_POINTS:
        return 0.0

    t0 = points[0].timestamp
    xs = [_hours_between(t0, r.timestamp) for r in points]
    ys = [float(r.percentage) for r in points]
    n = float(len(points))
    sum_x = sum(xs)
    sum_y = sum(ys)
    sum_xy = sum(x * y for x, y in zip(xs, ys, strict=True))
    sum_xx = sum(x * x for x in xs)

    denom = n * sum_xx - sum_x * sum_x
    if denom == 0:
        return 0.0
    slope = (n * sum_xy - sum_x * sum_y) / denom
    return max(0.0, -slope)


def estimated_runtime_hours(trend_rate: float, average_rate: float) -> float:
    """Hours to drain 100% at the trend rate, falling back to the average rate."""
    if trend_rate > 0:
        return 100.0 / trend_rate
    if average_rate > 0:
        return 100.0 / average_rate
    return 0.0


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


def count_micro_drops(readings: Sequence[Reading]) -> int:
    """Count consecutive non-charging pairs with a fast drop of 2+ points.

    Every qualifying pair counts, so one multi-step drop sampled densely
    registers once per step.
    """
    count = 0
    for prev, cur in zip(readings, readings[1:]):
        if prev.is_charging or cur.is_charging:
            continue
        gap_s = (cur.timestamp - prev.timestamp).total_seconds()
        if gap_s <= MICRO_DROP_MAX_GAP_S and cur.percentage - prev.percentage <= -MICRO_DROP_MIN_FALL:
            count += 1
    return count


def mean_recent_temperature(
    readings: Sequence[Reading],
    *,
    now: datetime,
    window: timedelta = timedelta(hours=1),
) -> float:
    """Mean temperature of readings within *window* before *now* (0 if none)."""
    cutoff = now - window
    temps = [r.temperature for r in readings if r.timestamp >= cutoff]
    if not temps:
        return 0.0
    return sum(temps) / len(temps)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def health_score(
    *,
    wear_percent: float,
    cycle_count: int,
    mean_temperature: float,
    micro_drops: int,
) -> int:
    """Composite 0-100 health score.

    Starts at 100 and subtracts ``round(wear * 1.2)``, up to 30 points for
    cycles beyond 500 (one per 10 cycles), 10 points for a mean last-hour
    temperature above 40 C, and up to 20 points for micro-drops (two each).
    """
    score = 100 - math.floor(max(0.0, wear_percent) * WEAR_PENALTY_FACTOR + 0.5)
    if cycle_count > CYCLE_PENALTY_START:
        score -= min(CYCLE_PENALTY_CAP, (cycle_count - CYCLE_PENALTY_START) // 10)
    if mean_temperature > HOT_TEMPERATURE_C:
        score -= HOT_PENALTY
    if micro_drops >= 1:
        score -= min(MICRO_DROP_PENALTY_CAP, micro_drops * 2)
    return max(0, min(100, score))


def detect_anomalies(
    *,
    cycle_count: int,
    wear_percent: float,
    mean_temperature: float,
    micro_drops: int,
) -> list[str]:
    """Describe every anomaly that fires; any subset may be returned."""
    anomalies: list[str] = []
    if cycle_count > ANOMALY_CYCLE_COUNT:
        anomalies.append(f"High cycle count ({cycle_count}).")
    if wear_percent > ANOMALY_WEAR_PERCENT:
        anomalies.append(f"Severe battery wear ({wear_percent:.0f}%).")
    if mean_temperature > ANOMALY_TEMPERATURE_C:
        anomalies.append(
            f"Elevated temperature over the last hour ({mean_temperature:.1f}°C)."
        )
    if micro_drops >= ANOMALY_MICRO_DROPS:
        anomalies.append(f"Frequent micro-drops in charge ({micro_drops}).")
    return anomalies


def recommend(
    *,
    score: int,
    wear_percent: float,
    micro_drops: int,
) -> Recommendation:
    """Pick the recommendation tier; replace-soon is checked first."""
    if (
        score < REPLACE_HEALTH_BELOW
        or wear_percent > REPLACE_WEAR_ABOVE
        or micro_drops >= ANOMALY_MICRO_DROPS
    ):
        return Recommendation.REPLACE_SOON
    if score < MONITOR_HEALTH_BELOW or wear_percent > MONITOR_WEAR_ABOVE:
        return Recommendation.MONITOR
    return Recommendation.HEALTHY


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def analyze(
    readings: Sequence[Reading],
    snapshot: Snapshot,
    *,
    now: datetime,
) -> AnalysisResult:
    """Compute a fresh AnalysisResult for a reading window and current snapshot.

    Args:
        readings: Reading window in stored (timestamp) order.
        snapshot: Current snapshot supplying wear and cycle count.
        now: Reference time for the last-hour temperature window.

    Returns:
        A new AnalysisResult. Never raises for empty or degenerate windows.
    """
    avg_rate = average_discharge_rate(readings)
    trend_rate = trend_discharge_rate(readings)
    wear = snapshot.wear_percent
    temperature = mean_recent_temperature(readings, now=now)
    micro = count_micro_drops(readings)

    score = health_score(
        wear_percent=wear,
        cycle_count=snapshot.cycle_count,
        mean_temperature=temperature,
        micro_drops=micro,
    )
    return AnalysisResult(
        avg_discharge_per_hour=avg_rate,
        trend_discharge_per_hour=trend_rate,
        estimated_runtime_hours=estimated_runtime_hours(trend_rate, avg_rate),
        anomalies=detect_anomalies(
            cycle_count=snapshot.cycle_count,
            wear_percent=wear,
            mean_temperature=temperature,
            micro_drops=micro,
        ),
        health_score=score,
        recommendation=recommend(score=score, wear_percent=wear, micro_drops=micro),
        micro_drop_events=micro,
    )


# ---------------------------------------------------------------------------
# Windowed rates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateWindow:
    """Sufficiency requirements for a windowed discharge rate.

    Attributes:
        name: Display key of the window.
        span: How far back the window reaches.
        min_points: Minimum non-charging readings.
        min_span: Minimum time between first and last of those readings.
        min_drop: Minimum percentage drop between them.
    """

    name: str
    span: timedelta
    min_points: int
    min_span: timedelta
    min_drop: int


RATE_WINDOWS: tuple[RateWindow, ...] = (
    RateWindow("1h", timedelta(hours=1), 2, timedelta(minutes=30), 1),
    RateWindow("24h", timedelta(hours=24), 4, timedelta(hours=3), 2),
    RateWindow("7d", timedelta(days=7), 6, timedelta(hours=24), 5),
)


@dataclass(frozen=True)
class WindowedRate:
    """Average discharge rate over a trailing window."""

    rate: float
    enough_data: bool


def has_enough_data(
    readings: Sequence[Reading],
    window: RateWindow,
    *,
    now: datetime,
) -> bool:
    """True when the window holds enough discharge data to trust its rate."""
    cutoff = now - window.span
    points = [r for r in _discharging(readings) if r.timestamp >= cutoff]
    if len(points) < window.min_points:
        return False
    first, last = points[0], points[-1]
    span = last.timestamp - first.timestamp
    return span >= window.min_span and first.percentage - last.percentage >= window.min_drop


def windowed_rates(
    readings: Sequence[Reading],
    *,
    now: datetime,
) -> dict[str, WindowedRate]:
    """Average discharge rate and sufficiency verdict for each trailing window."""
    rates: dict[str, WindowedRate] = {}
    for window in RATE_WINDOWS:
        cutoff = now - window.span
        recent = [r for r in readings if r.timestamp >= cutoff]
        rates[window.name] = WindowedRate(
            rate=average_discharge_rate(recent),
            enough_data=has_enough_data(readings, window, now=now),
        )
    return rates


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class AnalyticsEngine:
    """Stateless analysis front-end that remembers the last result.

    Args:
        clock: Source of the current time.
        on_result: Optional observer invoked with each new result.
    """

    def __init__(
        self,
        *,
        clock: Clock = utc_now,
        on_result: Callable[[AnalysisResult], None] | None = None,
    ) -> None:
        self._clock = clock
        self._on_result = on_result
        self.last_result: AnalysisResult | None = None

    def analyze(self, readings: Sequence[Reading], snapshot: Snapshot) -> AnalysisResult:
        """Analyze *readings* against *snapshot* and cache the result."""
        result = analyze(readings, snapshot, now=self._clock())
        self.last_result = result
        logger.debug(
            "Analysis: health=%d avg=%.2f%%/h trend=%.2f%%/h micro=%d",
            result.health_score,
            result.avg_discharge_per_hour,
            result.trend_discharge_per_hour,
            result.micro_drop_events,
        )
        if self._on_result is not None:
            self._on_result(result)
        return result

    def windowed_rates(self, readings: Sequence[Reading]) -> dict[str, WindowedRate]:
        """See :func:`windowed_rates`."""
        return windowed_rates(readings, now=self._clock())
