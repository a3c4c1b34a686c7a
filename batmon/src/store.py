"""
Time-ordered reading history with retention compaction and windowed queries.

The HistoryStore owns the sequence of Readings. Every append converts a
Snapshot into a Reading stamped with the current time, applies the retention
policy, and rewrites the ``history`` document:

- readings younger than 7 days are kept at full resolution;
- readings between 7 and 30 days old are compacted into contiguous
  5-minute buckets (integer-mean percentage, float-mean voltage and
  temperature, charging if any reading charged, capacities dropped,
  timestamp of the bucket's first reading);
- readings older than 30 days are discarded.

Compaction is idempotent: compacted readings are at least one bucket apart,
so compacting them again yields the same sequence.

``downsample`` is a lossy, order-preserving display compression and is never
applied to the stored history.

CHANGELOG:
- 2026-10-19: Initial creation
- 2026-10-19: Naive between() bounds read as UTC; oversized windows return all readings

TODO:
- None
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from batmon.src.documents import decode_history, encode_history
from batmon.src.models import Clock, Reading, Snapshot, assume_utc, utc_now
from batmon.src.persistence import HISTORY_DOCUMENT, DocumentStore

if TYPE_CHECKING:
    from batmon.src.stream import SnapshotStream

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Retention defaults
# ---------------------------------------------------------------------------

FULL_RESOLUTION_DAYS: int = 7
"""Readings younger than this are kept at full resolution."""

RETENTION_DAYS: int = 30
"""Readings older than this are discarded."""

COMPACTION_BUCKET_S: int = 300
"""Bucket width in seconds for compacting aged readings."""


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def _aggregate(block: Sequence[Reading]) -> Reading:
    """Collapse a non-empty block into one synthetic Reading."""
    count = len(block)
    return Reading(
        timestamp=block[0].timestamp,
        percentage=sum(r.percentage for r in block) // count,
        is_charging=any(r.is_charging for r in block),
        voltage=sum(r.voltage for r in block) / count,
        temperature=sum(r.temperature for r in block) / count,
    )


def downsample(readings: Sequence[Reading], max_points: int) -> list[Reading]:
    """Reduce *readings* to at most *max_points* by averaging contiguous buckets.

    Inputs already within the limit (or a non-positive limit) are returned
    unchanged. Otherwise the sequence is split into buckets of
    ``ceil(n / max_points)`` consecutive readings, each emitted as one
    aggregated Reading, so the output never exceeds *max_points*.

    Args:
        readings: Readings in stored order.
        max_points: Maximum number of points to return.

    Returns:
        The input readings, or their bucketed aggregation.
    """
    total = len(readings)
    if max_points <= 0 or total <= max_points:
        return list(readings)

    bucket_size = max(1, math.ceil(total / max_points))
    return [
        _aggregate(readings[i : i + bucket_size])
        for i in range(0, total, bucket_size)
    ]


def compact(
    readings: Sequence[Reading],
    *,
    now: datetime,
    full_resolution: timedelta = timedelta(days=FULL_RESOLUTION_DAYS),
    retention: timedelta = timedelta(days=RETENTION_DAYS),
    bucket: timedelta = timedelta(seconds=COMPACTION_BUCKET_S),
) -> list[Reading]:
    """Apply the retention policy to *readings* as of *now*.

    Args:
        readings: Readings to compact (any order).
        now: Reference time for age computations.
        full_resolution: Age below which readings are kept untouched.
        retention: Age beyond which readings are dropped.
        bucket: Width of the aggregation buckets for aged readings.

    Returns:
        Fresh readings plus bucketed aged readings, sorted by timestamp.
    """
    fresh_cutoff = now - full_resolution
    drop_cutoff = now - retention

    fresh: list[Reading] = []
    aged: list[Reading] = []
    for reading in readings:
        if reading.timestamp >= fresh_cutoff:
            fresh.append(reading)
        elif reading.timestamp >= drop_cutoff:
            aged.append(reading)

    aged.sort(key=lambda r: r.timestamp)
    bucketed: list[Reading] = []
    idx = 0
    while idx < len(aged):
        end = aged[idx].timestamp + bucket
        block: list[Reading] = []
        while idx < len(aged) and aged[idx].timestamp < end:
            block.append(aged[idx])
            idx += 1
        bucketed.append(_aggregate(block))

    return sorted(fresh + bucketed, key=lambda r: r.timestamp)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class HistoryStore:
    """Durable, time-ordered history of Readings.

    Args:
        documents: Document store holding the ``history`` document.
        clock: Source of the current time (injectable for tests).
        full_resolution_days: Days of readings kept at full resolution.
        retention_days: Days after which readings are discarded.
        bucket_s: Compaction bucket width in seconds.
        on_change: Optional observer called with each appended Reading.
    """

    def __init__(
        self,
        documents: DocumentStore,
        *,
        clock: Clock = utc_now,
        full_resolution_days: int = FULL_RESOLUTION_DAYS,
        retention_days: int = RETENTION_DAYS,
        bucket_s: int = COMPACTION_BUCKET_S,
        on_change: Callable[[Reading], None] | None = None,
    ) -> None:
        self._documents = documents
        self._clock = clock
        self._full_resolution = timedelta(days=full_resolution_days)
        self._retention = timedelta(days=retention_days)
        self._bucket = timedelta(seconds=bucket_s)
        self._on_change = on_change
        self._items: list[Reading] = []
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def items(self) -> list[Reading]:
        """Copy of all stored readings in timestamp order."""
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Load the persisted history (empty on missing/malformed document)."""
        self._items = decode_history(self._documents.load(HISTORY_DOCUMENT))
        logger.info("History loaded: %d readings", len(self._items))

    def stop(self) -> None:
        """Flush the history to disk."""
        self._save()

    def bind(self, stream: SnapshotStream) -> None:
        """Append every Snapshot published on *stream*."""
        self.unbind()
        self._unsubscribe = stream.subscribe(self.append)

    def unbind(self) -> None:
        """Stop following the stream and flush the history."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            self._save()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append(self, snapshot: Snapshot) -> Reading:
        """Record *snapshot* as a Reading, compact, and persist.

        A failed write is not surfaced; the next append rewrites the full
        document anyway.
        """
        now = self._clock()
        reading = Reading.from_snapshot(snapshot, ts=now)
        self._items.append(reading)
        self._items = compact(
            self._items,
            now=now,
            full_resolution=self._full_resolution,
            retention=self._retention,
            bucket=self._bucket,
        )
        self._save()
        logger.debug(
            "Appended reading pct=%d charging=%s (total=%d)",
            reading.percentage,
            reading.is_charging,
            len(self._items),
        )
        if self._on_change is not None:
            self._on_change(reading)
        return reading

    def clear(self) -> None:
        """Drop every reading and delete the history document."""
        self._items = []
        self._documents.delete(HISTORY_DOCUMENT)
        logger.info("History cleared")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def recent_by_hours(self, hours: float) -> list[Reading]:
        """Readings from the last *hours* hours, in stored order."""
        return self._within(hours=hours)

    def recent_by_days(self, days: float) -> list[Reading]:
        """Readings from the last *days* days, in stored order."""
        return self._within(days=days)

    def between(self, start: datetime, end: datetime) -> list[Reading]:
        """Readings with ``start <= timestamp <= end`` (bounds in any order)."""
        start, end = assume_utc(start), assume_utc(end)
        lo, hi = min(start, end), max(start, end)
        return [r for r in self._items if lo <= r.timestamp <= hi]

    @staticmethod
    def downsample(readings: Sequence[Reading], max_points: int) -> list[Reading]:
        """See :func:`downsample`."""
        return downsample(readings, max_points)

    def document_size_bytes(self) -> int:
        """Size of the persisted history document in bytes."""
        return self._documents.size(HISTORY_DOCUMENT)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _within(self, **window: float) -> list[Reading]:
        # Windows reaching past datetime.min cover the whole history.
        try:
            cutoff = self._clock() - timedelta(**window)
        except OverflowError:
            return list(self._items)
        return [r for r in self._items if r.timestamp >= cutoff]

    def _save(self) -> None:
        self._documents.save(HISTORY_DOCUMENT, encode_history(self._items))
