"""
Battery monitor daemon main loop.

Runs a single asyncio poll loop: the SnapshotPoller reads the platform
battery, the Snapshot is published on the monitor's stream (history append
and calibration step), and the HealthWriter is updated after every attempt.

The loop is resilient: an exception in one iteration is logged and does not
crash the loop. Graceful shutdown on SIGTERM/SIGINT sets a shared
asyncio.Event; the loop finishes its current iteration and the monitor is
stopped, flushing history and calibration state to disk before exit.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-19: Initial creation
- 2026-10-19: Publish off the event loop; run_daemon accepts a shared monitor

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from batmon.src.config import BatmonSettings
from batmon.src.health import HealthWriter
from batmon.src.monitor import BatteryMonitor
from batmon.src.poller import SnapshotPoller

if TYPE_CHECKING:
    from batmon.src.calibration import ReportGenerator
    from batmon.src.poller import SnapshotReader

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging for the daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: BatmonSettings) -> None:
    """Log a config summary at startup, masking the API token.

    Args:
        settings: Validated daemon settings.
    """
    logger.info(
        "Battery monitor starting with config: "
        "data_dir=%s, health_path=%s, poll_interval_s=%s, "
        "history_full_resolution_days=%s, history_retention_days=%s, "
        "history_bucket_s=%s, calibration_full_percent=%s, "
        "calibration_end_percent=%s, calibration_max_gap_s=%s, "
        "calibration_recent_limit=%s, api_token_masked=%s",
        settings.data_dir,
        settings.health_path,
        settings.poll_interval_s,
        settings.history_full_resolution_days,
        settings.history_retention_days,
        settings.history_bucket_s,
        settings.calibration_full_percent,
        settings.calibration_end_percent,
        settings.calibration_max_gap_s,
        settings.calibration_recent_limit,
        _masked_token(settings.api_token),
    )


# ---------------------------------------------------------------------------
# Single-iteration function (easily testable)
# ---------------------------------------------------------------------------


async def _poll_once(
    *,
    poller: SnapshotPoller,
    monitor: BatteryMonitor,
    health: HealthWriter | None,
) -> bool:
    """Execute a single read-publish cycle.

    Catches all exceptions so that the caller's loop is never broken.
    After each poll attempt the health writer is updated with the current
    history size and calibration state.

    Args:
        poller: The snapshot poller.
        monitor: The monitor whose stream receives the snapshot.
        health: HealthWriter instance, or None to skip health writes.

    Returns:
        True if a snapshot was read and published.
    """
    published = False
    try:
        snapshot = await poller.poll()
        if snapshot is not None:
            await monitor.publish_async(snapshot)
            published = True
            logger.debug(
                "Poll success: pct=%d charging=%s",
                snapshot.percentage,
                snapshot.is_charging,
            )
        else:
            logger.warning("Poller returned None, skipping publish")
    except Exception:
        logger.error("Poll cycle error", exc_info=True)

    if health is not None:
        try:
            health.record_poll(
                history_count=len(monitor.history),
                calibration_state=monitor.calibration.state.tag,
            )
        except Exception:
            logger.warning("Failed to write health file", exc_info=True)
    return published


# ---------------------------------------------------------------------------
# Loop runner with graceful shutdown
# ---------------------------------------------------------------------------


async def run_loop(
    *,
    poller: SnapshotPoller,
    monitor: BatteryMonitor,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Poll until shutdown_event is set, then stop the monitor.

    The monitor must already be started. On shutdown it is stopped, which
    unbinds the history store and calibration engine and flushes both
    documents to disk.

    Args:
        poller: The snapshot poller.
        monitor: The started monitor.
        poll_interval_s: Seconds between poll cycles.
        shutdown_event: Event to signal graceful shutdown.
        health: HealthWriter instance, or None to skip health writes.
    """
    logger.info("Poll loop started (interval=%ss)", poll_interval_s)
    try:
        while not shutdown_event.is_set():
            await _poll_once(poller=poller, monitor=monitor, health=health)
            # Use wait with timeout so we can check shutdown between sleeps
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    shutdown_event.wait(),
                    timeout=poll_interval_s,
                )
    finally:
        logger.info("Poll loop stopped, flushing state")
        monitor.stop()
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def run_daemon(
    reader: SnapshotReader,
    settings: BatmonSettings | None = None,
    *,
    report_generator: ReportGenerator | None = None,
    shutdown_event: asyncio.Event | None = None,
    monitor: BatteryMonitor | None = None,
) -> None:
    """Async entrypoint: build components around *reader* and run the loop.

    The platform reader is supplied by the host application. A host that
    also serves the HTTP API builds the monitor first, passes it to both
    ``create_app`` and this function, and runs the two concurrently. Sets up
    SIGTERM/SIGINT handlers to trigger graceful shutdown.

    Args:
        reader: Platform battery reader.
        settings: Settings to use; loaded from the environment when None.
        report_generator: Optional external report generator.
        shutdown_event: Event to stop the daemon; created when None.
        monitor: Unstarted monitor to drive; built from settings when None.
    """
    configure_logging()

    if settings is None:
        settings = BatmonSettings()
    log_config_summary(settings)

    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(
                sig,
                lambda: _handle_signal(shutdown_event),
            )

    if monitor is None:
        monitor = BatteryMonitor.from_settings(
            settings, report_generator=report_generator
        )
    monitor.start()

    await run_loop(
        poller=SnapshotPoller(reader),
        monitor=monitor,
        poll_interval_s=settings.poll_interval_s,
        shutdown_event=shutdown_event,
        health=HealthWriter(settings.health_path),
    )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()
