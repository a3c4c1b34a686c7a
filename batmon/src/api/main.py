"""
FastAPI application factory for the battery monitor.

The host application owns the BatteryMonitor lifecycle (start/stop) and
hands the running monitor to create_app(); route handlers read it from
app.state. The configured API token is wrapped in a BearerAuth instance
stored on app.state for the calibration command routes.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

import logging

from fastapi import FastAPI

from batmon.src.api.analysis import router as analysis_router
from batmon.src.api.auth import BearerAuth
from batmon.src.api.calibration import router as calibration_router
from batmon.src.api.history import router as history_router
from batmon.src.monitor import BatteryMonitor

logger = logging.getLogger(__name__)


def create_app(monitor: BatteryMonitor, api_token: str = "") -> FastAPI:
    """Build the HTTP app around a started monitor.

    Args:
        monitor: The monitor whose state the routes expose.
        api_token: Bearer token required for calibration commands. Empty
            disables authentication.

    Returns:
        FastAPI: The configured application.
    """
    app = FastAPI(
        title="Battery Monitor API",
        description="Battery history, discharge analytics and endurance tests.",
        version="0.1.0",
    )
    app.state.monitor = monitor
    app.state.auth = BearerAuth(api_token)
    if not api_token:
        logger.warning("No API token configured, calibration commands are open")

    app.include_router(history_router)
    app.include_router(analysis_router)
    app.include_router(calibration_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        """Return ``{"status": "ok"}`` while the service is alive."""
        return {"status": "ok"}

    return app
