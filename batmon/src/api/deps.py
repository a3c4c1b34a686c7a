"""
FastAPI dependency injection providers.

Provides the shared BatteryMonitor and the command authentication check
for use with FastAPI's Depends() mechanism.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from typing import Annotated

from fastapi import Depends, Request

from batmon.src.monitor import BatteryMonitor


def get_monitor(request: Request) -> BatteryMonitor:
    """Return the monitor attached to the application by create_app()."""
    return request.app.state.monitor


async def require_token(request: Request) -> None:
    """Reject the request unless it carries the configured Bearer token.

    Raises:
        HTTPException: 401 Unauthorized on a missing or wrong token.
    """
    await request.app.state.auth.verify(request)


# Type alias for injecting the monitor via FastAPI Depends().
# Usage in route handlers:
#   async def my_route(monitor: MonitorDep):
#       monitor.history.items
MonitorDep = Annotated[BatteryMonitor, Depends(get_monitor)]
