"""
Bearer token authentication for calibration commands.

Validates incoming ``Authorization: Bearer {token}`` headers against the
single configured API token. Uses constant-time comparison via
secrets.compare_digest to prevent timing attacks. An empty configured
token disables the check, so a local-only deployment needs no secret.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

import logging
import secrets

from fastapi import HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)


def verify_bearer_token(token: str, expected: str) -> bool:
    """Compare a bearer token with the configured one in constant time.

    Args:
        token: The bearer token extracted from the Authorization header.
        expected: The configured API token.

    Returns:
        bool: True if both are non-empty and equal.
    """
    if not token or not expected:
        return False
    return secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


class BearerAuth:
    """FastAPI-compatible Bearer token check.

    Wraps HTTPBearer for OpenAPI documentation and validates the extracted
    token against the configured one.

    Attributes:
        token: The configured API token; empty disables authentication.
        scheme: FastAPI HTTPBearer security scheme.
    """

    def __init__(self, token: str = "") -> None:
        self.token = token
        self.scheme = HTTPBearer(auto_error=False)

    @property
    def enabled(self) -> bool:
        """True when a token is configured."""
        return bool(self.token)

    async def verify(self, request: Request) -> None:
        """Validate the request's Bearer token when authentication is enabled.

        Args:
            request: The incoming FastAPI request.

        Raises:
            HTTPException: 401 Unauthorized if the token is invalid or missing.
        """
        if not self.enabled:
            return

        credentials: HTTPAuthorizationCredentials | None = await self.scheme(request)

        if credentials is None:
            raise HTTPException(
                status_code=401,
                detail="Missing authorization credentials.",
                headers={"WWW-Authenticate": "Bearer"},
            )

        if not verify_bearer_token(credentials.credentials, self.token):
            logger.warning("Rejected calibration command with an invalid token")
            raise HTTPException(
                status_code=401,
                detail="Invalid or expired token.",
                headers={"WWW-Authenticate": "Bearer"},
            )
