"""Authentication middleware and utilities."""

import hmac
import logging
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from mcp_bridge.config.loader import get_settings
from mcp_bridge.mcp.errors import AUTHENTICATION_ERROR, error_message

logger = logging.getLogger(__name__)


def verify_auth_token(token: str | None) -> bool:
    """
    Verify a bearer token.

    Returns True if:
    - Auth is disabled (no MCP_AUTH_TOKEN set)
    - Token matches the configured MCP_AUTH_TOKEN
    """
    settings = get_settings()

    if not settings.auth_enabled:
        return True

    if token is None:
        return False

    return hmac.compare_digest(token.encode(), settings.mcp_auth_token.encode())


def extract_bearer_token(authorization: str | None) -> str | None:
    """Extract token from Authorization header."""
    if authorization is None:
        return None

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    return parts[1]


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce authentication on protected endpoints."""

    # Paths that require authentication (when enabled)
    PROTECTED_PATHS = ["/sse", "/message", "/api/"]

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        settings = get_settings()

        if not settings.auth_enabled or request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        if not any(path.startswith(p) for p in self.PROTECTED_PATHS):
            return await call_next(request)

        token = extract_bearer_token(request.headers.get("Authorization"))
        if verify_auth_token(token):
            return await call_next(request)

        logger.warning(f"Unauthorized access attempt to {path}")

        if path.startswith("/api/"):
            # REST API format
            return JSONResponse(
                status_code=401,
                content={
                    "error": "Authentication required",
                    "message": "Please provide a valid API token in the Authorization header",
                },
                headers={"WWW-Authenticate": "Bearer"},
            )

        # MCP JSON-RPC format
        return JSONResponse(
            status_code=401,
            content={
                "jsonrpc": "2.0",
                "id": None,
                "error": {
                    "code": AUTHENTICATION_ERROR,
                    "message": error_message(AUTHENTICATION_ERROR),
                },
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
