"""Rate limiting middleware and utilities."""

import logging
import time
from collections import defaultdict
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from mcp_bridge.config.loader import get_settings
from mcp_bridge.mcp.errors import RATE_LIMIT_ERROR

logger = logging.getLogger(__name__)


class RateLimiter:
    """Simple in-memory rate limiter using sliding window."""

    def __init__(self, limit: int = 60, window_seconds: int = 60):
        self.limit = limit
        self.window_size = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)

    def is_allowed(self, key: str) -> tuple[bool, int]:
        """
        Check if a request is allowed for the given key.

        Args:
            key: Identifier for the client (e.g., IP address).

        Returns:
            Tuple of (is_allowed, remaining_requests).
        """
        now = time.time()
        window_start = now - self.window_size

        # Clean old requests
        self._requests[key] = [
            ts for ts in self._requests[key] if ts > window_start
        ]

        current_count = len(self._requests[key])
        remaining = max(0, self.limit - current_count)

        if current_count >= self.limit:
            return False, 0

        self._requests[key].append(now)
        return True, remaining - 1

    def reset(self, key: str | None = None) -> None:
        """Reset rate limit for a key or all keys."""
        if key is None:
            self._requests.clear()
        else:
            self._requests.pop(key, None)


def get_client_key(request: Request) -> str:
    """Get identifier for rate limiting (IP address)."""
    # Check for forwarded IP (behind proxy)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limiting."""

    def __init__(self, app, limiter: RateLimiter | None = None, enabled: bool | None = None):
        super().__init__(app)
        settings = get_settings()
        self.enabled = settings.rate_limit_enabled if enabled is None else enabled
        self.limiter = limiter or RateLimiter(settings.rate_limit_per_minute)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        if not self.enabled:
            return await call_next(request)

        client_key = get_client_key(request)
        is_allowed, remaining = self.limiter.is_allowed(client_key)

        if not is_allowed:
            logger.warning(f"Rate limit exceeded for {client_key}")
            return JSONResponse(
                status_code=429,
                content={
                    "jsonrpc": "2.0",
                    "id": None,
                    "error": {
                        "code": RATE_LIMIT_ERROR,
                        "message": "Rate limit exceeded. Please try again later.",
                    },
                },
                headers={
                    "X-RateLimit-Limit": str(self.limiter.limit),
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(self.limiter.window_size),
                },
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.limiter.limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)

        return response
