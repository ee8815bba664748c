"""Utility modules: logging, HTTP client, rate limiting."""

from mcp_bridge.utils.logging import setup_logging, get_logger
from mcp_bridge.utils.http import create_http_client, post_json
from mcp_bridge.utils.rate_limit import RateLimiter, RateLimitMiddleware

__all__ = [
    "setup_logging",
    "get_logger",
    "create_http_client",
    "post_json",
    "RateLimiter",
    "RateLimitMiddleware",
]
