"""HTTP client utilities with retry, timeout handling, and connection pooling."""

import asyncio
import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from mcp_bridge.config.loader import get_settings

logger = logging.getLogger(__name__)


# =============================================================================
# Connection Pooling - Shared HTTP Client
# =============================================================================

_shared_client: httpx.AsyncClient | None = None
_client_lock = asyncio.Lock()


def _user_agent() -> str:
    settings = get_settings()
    return f"{settings.server_name}/{settings.server_version}"


async def get_shared_client() -> httpx.AsyncClient:
    """Get a shared HTTP client with connection pooling.

    Reused for every outbound JSON-RPC POST so remote MCP servers reached
    over HTTP share TCP connections.
    """
    global _shared_client

    if _shared_client is None or _shared_client.is_closed:
        async with _client_lock:
            # Double-check after acquiring lock
            if _shared_client is None or _shared_client.is_closed:
                settings = get_settings()
                _shared_client = httpx.AsyncClient(
                    timeout=httpx.Timeout(float(settings.default_timeout)),
                    follow_redirects=True,
                    headers={"User-Agent": _user_agent()},
                    limits=httpx.Limits(
                        max_keepalive_connections=10,
                        max_connections=20,
                        keepalive_expiry=30.0,
                    ),
                )
                logger.debug("Created shared HTTP client with connection pooling")

    return _shared_client


async def close_shared_client() -> None:
    """Close the shared HTTP client (call on shutdown)."""
    global _shared_client
    if _shared_client is not None:
        await _shared_client.aclose()
        _shared_client = None
        logger.debug("Closed shared HTTP client")


def create_http_client(
    timeout: float | None = None,
    base_url: str | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.AsyncClient:
    """
    Create an async HTTP client with sensible defaults.

    Event streams use a dedicated client because they hold a connection
    open for the lifetime of the session; reads never time out.

    Args:
        timeout: Connect/write/pool timeout in seconds. Uses default from settings if None.
        base_url: Optional base URL for all requests.
        headers: Extra headers sent with every request.

    Returns:
        Configured httpx.AsyncClient instance.
    """
    settings = get_settings()

    if timeout is None:
        timeout = float(settings.default_timeout)

    return httpx.AsyncClient(
        base_url=base_url or "",
        timeout=httpx.Timeout(timeout, read=None),
        follow_redirects=True,
        headers={"User-Agent": _user_agent(), **(headers or {})},
    )


# =============================================================================
# Retry Decorator
# =============================================================================

# Only retry failures where the request never reached the server; a
# JSON-RPC POST is not idempotent once delivered.
http_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
    reraise=True,
)


@http_retry
async def post_json(
    url: str,
    data: Any,
    headers: dict[str, str] | None = None,
    timeout: float | None = None,
    client: httpx.AsyncClient | None = None,
) -> httpx.Response:
    """
    POST JSON to a URL with retries on connection failures.

    Uses the shared HTTP client unless one is passed in.

    Args:
        url: The URL to post to.
        data: JSON-serializable body.
        headers: Extra request headers.
        timeout: Optional timeout override.
        client: Client to send with.

    Returns:
        The response; status is checked by the caller.

    Raises:
        httpx.ConnectError: When the server stays unreachable.
        httpx.TimeoutException: On timeout.
    """
    client = client or await get_shared_client()

    if timeout:
        return await client.post(url, json=data, headers=headers, timeout=timeout)
    return await client.post(url, json=data, headers=headers)
