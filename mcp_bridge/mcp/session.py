"""Server-side MCP session: handshake state, negotiated capabilities, in-flight requests."""

import asyncio
import logging
import uuid
from enum import Enum
from typing import Any

from mcp_bridge.mcp.errors import INVALID_REQUEST, McpError
from mcp_bridge.mcp.models import InitializeParams

logger = logging.getLogger(__name__)

# Newest first
SUPPORTED_PROTOCOL_VERSIONS = ("2025-03-26", "2024-11-05")
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]

# Methods a client may call before the handshake completes
PRE_INITIALIZE_METHODS = {"initialize", "ping"}


def negotiate_protocol_version(requested: str | None) -> str:
    """Echo the client's version when supported, otherwise offer the latest."""
    if requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested  # type: ignore[return-value]
    return LATEST_PROTOCOL_VERSION


class SessionState(str, Enum):
    NEW = "new"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


class ServerSession:
    """
    Per-connection state on the server side.

    A strict session (stdio, or HTTP bound to an SSE stream) refuses requests
    until `initialize` has been answered. A non-strict session backs a single
    stateless HTTP request.
    """

    def __init__(
        self,
        session_id: str | None = None,
        require_initialize: bool = True,
        max_concurrent_requests: int = 32,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.require_initialize = require_initialize
        self.state = SessionState.NEW
        self.protocol_version: str | None = None
        self.client_info: dict[str, Any] | None = None
        self.client_capabilities: dict[str, Any] = {}
        self.in_flight: dict[int | str, asyncio.Task] = {}
        self.request_slots = asyncio.Semaphore(max_concurrent_requests)

    @property
    def is_initialized(self) -> bool:
        return self.state in (SessionState.INITIALIZING, SessionState.READY)

    def begin_initialize(self, params: InitializeParams) -> str:
        """Record the client's handshake and return the negotiated version."""
        if self.state == SessionState.CLOSED:
            raise McpError(INVALID_REQUEST, "Session is closed")
        if self.state != SessionState.NEW:
            raise McpError(INVALID_REQUEST, "Session already initialized")

        self.protocol_version = negotiate_protocol_version(params.protocolVersion)
        self.client_info = params.clientInfo.model_dump()
        self.client_capabilities = params.capabilities
        self.state = SessionState.INITIALIZING

        if self.protocol_version != params.protocolVersion:
            logger.info(
                f"Client requested protocol {params.protocolVersion}, "
                f"offering {self.protocol_version}"
            )
        return self.protocol_version

    def mark_initialized(self) -> None:
        """Handle the client's notifications/initialized."""
        if self.state == SessionState.INITIALIZING:
            self.state = SessionState.READY
        elif self.state == SessionState.NEW:
            logger.warning(
                f"Session {self.session_id}: initialized notification before initialize"
            )

    def check_ready(self, method: str) -> None:
        """Raise if `method` may not run in the current state."""
        if self.state == SessionState.CLOSED:
            raise McpError(INVALID_REQUEST, "Session is closed")
        if (
            self.require_initialize
            and self.state == SessionState.NEW
            and method not in PRE_INITIALIZE_METHODS
        ):
            raise McpError(INVALID_REQUEST, "Session not initialized")

    # -------------------------------------------------------------------------
    # In-flight request tracking
    # -------------------------------------------------------------------------

    def is_in_flight(self, request_id: int | str) -> bool:
        return request_id in self.in_flight

    def track(self, request_id: int | str, task: asyncio.Task) -> None:
        self.in_flight[request_id] = task

    def untrack(self, request_id: int | str) -> None:
        self.in_flight.pop(request_id, None)

    def cancel(self, request_id: int | str, reason: str | None = None) -> bool:
        """Cancel an in-flight request. Returns False if it is not running."""
        task = self.in_flight.get(request_id)
        if task is None or task.done():
            logger.debug(f"Cancel for unknown or finished request {request_id!r}")
            return False
        logger.info(f"Cancelling request {request_id!r}: {reason or 'no reason given'}")
        task.cancel()
        return True

    def close(self) -> None:
        """Cancel outstanding work and refuse further requests."""
        for task in self.in_flight.values():
            task.cancel()
        self.in_flight.clear()
        self.state = SessionState.CLOSED
