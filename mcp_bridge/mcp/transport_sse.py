"""SSE (Server-Sent Events) transport for MCP."""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator

from sse_starlette.sse import EventSourceResponse

from mcp_bridge.config.loader import get_settings
from mcp_bridge.mcp.handlers import MCPHandlers
from mcp_bridge.mcp.jsonrpc import JsonRpcProcessor, encode_reply
from mcp_bridge.mcp.registry import ServerRegistry
from mcp_bridge.mcp.session import ServerSession

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Session:
    """An MCP session bound to one SSE event stream."""

    def __init__(
        self,
        session_id: str,
        registry: ServerRegistry,
        timeout: timedelta | None = None,
    ):
        settings = get_settings()
        self.session_id = session_id
        self.created_at = _now()
        self.last_activity = _now()
        self.timeout = timeout or timedelta(minutes=settings.session_timeout_minutes)
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.protocol = ServerSession(
            session_id=session_id,
            max_concurrent_requests=settings.max_concurrent_requests,
        )
        self.processor = JsonRpcProcessor(MCPHandlers(registry, self.protocol))
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def touch(self) -> None:
        """Update last activity timestamp."""
        self.last_activity = _now()

    def is_expired(self) -> bool:
        """Check if the session has expired."""
        return _now() - self.last_activity > self.timeout

    async def send_event(self, event_type: str, data: Any) -> None:
        """Queue an event to be sent to the client."""
        if not self._closed:
            await self.queue.put({"event": event_type, "data": data})

    def dispatch(self, body: bytes | str) -> asyncio.Task:
        """Process a posted message in the background; replies go to the stream."""
        task = asyncio.create_task(self._process(body))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _process(self, body: bytes | str) -> None:
        try:
            reply = await self.processor.handle_message(body)
        except Exception:
            logger.exception(f"Unhandled error processing message for session {self.session_id}")
            return
        if reply is not None:
            await self.send_event("message", encode_reply(reply))

    def close(self) -> None:
        """Mark the session as closed and cancel outstanding work."""
        if self._closed:
            return
        self._closed = True
        self.protocol.close()
        for task in self._tasks:
            task.cancel()


class SessionManager:
    """Manages MCP sessions."""

    def __init__(self, timeout: timedelta | None = None):
        self._sessions: dict[str, Session] = {}
        self._cleanup_task: asyncio.Task | None = None
        self.timeout = timeout

    def create_session(self, registry: ServerRegistry) -> Session:
        """Create a new session."""
        session_id = str(uuid.uuid4())
        session = Session(session_id, registry, timeout=self.timeout)
        self._sessions[session_id] = session
        logger.info(f"Created session: {session_id}")
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Get a live session by ID."""
        session = self._sessions.get(session_id)
        if session is not None:
            if session.is_expired() or session.closed:
                self.remove_session(session_id)
                return None
            session.touch()
        return session

    def remove_session(self, session_id: str) -> None:
        """Remove a session."""
        session = self._sessions.pop(session_id, None)
        if session:
            session.close()
            logger.info(f"Removed session: {session_id}")

    async def cleanup_expired(self) -> None:
        """Remove expired sessions."""
        expired = [
            sid for sid, session in self._sessions.items()
            if session.is_expired() or session.closed
        ]
        for sid in expired:
            self.remove_session(sid)
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired sessions")

    async def start_cleanup_task(self) -> None:
        """Start background task to clean up expired sessions."""
        async def cleanup_loop():
            while True:
                await asyncio.sleep(60)  # Check every minute
                await self.cleanup_expired()

        self._cleanup_task = asyncio.create_task(cleanup_loop())

    def stop_cleanup_task(self) -> None:
        """Stop the cleanup background task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.remove_session(session_id)

    @property
    def session_count(self) -> int:
        """Return the number of active sessions."""
        return len(self._sessions)


# Global session manager
_session_manager: SessionManager | None = None


def get_session_manager() -> SessionManager:
    """Get the global session manager."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager()
    return _session_manager


def reset_session_manager() -> None:
    global _session_manager
    if _session_manager is not None:
        _session_manager.stop_cleanup_task()
        _session_manager.close_all()
    _session_manager = None


async def session_events(
    session: Session, message_endpoint: str, keepalive: float | None = None
) -> AsyncGenerator[dict[str, Any], None]:
    """Events for one SSE stream: the endpoint, then messages and keepalive pings."""
    if keepalive is None:
        keepalive = get_settings().sse_keepalive_seconds

    try:
        yield {
            "event": "endpoint",
            "data": f"{message_endpoint}?session_id={session.session_id}",
        }
        while not session.closed:
            try:
                event = await asyncio.wait_for(session.queue.get(), timeout=keepalive)
                yield event
            except asyncio.TimeoutError:
                yield {"event": "ping", "data": ""}
    except asyncio.CancelledError:
        logger.info(f"SSE stream cancelled for session {session.session_id}")
        raise
    finally:
        session.close()


async def create_sse_response(
    session: Session, message_endpoint: str
) -> EventSourceResponse:
    """Create an SSE response for a session."""
    return EventSourceResponse(session_events(session, message_endpoint))
