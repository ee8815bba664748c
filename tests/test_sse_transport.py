"""Tests for SSE sessions and the session-bound /message endpoint."""

import asyncio
import json
from datetime import timedelta

from httpx import AsyncClient

from mcp_bridge.mcp.errors import INVALID_REQUEST
from mcp_bridge.mcp.registry import get_registry
from mcp_bridge.mcp.session import SessionState
from mcp_bridge.mcp.transport_sse import Session, SessionManager, get_session_manager, session_events


async def next_message(session: Session, timeout: float = 5) -> dict:
    event = await asyncio.wait_for(session.queue.get(), timeout=timeout)
    assert event["event"] == "message"
    return json.loads(event["data"])


def initialize_request(id=1) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": id,
        "method": "initialize",
        "params": {
            "protocolVersion": "2025-03-26",
            "capabilities": {},
            "clientInfo": {"name": "test", "version": "1.0"},
        },
    }


class TestSession:

    async def test_dispatch_delivers_reply_as_message_event(self):
        session = Session("s1", get_registry())
        session.dispatch(json.dumps({"jsonrpc": "2.0", "id": 1, "method": "ping"}))
        assert await next_message(session) == {"jsonrpc": "2.0", "id": 1, "result": {}}

    async def test_session_requires_initialize(self):
        session = Session("s1", get_registry())
        session.dispatch(json.dumps({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}))
        reply = await next_message(session)
        assert reply["error"]["code"] == INVALID_REQUEST

    async def test_notifications_produce_no_event(self):
        session = Session("s1", get_registry())
        await session.dispatch(json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}))
        assert session.queue.empty()

    async def test_close_cancels_and_stops_events(self):
        session = Session("s1", get_registry())
        session.close()
        assert session.closed
        assert session.protocol.state == SessionState.CLOSED
        await session.send_event("message", "{}")
        assert session.queue.empty()

    def test_expiry(self):
        session = Session("s1", get_registry(), timeout=timedelta(seconds=-1))
        assert session.is_expired()
        assert not Session("s2", get_registry()).is_expired()


class TestSessionManager:

    def test_create_and_get(self):
        manager = SessionManager()
        session = manager.create_session(get_registry())
        assert manager.get_session(session.session_id) is session
        assert manager.session_count == 1

    def test_expired_sessions_are_dropped_on_lookup(self):
        manager = SessionManager(timeout=timedelta(seconds=-1))
        session = manager.create_session(get_registry())
        assert manager.get_session(session.session_id) is None
        assert manager.session_count == 0
        assert session.closed

    async def test_cleanup_removes_closed_sessions(self):
        manager = SessionManager()
        closed = manager.create_session(get_registry())
        live = manager.create_session(get_registry())
        closed.close()

        await manager.cleanup_expired()
        assert manager.session_count == 1
        assert manager.get_session(live.session_id) is live

    def test_close_all(self):
        manager = SessionManager()
        sessions = [manager.create_session(get_registry()) for _ in range(3)]
        manager.close_all()
        assert manager.session_count == 0
        assert all(session.closed for session in sessions)


class TestSessionEvents:

    async def test_endpoint_event_comes_first(self):
        session = Session("abc", get_registry())
        events = session_events(session, "/message", keepalive=5)
        first = await events.__anext__()
        assert first == {"event": "endpoint", "data": "/message?session_id=abc"}
        await events.aclose()
        assert session.closed

    async def test_queued_events_then_keepalive(self):
        session = Session("abc", get_registry())
        events = session_events(session, "/message", keepalive=0.05)
        await events.__anext__()

        await session.send_event("message", '{"jsonrpc": "2.0"}')
        assert (await events.__anext__())["event"] == "message"
        assert await events.__anext__() == {"event": "ping", "data": ""}
        await events.aclose()


class TestMessageEndpoint:

    async def test_unknown_session_is_404(self, async_client: AsyncClient):
        response = await async_client.post(
            "/message?session_id=missing",
            json={"jsonrpc": "2.0", "id": 1, "method": "ping"},
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == INVALID_REQUEST

    async def test_session_flow(self, async_client: AsyncClient):
        session = get_session_manager().create_session(get_registry())
        url = f"/message?session_id={session.session_id}"

        response = await async_client.post(url, json=initialize_request())
        assert response.status_code == 202
        assert response.json() == {"status": "accepted"}
        init = await next_message(session)
        assert init["result"]["serverInfo"]["name"] == "mcp-bridge"

        await async_client.post(url, json={"jsonrpc": "2.0", "method": "notifications/initialized"})
        await async_client.post(
            url,
            json={"jsonrpc": "2.0", "id": 2, "method": "tools/call",
                  "params": {"name": "calculator-subtract", "arguments": {"a": 10, "b": 4}}},
        )
        reply = await next_message(session)
        assert reply["id"] == 2
        assert reply["result"]["content"][0]["text"] == "6"
        assert session.protocol.state == SessionState.READY

    async def test_closed_session_is_404(self, async_client: AsyncClient):
        session = get_session_manager().create_session(get_registry())
        session.close()
        response = await async_client.post(
            f"/message?session_id={session.session_id}",
            json={"jsonrpc": "2.0", "id": 1, "method": "ping"},
        )
        assert response.status_code == 404
