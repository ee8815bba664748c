"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, AsyncIterator

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

import mcp_bridge.main as main_module
from mcp_bridge.client.transports import ClientTransport
from mcp_bridge.config.loader import get_settings
from mcp_bridge.main import app
from mcp_bridge.mcp.handlers import MCPHandlers
from mcp_bridge.mcp.jsonrpc import JsonRpcProcessor
from mcp_bridge.mcp.models import dump_message
from mcp_bridge.mcp.registry import ServerRegistry, get_registry, reset_registry
from mcp_bridge.mcp.session import ServerSession
from mcp_bridge.mcp.transport_sse import reset_session_manager


@pytest.fixture
def client():
    """Synchronous test client for FastAPI app."""
    return TestClient(app)


@pytest.fixture
async def async_client():
    """Async test client for FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture(autouse=True)
def reset_globals():
    """Fresh settings, registry and sessions for each test, with the calculator tools loaded."""
    get_settings.cache_clear()
    reset_registry()
    reset_session_manager()
    main_module._chat_limiter = None
    registry = get_registry()
    registry.load_provider("calculator")
    yield
    for attr in ("agent_runner", "client_manager"):
        if hasattr(app.state, attr):
            delattr(app.state, attr)
    reset_registry()
    reset_session_manager()
    get_settings.cache_clear()


@pytest.fixture
def registry():
    """Get a fresh server registry with no providers."""
    reset_registry()
    return get_registry()


@pytest.fixture
def settings():
    """Get application settings."""
    return get_settings()


@pytest.fixture
def sample_jsonrpc_request():
    """Sample JSON-RPC request factory."""
    def _make_request(method: str, params: dict = None, id: int = 1):
        return {
            "jsonrpc": "2.0",
            "id": id,
            "method": method,
            "params": params or {},
        }
    return _make_request


@pytest.fixture
def initialize_params():
    return {
        "protocolVersion": "2025-03-26",
        "capabilities": {},
        "clientInfo": {"name": "test", "version": "1.0"},
    }


class LoopbackTransport(ClientTransport):
    """Connects a client session straight to an in-process server session."""

    name = "loopback"

    def __init__(self, registry: ServerRegistry):
        self.server_session = ServerSession(session_id="loopback")
        self.processor = JsonRpcProcessor(MCPHandlers(registry, self.server_session))
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.connected = False
        self.closed = False
        self._tasks: set[asyncio.Task] = set()

    async def connect(self) -> None:
        self.connected = True

    async def send(self, message: dict[str, Any]) -> None:
        self.sent.append(message)
        task = asyncio.create_task(self._serve(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _serve(self, message: dict[str, Any]) -> None:
        reply = await self.processor.handle_data(message)
        if reply is not None:
            await self.queue.put(dump_message(reply))

    async def messages(self) -> AsyncIterator[Any]:
        while True:
            message = await self.queue.get()
            if message is None:
                return
            yield message

    async def close(self) -> None:
        self.closed = True
        for task in self._tasks:
            task.cancel()
        self.server_session.close()
        self.queue.put_nowait(None)


class ScriptedTransport(ClientTransport):
    """A transport whose server side is driven by the test."""

    name = "scripted"

    def __init__(self):
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.sent_event = asyncio.Event()
        self.closed = False

    async def connect(self) -> None:
        pass

    async def send(self, message: dict[str, Any]) -> None:
        self.sent.append(message)
        self.sent_event.set()

    async def wait_for_sent(self, count: int) -> list[dict[str, Any]]:
        while len(self.sent) < count:
            self.sent_event.clear()
            await self.sent_event.wait()
        return self.sent

    def reply(self, message: Any) -> None:
        self.queue.put_nowait(message)

    def end(self) -> None:
        self.queue.put_nowait(None)

    async def messages(self) -> AsyncIterator[Any]:
        while True:
            message = await self.queue.get()
            if message is None:
                return
            yield message

    async def close(self) -> None:
        self.closed = True
        self.end()


@pytest.fixture
def loopback_transport():
    return LoopbackTransport(get_registry())


@pytest.fixture
def scripted_transport():
    return ScriptedTransport()
