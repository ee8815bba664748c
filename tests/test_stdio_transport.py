"""Tests for the stdio server transport."""

import asyncio
import json

from mcp_bridge.mcp.errors import INVALID_REQUEST, PARSE_ERROR
from mcp_bridge.mcp.registry import get_registry
from mcp_bridge.mcp.session import SessionState
from mcp_bridge.mcp.transport_stdio import StdioServer


class CollectingWriter:
    """Stands in for stdout and records every write."""

    def __init__(self):
        self.data = bytearray()
        self.writes = 0

    def write(self, data: bytes) -> None:
        self.data.extend(data)
        self.writes += 1

    async def drain(self) -> None:
        pass

    def messages(self) -> list:
        return [json.loads(line) for line in self.data.decode("utf-8").splitlines()]


def line(message: dict) -> bytes:
    return (json.dumps(message) + "\n").encode("utf-8")


INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": "2024-11-05",
        "capabilities": {},
        "clientInfo": {"name": "test", "version": "1.0"},
    },
}
INITIALIZED = {"jsonrpc": "2.0", "method": "notifications/initialized"}


async def run_server(payload: bytes, **kwargs) -> tuple[StdioServer, CollectingWriter]:
    reader = asyncio.StreamReader()
    reader.feed_data(payload)
    reader.feed_eof()
    writer = CollectingWriter()
    server = StdioServer(get_registry(), reader, writer, **kwargs)
    await asyncio.wait_for(server.serve(), timeout=5)
    return server, writer


async def wait_for_writes(writer: CollectingWriter, count: int) -> None:
    while writer.writes < count:
        await asyncio.sleep(0.01)


async def test_handshake_then_tool_call():
    reader = asyncio.StreamReader()
    writer = CollectingWriter()
    server = StdioServer(get_registry(), reader, writer)
    serving = asyncio.create_task(server.serve())

    # Clients wait for the initialize result before continuing
    reader.feed_data(line(INITIALIZE))
    await asyncio.wait_for(wait_for_writes(writer, 1), timeout=5)
    reader.feed_data(
        line(INITIALIZED)
        + line({"jsonrpc": "2.0", "id": 2, "method": "tools/call",
                "params": {"name": "calculator-multiply", "arguments": {"a": 6, "b": 7}}})
    )
    reader.feed_eof()
    await asyncio.wait_for(serving, timeout=5)

    by_id = {message["id"]: message for message in writer.messages()}
    assert by_id[1]["result"]["protocolVersion"] == "2024-11-05"
    assert by_id[2]["result"]["content"][0]["text"] == "42"
    assert writer.writes == 2
    assert server.session.state == SessionState.CLOSED


async def test_requests_before_initialize_are_rejected():
    _, writer = await run_server(line({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}))
    (reply,) = writer.messages()
    assert reply["error"]["code"] == INVALID_REQUEST


async def test_ping_is_allowed_before_initialize():
    _, writer = await run_server(line({"jsonrpc": "2.0", "id": "p", "method": "ping"}))
    assert writer.messages() == [{"jsonrpc": "2.0", "id": "p", "result": {}}]


async def test_malformed_line_gets_parse_error_and_stream_continues():
    payload = b"{not json\n" + line({"jsonrpc": "2.0", "id": 3, "method": "ping"})
    _, writer = await run_server(payload)
    replies = writer.messages()
    assert {reply["id"] for reply in replies} == {None, 3}
    parse_error = next(reply for reply in replies if reply["id"] is None)
    assert parse_error["error"]["code"] == PARSE_ERROR


async def test_non_finite_numbers_are_parse_errors():
    payload = b'{"jsonrpc": "2.0", "id": 6, "method": "ping", "params": {"x": NaN}}\n'
    _, writer = await run_server(payload)
    (reply,) = writer.messages()
    assert reply["id"] is None
    assert reply["error"]["code"] == PARSE_ERROR
    assert "NaN is not valid JSON" in reply["error"]["message"]


async def test_oversized_frame_is_reported():
    payload = b'{"padding":"' + b"x" * 200 + b'"}\n' + line({"jsonrpc": "2.0", "id": 4, "method": "ping"})
    _, writer = await run_server(payload, max_message_bytes=100)
    replies = writer.messages()
    assert {reply["id"] for reply in replies} == {None, 4}
    oversized = next(reply for reply in replies if reply["id"] is None)
    assert oversized["error"]["code"] == INVALID_REQUEST
    assert "100 bytes" in oversized["error"]["message"]


async def test_unterminated_last_line_is_processed():
    payload = json.dumps({"jsonrpc": "2.0", "id": 5, "method": "ping"}).encode()
    _, writer = await run_server(payload)
    assert writer.messages()[0]["id"] == 5


async def test_each_reply_is_one_line():
    payload = b"".join(line({"jsonrpc": "2.0", "id": n, "method": "ping"}) for n in range(3))
    _, writer = await run_server(payload)
    lines = writer.data.decode().split("\n")
    assert lines[-1] == ""
    assert len(lines) == 4
