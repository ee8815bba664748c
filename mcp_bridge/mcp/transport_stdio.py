"""Stdio transport for MCP: newline-delimited JSON-RPC over stdin/stdout."""

import asyncio
import logging
import sys
from typing import Any, Protocol

from mcp_bridge.config.loader import get_settings
from mcp_bridge.mcp.errors import INVALID_REQUEST, make_error_data
from mcp_bridge.mcp.framing import LineFramer
from mcp_bridge.mcp.handlers import MCPHandlers
from mcp_bridge.mcp.jsonrpc import JsonRpcProcessor, encode_reply, error_response
from mcp_bridge.mcp.models import JsonRpcResponse
from mcp_bridge.mcp.registry import ServerRegistry
from mcp_bridge.mcp.session import ServerSession

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536


class ByteWriter(Protocol):
    def write(self, data: bytes) -> Any: ...

    async def drain(self) -> None: ...


class StdioServer:
    """Serves one MCP session over a pair of byte streams."""

    def __init__(
        self,
        registry: ServerRegistry,
        reader: asyncio.StreamReader,
        writer: ByteWriter,
        max_message_bytes: int | None = None,
        max_concurrent_requests: int | None = None,
    ):
        settings = get_settings()
        self.reader = reader
        self.writer = writer
        self.framer = LineFramer(max_message_bytes or settings.max_message_bytes)
        self.session = ServerSession(
            session_id="stdio",
            max_concurrent_requests=max_concurrent_requests or settings.max_concurrent_requests,
        )
        self.processor = JsonRpcProcessor(MCPHandlers(registry, self.session))
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    async def serve(self) -> None:
        """Read until EOF, handling every frame concurrently."""
        logger.info("Stdio session started")
        try:
            while True:
                chunk = await self.reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for frame in self.framer.feed(chunk):
                    self._spawn(frame)
                await self._report_oversized()

            tail = self.framer.flush()
            if tail:
                self._spawn(tail)
            await self._report_oversized()

            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
        finally:
            self.session.close()
            for task in self._tasks:
                task.cancel()
            logger.info("Stdio session closed")

    def _spawn(self, frame: bytes) -> None:
        task = asyncio.create_task(self._handle_frame(frame))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle_frame(self, frame: bytes) -> None:
        try:
            reply = await self.processor.handle_message(frame)
        except Exception:
            logger.exception("Unhandled error processing stdio message")
            return
        if reply is not None:
            await self.send(reply)

    async def _report_oversized(self) -> None:
        for _ in range(self.framer.take_oversized()):
            await self.send(
                error_response(
                    None,
                    make_error_data(
                        INVALID_REQUEST,
                        f"Message exceeds {self.framer.max_message_bytes} bytes",
                    ),
                )
            )

    async def send(self, message: JsonRpcResponse | list[JsonRpcResponse]) -> None:
        """Write one message as a single line; writes never interleave."""
        line = encode_reply(message) + "\n"
        async with self._write_lock:
            self.writer.write(line.encode("utf-8"))
            await self.writer.drain()


async def open_stdio_streams() -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Wrap the process's stdin/stdout in asyncio streams."""
    loop = asyncio.get_running_loop()

    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer
    )

    transport, protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, sys.stdout.buffer
    )
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer


async def run_stdio_server(registry: ServerRegistry) -> None:
    """Serve MCP on this process's stdin/stdout until stdin closes."""
    reader, writer = await open_stdio_streams()
    server = StdioServer(registry, reader, writer)
    try:
        await server.serve()
    finally:
        writer.close()
