"""Client-side transports: talk to a remote MCP server over stdio or HTTP/SSE."""

import asyncio
import contextlib
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator
from urllib.parse import urljoin

import httpx

from mcp_bridge.client.exceptions import MCPConnectionError, MCPTimeoutError
from mcp_bridge.config.loader import ClientConnectionConfig, get_settings
from mcp_bridge.mcp.framing import LineFramer, SseDecoder
from mcp_bridge.mcp.models import load_json
from mcp_bridge.utils.http import create_http_client, post_json

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536

# Seconds to wait for a child process to exit after stdin closes
PROCESS_EXIT_TIMEOUT = 3.0


def decode_message(raw: bytes | str, source: str) -> Any | None:
    """Decode one JSON-RPC message; malformed payloads are logged and dropped."""
    try:
        message = load_json(raw)
    except ValueError as e:
        logger.warning(f"Dropping malformed message from {source}: {e}")
        return None
    if not isinstance(message, (dict, list)):
        logger.warning(f"Dropping non-object message from {source}")
        return None
    return message


class ClientTransport(ABC):
    """A bidirectional channel carrying decoded JSON-RPC messages."""

    name: str = "transport"

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel. Raises MCPConnectionError on failure."""

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Deliver one message to the server."""

    @abstractmethod
    def messages(self) -> AsyncIterator[Any]:
        """Yield decoded messages from the server until the channel ends."""

    @abstractmethod
    async def close(self) -> None:
        """Release the channel. Safe to call more than once."""


class StdioClientTransport(ClientTransport):
    """Runs an MCP server as a subprocess and speaks line-delimited JSON to it."""

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        name: str | None = None,
        max_message_bytes: int | None = None,
    ):
        self.command = command
        self.args = args or []
        self.env = env or {}
        self.name = name or command
        self.framer = LineFramer(max_message_bytes or get_settings().max_message_bytes)
        self.process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env},
            )
        except (OSError, ValueError) as e:
            raise MCPConnectionError(f"Could not start '{self.command}': {e}") from e

        logger.info(f"Started MCP server process '{self.name}' (pid {self.process.pid})")
        self._stderr_task = asyncio.create_task(self._forward_stderr())

    async def _forward_stderr(self) -> None:
        assert self.process is not None and self.process.stderr is not None
        while True:
            line = await self.process.stderr.readline()
            if not line:
                return
            logger.info(f"[{self.name}] {line.decode('utf-8', errors='replace').rstrip()}")

    async def send(self, message: dict[str, Any]) -> None:
        if self.process is None or self.process.stdin is None:
            raise MCPConnectionError(f"Transport to '{self.name}' is not connected")
        line = json.dumps(message, ensure_ascii=False, allow_nan=False) + "\n"
        async with self._write_lock:
            try:
                self.process.stdin.write(line.encode("utf-8"))
                await self.process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise MCPConnectionError(f"Server '{self.name}' closed its input") from e

    async def messages(self) -> AsyncIterator[Any]:
        if self.process is None or self.process.stdout is None:
            raise MCPConnectionError(f"Transport to '{self.name}' is not connected")
        stdout = self.process.stdout
        while True:
            chunk = await stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for frame in self.framer.feed(chunk):
                message = decode_message(frame, self.name)
                if message is not None:
                    yield message
            dropped = self.framer.take_oversized()
            if dropped:
                logger.warning(f"Dropped {dropped} oversized message(s) from '{self.name}'")

        tail = self.framer.flush()
        if tail:
            message = decode_message(tail, self.name)
            if message is not None:
                yield message

    async def close(self) -> None:
        process = self.process
        if process is None:
            return
        self.process = None

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        try:
            await asyncio.wait_for(process.wait(), timeout=PROCESS_EXIT_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Server '{self.name}' did not exit, terminating")
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=PROCESS_EXIT_TIMEOUT)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()

        if self._stderr_task is not None:
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
        logger.info(f"Server process '{self.name}' exited with code {process.returncode}")


class SseClientTransport(ClientTransport):
    """
    HTTP + SSE transport.

    The server's event stream first announces an `endpoint` URL; every
    outgoing message is POSTed there and replies arrive as `message` events.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        connect_timeout: float | None = None,
        max_message_bytes: int | None = None,
    ):
        settings = get_settings()
        self.url = url
        self.headers = headers or {}
        self.name = name or url
        self.connect_timeout = connect_timeout or float(settings.client_connect_timeout)
        self.max_message_bytes = max_message_bytes or settings.max_message_bytes
        self.endpoint: str | None = None
        self._client = http_client
        self._owns_client = http_client is None
        self._stack = contextlib.AsyncExitStack()
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._reader_task: asyncio.Task | None = None
        self._endpoint_ready: asyncio.Future[str] | None = None

    async def connect(self) -> None:
        if self._client is None:
            self._client = create_http_client(headers=self.headers)
        loop = asyncio.get_running_loop()
        self._endpoint_ready = loop.create_future()

        try:
            response = await self._stack.enter_async_context(
                self._client.stream(
                    "GET", self.url, headers={"Accept": "text/event-stream", **self.headers}
                )
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            await self.close()
            raise MCPConnectionError(f"Could not open event stream {self.url}: {e}") from e

        if response.status_code != 200:
            await self.close()
            raise MCPConnectionError(
                f"Event stream {self.url} returned HTTP {response.status_code}"
            )

        self._reader_task = asyncio.create_task(self._read_events(response))
        try:
            self.endpoint = await asyncio.wait_for(
                asyncio.shield(self._endpoint_ready), timeout=self.connect_timeout
            )
        except asyncio.TimeoutError:
            await self.close()
            raise MCPTimeoutError(f"No endpoint event from {self.url} within {self.connect_timeout}s")
        except MCPConnectionError:
            await self.close()
            raise
        logger.info(f"Connected to SSE server '{self.name}', posting to {self.endpoint}")

    async def _read_events(self, response: httpx.Response) -> None:
        decoder = SseDecoder(self.max_message_bytes)
        try:
            async for text in response.aiter_text():
                for event in decoder.feed(text):
                    self._handle_event(event.event, event.data)
        except httpx.HTTPError as e:
            logger.warning(f"Event stream from '{self.name}' failed: {e}")
        finally:
            if self._endpoint_ready is not None and not self._endpoint_ready.done():
                self._endpoint_ready.set_exception(
                    MCPConnectionError(f"Event stream {self.url} ended before the endpoint event")
                )
            self._queue.put_nowait(None)

    def _handle_event(self, event_type: str, data: str) -> None:
        if event_type == "endpoint":
            endpoint = urljoin(self.url, data.strip())
            if self._endpoint_ready is not None and not self._endpoint_ready.done():
                self._endpoint_ready.set_result(endpoint)
            else:
                self.endpoint = endpoint
        elif event_type == "message":
            message = decode_message(data, self.name)
            if message is not None:
                self._queue.put_nowait(message)
        else:
            logger.debug(f"Ignoring '{event_type}' event from '{self.name}'")

    async def send(self, message: dict[str, Any]) -> None:
        if self.endpoint is None or self._client is None:
            raise MCPConnectionError(f"Transport to '{self.name}' is not connected")
        try:
            response = await post_json(
                self.endpoint, message, headers=self.headers, client=self._client
            )
        except httpx.HTTPError as e:
            raise MCPConnectionError(f"POST to {self.endpoint} failed: {e}") from e
        if response.status_code >= 400:
            raise MCPConnectionError(
                f"POST to {self.endpoint} returned HTTP {response.status_code}: {response.text[:200]}"
            )

    async def messages(self) -> AsyncIterator[Any]:
        while True:
            message = await self._queue.get()
            if message is None:
                return
            yield message

    async def close(self) -> None:
        if self._endpoint_ready is not None and not self._endpoint_ready.done():
            self._endpoint_ready.cancel()
        if self._reader_task is not None:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        await self._stack.aclose()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        self.endpoint = None


def create_transport(name: str, config: ClientConnectionConfig) -> ClientTransport:
    """Build the transport described by a connection config."""
    if config.transport == "stdio":
        return StdioClientTransport(
            command=config.command,  # type: ignore[arg-type]
            args=config.args,
            env=config.env,
            name=name,
        )
    return SseClientTransport(url=config.url, headers=config.headers, name=name)  # type: ignore[arg-type]
