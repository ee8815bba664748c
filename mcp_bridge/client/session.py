"""Client session: handshake, request/response correlation and typed MCP calls."""

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel, ValidationError

from mcp_bridge.client.exceptions import (
    MCPCapabilityError,
    MCPClientError,
    MCPConnectionError,
    MCPProtocolError,
    MCPTimeoutError,
    MCPToolInvocationError,
)
from mcp_bridge.client.transports import ClientTransport
from mcp_bridge.config.loader import get_settings
from mcp_bridge.mcp.errors import METHOD_NOT_FOUND, make_error_data
from mcp_bridge.mcp.models import (
    ClientInfo,
    GetPromptResult,
    InitializeParams,
    InitializeResult,
    Prompt,
    PromptsListResult,
    ReadResourceResult,
    Resource,
    ResourcesListResult,
    ServerCapabilities,
    ServerInfo,
    Tool,
    ToolCallResult,
    ToolsListResult,
)
from mcp_bridge.mcp.session import LATEST_PROTOCOL_VERSION, SUPPORTED_PROTOCOL_VERSIONS

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Guards against a server that keeps returning cursors
MAX_LIST_PAGES = 100


class McpClientSession:
    """
    One client connection to a remote MCP server.

    Requests get increasing integer ids and wait on a future; a single
    reader task resolves the futures as responses arrive, in any order.
    """

    def __init__(
        self,
        transport: ClientTransport,
        name: str | None = None,
        request_timeout: float | None = None,
    ):
        settings = get_settings()
        self.transport = transport
        self.name = name or transport.name
        self.request_timeout = request_timeout or float(settings.default_timeout)
        self.protocol_version: str | None = None
        self.server_info: ServerInfo | None = None
        self.server_capabilities: ServerCapabilities | None = None
        self.instructions: str | None = None
        self.notification_handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {}

        self._next_id = 0
        self._pending: dict[int, asyncio.Future] = {}
        self._reader_task: asyncio.Task | None = None
        self._closed = False
        self._tools: list[Tool] | None = None

    async def __aenter__(self) -> "McpClientSession":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return (
            not self._closed
            and self._reader_task is not None
            and not self._reader_task.done()
        )

    @property
    def tools_stale(self) -> bool:
        return self._tools is None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the transport and perform the initialize handshake."""
        await self.transport.connect()
        self._reader_task = asyncio.create_task(self._read_loop())
        try:
            await self.initialize()
        except BaseException:
            await self.close()
            raise

    async def initialize(self) -> InitializeResult:
        settings = get_settings()
        params = InitializeParams(
            protocolVersion=LATEST_PROTOCOL_VERSION,
            capabilities={},
            clientInfo=ClientInfo(name=settings.server_name, version=settings.server_version),
        )
        raw = await self.request("initialize", params.model_dump())
        result = self._parse(InitializeResult, raw, "initialize")

        if result.protocolVersion not in SUPPORTED_PROTOCOL_VERSIONS:
            raise MCPProtocolError(
                f"Server '{self.name}' chose unsupported protocol version {result.protocolVersion}"
            )

        self.protocol_version = result.protocolVersion
        self.server_info = result.serverInfo
        self.server_capabilities = result.capabilities
        self.instructions = result.instructions
        await self.notify("notifications/initialized")

        logger.info(
            f"Initialized session with '{self.name}' "
            f"({result.serverInfo.name} {result.serverInfo.version}, protocol {result.protocolVersion})"
        )
        return result

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._fail_pending(MCPConnectionError(f"Session with '{self.name}' closed"))
        if self._reader_task is not None:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
        await self.transport.close()
        logger.info(f"Closed session with '{self.name}'")

    # -------------------------------------------------------------------------
    # JSON-RPC plumbing
    # -------------------------------------------------------------------------

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and wait for its result."""
        if self._closed:
            raise MCPConnectionError(f"Session with '{self.name}' is closed")
        if self._reader_task is not None and self._reader_task.done():
            raise MCPConnectionError(f"Connection to '{self.name}' was lost")

        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        timeout = timeout or self.request_timeout

        try:
            await self.transport.send(
                {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}
            )
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            await self._send_cancelled(request_id, f"Request timed out after {timeout}s")
            raise MCPTimeoutError(
                f"Request {method} to '{self.name}' timed out after {timeout}s"
            ) from None
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self.transport.send(message)

    async def _send_cancelled(self, request_id: int, reason: str) -> None:
        try:
            await self.notify(
                "notifications/cancelled", {"requestId": request_id, "reason": reason}
            )
        except MCPClientError as e:
            logger.debug(f"Could not send cancellation to '{self.name}': {e}")

    async def _read_loop(self) -> None:
        try:
            async for message in self.transport.messages():
                items = message if isinstance(message, list) else [message]
                for item in items:
                    if isinstance(item, dict):
                        await self._handle_message(item)
        except MCPClientError as e:
            logger.warning(f"Transport for '{self.name}' failed: {e}")
        finally:
            self._fail_pending(MCPConnectionError(f"Connection to '{self.name}' was lost"))
            if not self._closed:
                logger.warning(f"Server '{self.name}' closed the connection")

    async def _handle_message(self, message: dict[str, Any]) -> None:
        if "method" in message:
            if message.get("id") is not None:
                await self._answer_server_request(message)
            else:
                await self._handle_notification(message["method"], message.get("params") or {})
            return

        request_id = message.get("id")
        future = self._pending.get(request_id)  # type: ignore[arg-type]
        if future is None or future.done():
            logger.debug(f"Ignoring response for unknown request {request_id!r} from '{self.name}'")
            return

        error = message.get("error")
        if error is not None:
            if not isinstance(error, dict):
                error = {}
            future.set_exception(
                MCPProtocolError(
                    str(error.get("message", "Unknown error")),
                    error.get("code"),
                    error.get("data"),
                )
            )
        else:
            future.set_result(message.get("result"))

    async def _answer_server_request(self, message: dict[str, Any]) -> None:
        method = message["method"]
        reply: dict[str, Any] = {"jsonrpc": "2.0", "id": message["id"]}
        if method == "ping":
            reply["result"] = {}
        else:
            reply["error"] = make_error_data(METHOD_NOT_FOUND, f"Method not found: {method}")
        try:
            await self.transport.send(reply)
        except MCPClientError as e:
            logger.warning(f"Could not answer {method} from '{self.name}': {e}")

    async def _handle_notification(self, method: str, params: dict[str, Any]) -> None:
        if method == "notifications/tools/list_changed":
            logger.info(f"Tool list of '{self.name}' changed")
            self._tools = None
        handler = self.notification_handlers.get(method)
        if handler is not None:
            await handler(params)
        else:
            logger.debug(f"Notification {method} from '{self.name}'")

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)

    def _parse(self, model: type[ModelT], raw: Any, method: str) -> ModelT:
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            raise MCPProtocolError(f"Malformed {method} result from '{self.name}': {e}") from e

    def _require(self, capability: str) -> None:
        capabilities = self.server_capabilities
        if capabilities is None or getattr(capabilities, capability) is None:
            raise MCPCapabilityError(capability, self.name)

    async def _list_all(self, method: str, model: type[ModelT], field: str) -> list[Any]:
        items: list[Any] = []
        cursor: str | None = None
        for _ in range(MAX_LIST_PAGES):
            params = {"cursor": cursor} if cursor else {}
            page = self._parse(model, await self.request(method, params), method)
            items.extend(getattr(page, field))
            cursor = page.nextCursor  # type: ignore[attr-defined]
            if not cursor:
                return items
        logger.warning(f"Stopped paging {method} on '{self.name}' after {MAX_LIST_PAGES} pages")
        return items

    # -------------------------------------------------------------------------
    # MCP operations
    # -------------------------------------------------------------------------

    async def ping(self) -> None:
        await self.request("ping")

    async def list_tools(self, refresh: bool = False) -> list[Tool]:
        """List the server's tools, following cursors. Cached until list_changed."""
        if self._tools is None or refresh:
            self._require("tools")
            self._tools = await self._list_all("tools/list", ToolsListResult, "tools")
        return list(self._tools)

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ToolCallResult:
        """
        Call a tool on the server.

        Tool failures come back as a result with isError set; a JSON-RPC
        error raises MCPToolInvocationError.
        """
        try:
            raw = await self.request(
                "tools/call", {"name": name, "arguments": arguments or {}}, timeout=timeout
            )
        except MCPToolInvocationError:
            raise
        except MCPProtocolError as e:
            raise MCPToolInvocationError(name, str(e), e.code, e.data) from e
        return self._parse(ToolCallResult, raw, "tools/call")

    async def list_resources(self) -> list[Resource]:
        self._require("resources")
        return await self._list_all("resources/list", ResourcesListResult, "resources")

    async def read_resource(self, uri: str) -> ReadResourceResult:
        self._require("resources")
        raw = await self.request("resources/read", {"uri": uri})
        return self._parse(ReadResourceResult, raw, "resources/read")

    async def list_prompts(self) -> list[Prompt]:
        self._require("prompts")
        return await self._list_all("prompts/list", PromptsListResult, "prompts")

    async def get_prompt(self, name: str, arguments: dict[str, str] | None = None) -> GetPromptResult:
        self._require("prompts")
        raw = await self.request("prompts/get", {"name": name, "arguments": arguments or {}})
        return self._parse(GetPromptResult, raw, "prompts/get")
