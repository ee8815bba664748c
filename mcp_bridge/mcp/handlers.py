"""MCP method handlers for JSON-RPC requests."""

import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from mcp_bridge.mcp.models import (
    CancelledParams,
    GetPromptParams,
    InitializeParams,
    InitializeResult,
    PaginatedParams,
    PromptsListResult,
    ReadResourceParams,
    ReadResourceResult,
    ResourcesListResult,
    ServerCapabilities,
    ServerInfo,
    ToolsListResult,
    ToolCallParams,
)
from mcp_bridge.mcp.registry import ServerRegistry
from mcp_bridge.mcp.session import LATEST_PROTOCOL_VERSION, ServerSession
from mcp_bridge.mcp.errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    McpError,
    make_error_data,
)
from mcp_bridge.config.loader import get_settings

logger = logging.getLogger(__name__)

# Protocol version reported outside a handshake (e.g. on the info endpoint)
PROTOCOL_VERSION = LATEST_PROTOCOL_VERSION


def paginate(items: list[Any], cursor: str | None, page_size: int) -> tuple[list[Any], str | None]:
    """Slice a list page. Cursors are opaque to clients; here they are offsets."""
    start = 0
    if cursor is not None:
        if not cursor.isdigit() or int(cursor) > len(items):
            raise McpError(INVALID_PARAMS, f"Invalid cursor: {cursor}")
        start = int(cursor)
    end = start + page_size
    next_cursor = str(end) if end < len(items) else None
    return items[start:end], next_cursor


def server_capabilities() -> ServerCapabilities:
    return ServerCapabilities(
        tools={"listChanged": False},
        resources={"subscribe": False, "listChanged": False},
        prompts={"listChanged": False},
    )


class MCPHandlers:
    """Handlers for MCP protocol methods, bound to one session."""

    def __init__(self, registry: ServerRegistry, session: ServerSession | None = None):
        self.registry = registry
        self.session = session or ServerSession(require_initialize=False)
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "initialize": self.handle_initialize,
            "notifications/initialized": self.handle_initialized,
            "notifications/cancelled": self.handle_cancelled,
            "ping": self.handle_ping,
            "tools/list": self.handle_tools_list,
            "tools/call": self.handle_tools_call,
            "resources/list": self.handle_resources_list,
            "resources/read": self.handle_resources_read,
            "prompts/list": self.handle_prompts_list,
            "prompts/get": self.handle_prompts_get,
        }

    async def handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle the initialize request."""
        init_params = InitializeParams(**params)
        version = self.session.begin_initialize(init_params)

        settings = get_settings()
        logger.info(
            f"Initializing session {self.session.session_id} for "
            f"{init_params.clientInfo.name} {init_params.clientInfo.version} "
            f"(protocol {version})"
        )

        result = InitializeResult(
            protocolVersion=version,
            capabilities=server_capabilities(),
            serverInfo=ServerInfo(
                name=settings.server_name,
                version=settings.server_version,
            ),
            instructions=settings.server_instructions or None,
        )
        return result.model_dump(exclude_none=True)

    async def handle_initialized(self, params: dict[str, Any]) -> None:
        """Handle the notifications/initialized notification (no response)."""
        self.session.mark_initialized()
        logger.info("Client confirmed initialization")
        return None

    async def handle_cancelled(self, params: dict[str, Any]) -> None:
        """Handle notifications/cancelled by cancelling the in-flight request."""
        cancel = CancelledParams(**params)
        self.session.cancel(cancel.requestId, cancel.reason)
        return None

    async def handle_ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def handle_tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle the tools/list request."""
        page = PaginatedParams(**params)
        tools, next_cursor = paginate(
            self.registry.tools.list_tools(), page.cursor, get_settings().list_page_size
        )
        result = ToolsListResult(tools=tools, nextCursor=next_cursor)
        return result.model_dump(exclude_none=True)

    async def handle_tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle the tools/call request."""
        call_params = ToolCallParams(**params)
        logger.info(f"Calling tool: {call_params.name}")
        result = await self.registry.tools.call_tool(
            call_params.name, call_params.arguments
        )
        return result.model_dump(exclude_none=True)

    async def handle_resources_list(self, params: dict[str, Any]) -> dict[str, Any]:
        page = PaginatedParams(**params)
        resources, next_cursor = paginate(
            self.registry.resources.list_resources(), page.cursor, get_settings().list_page_size
        )
        return ResourcesListResult(resources=resources, nextCursor=next_cursor).model_dump(
            exclude_none=True
        )

    async def handle_resources_read(self, params: dict[str, Any]) -> dict[str, Any]:
        read_params = ReadResourceParams(**params)
        contents = await self.registry.resources.read(read_params.uri)
        return ReadResourceResult(contents=[contents]).model_dump(exclude_none=True)

    async def handle_prompts_list(self, params: dict[str, Any]) -> dict[str, Any]:
        page = PaginatedParams(**params)
        prompts, next_cursor = paginate(
            self.registry.prompts.list_prompts(), page.cursor, get_settings().list_page_size
        )
        return PromptsListResult(prompts=prompts, nextCursor=next_cursor).model_dump(
            exclude_none=True
        )

    async def handle_prompts_get(self, params: dict[str, Any]) -> dict[str, Any]:
        prompt_params = GetPromptParams(**params)
        result = self.registry.prompts.get(prompt_params.name, prompt_params.arguments)
        return result.model_dump(exclude_none=True)

    def has_method(self, method: str) -> bool:
        return method in self._handlers

    async def dispatch(
        self, method: str, params: dict[str, Any]
    ) -> tuple[Any | None, dict[str, Any] | None]:
        """
        Dispatch a method call to the appropriate handler.

        Returns (result, error) tuple. One will be None.
        """
        handler = self._handlers.get(method)
        if handler is None:
            return None, make_error_data(
                METHOD_NOT_FOUND, f"Method not found: {method}"
            )

        try:
            self.session.check_ready(method)
            result = await handler(params)
            return result, None
        except McpError as e:
            logger.info(f"Method {method} failed: {e.message}")
            return None, e.to_error_data()
        except ValidationError as e:
            logger.warning(f"Invalid params for {method}: {e}")
            return None, make_error_data(
                INVALID_PARAMS,
                f"Invalid params for {method}",
                e.errors(include_url=False, include_context=False),
            )
        except Exception as e:
            logger.exception(f"Error handling method {method}")
            return None, make_error_data(
                INTERNAL_ERROR, f"Error processing request: {str(e)}"
            )
