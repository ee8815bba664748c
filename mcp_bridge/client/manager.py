"""Connects to the configured remote MCP servers and aggregates their tools."""

import asyncio
import logging
from typing import Any

from mcp_bridge.client.exceptions import MCPCapabilityError, MCPClientError
from mcp_bridge.client.session import McpClientSession
from mcp_bridge.client.transports import create_transport
from mcp_bridge.config.loader import ClientConnectionConfig, get_client_configs
from mcp_bridge.mcp.models import Tool, ToolCallResult

logger = logging.getLogger(__name__)

# <server>__<tool>
QUALIFIED_NAME_SEPARATOR = "__"


def qualify(server: str, tool_name: str) -> str:
    return f"{server}{QUALIFIED_NAME_SEPARATOR}{tool_name}"


def split_qualified_name(qualified_name: str) -> tuple[str, str]:
    """Split '<server>__<tool>'. Server names never contain the separator."""
    server, sep, tool_name = qualified_name.partition(QUALIFIED_NAME_SEPARATOR)
    if not sep or not server or not tool_name:
        raise MCPClientError(f"Not a qualified tool name: {qualified_name!r}")
    return server, tool_name


class RemoteTool:
    """A tool offered by a remote server, under its qualified name."""

    def __init__(self, server: str, tool: Tool):
        self.server = server
        self.tool = tool

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def qualified_name(self) -> str:
        return qualify(self.server, self.tool.name)

    def to_openai_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.qualified_name,
                "description": f"[{self.server}] {self.tool.description}".strip(),
                "parameters": self.tool.inputSchema,
            },
        }


class McpClientManager:
    """Owns one McpClientSession per configured, enabled remote server."""

    def __init__(self, configs: dict[str, ClientConnectionConfig]):
        self.configs = configs
        self.sessions: dict[str, McpClientSession] = {}
        self.errors: dict[str, str] = {}

    @classmethod
    def from_config(cls, config: dict[str, Any] | None = None) -> "McpClientManager":
        return cls(get_client_configs(config))

    def create_session(self, name: str, config: ClientConnectionConfig) -> McpClientSession:
        return McpClientSession(
            create_transport(name, config),
            name=name,
            request_timeout=config.request_timeout,
        )

    async def _connect(self, name: str, config: ClientConnectionConfig) -> None:
        session = self.create_session(name, config)
        try:
            await session.connect()
        except MCPClientError as e:
            logger.error(f"Could not connect to MCP server '{name}': {e}")
            self.errors[name] = str(e)
            return
        except Exception as e:
            logger.exception(f"Unexpected error connecting to MCP server '{name}'")
            self.errors[name] = str(e) or type(e).__name__
            await session.close()
            return
        self.sessions[name] = session
        self.errors.pop(name, None)

    async def connect_all(self) -> dict[str, bool]:
        """Connect to every configured server concurrently. Failures are logged, not raised."""
        pending = {
            name: config for name, config in self.configs.items() if name not in self.sessions
        }
        await asyncio.gather(*(self._connect(name, config) for name, config in pending.items()))
        logger.info(f"Connected to {len(self.sessions)}/{len(self.configs)} MCP servers")
        return {name: name in self.sessions for name in self.configs}

    async def list_tools(self) -> list[RemoteTool]:
        """Tools from every connected server; a failing server contributes none."""
        names = list(self.sessions)
        results = await asyncio.gather(
            *(self.sessions[name].list_tools() for name in names), return_exceptions=True
        )
        tools: list[RemoteTool] = []
        for name, result in zip(names, results):
            if isinstance(result, MCPCapabilityError):
                continue
            if isinstance(result, BaseException):
                logger.warning(f"Could not list tools of '{name}': {result}")
                continue
            tools.extend(RemoteTool(name, tool) for tool in result)
        return tools

    def get_session(self, server: str) -> McpClientSession:
        session = self.sessions.get(server)
        if session is None:
            raise MCPClientError(f"Unknown or disconnected MCP server: {server}")
        return session

    async def call_tool(self, qualified_name: str, arguments: dict[str, Any] | None = None) -> ToolCallResult:
        """Route a call for '<server>__<tool>' to the owning server."""
        server, tool_name = split_qualified_name(qualified_name)
        return await self.get_session(server).call_tool(tool_name, arguments)

    def status(self) -> list[dict[str, Any]]:
        status = []
        for name, config in self.configs.items():
            session = self.sessions.get(name)
            entry: dict[str, Any] = {
                "name": name,
                "transport": config.transport,
                "connected": bool(session and session.connected),
            }
            if session is not None and session.server_info is not None:
                entry["server_info"] = session.server_info.model_dump()
                entry["protocol_version"] = session.protocol_version
            if name in self.errors:
                entry["error"] = self.errors[name]
            status.append(entry)
        return status

    async def close_all(self) -> None:
        sessions, self.sessions = self.sessions, {}
        await asyncio.gather(
            *(session.close() for session in sessions.values()), return_exceptions=True
        )
