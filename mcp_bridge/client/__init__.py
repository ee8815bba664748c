"""MCP client: connect to remote servers over stdio or HTTP/SSE."""

from mcp_bridge.client.exceptions import (
    MCPCapabilityError,
    MCPClientError,
    MCPConnectionError,
    MCPProtocolError,
    MCPTimeoutError,
    MCPToolInvocationError,
)
from mcp_bridge.client.manager import McpClientManager, RemoteTool
from mcp_bridge.client.session import McpClientSession
from mcp_bridge.client.transports import (
    ClientTransport,
    SseClientTransport,
    StdioClientTransport,
    create_transport,
)

__all__ = [
    "MCPCapabilityError",
    "MCPClientError",
    "MCPConnectionError",
    "MCPProtocolError",
    "MCPTimeoutError",
    "MCPToolInvocationError",
    "McpClientManager",
    "McpClientSession",
    "RemoteTool",
    "ClientTransport",
    "SseClientTransport",
    "StdioClientTransport",
    "create_transport",
]
