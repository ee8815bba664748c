"""Exceptions raised by the MCP client side of the bridge."""

from typing import Any


class MCPClientError(Exception):
    """Base class for all MCP client errors."""


class MCPConnectionError(MCPClientError):
    """The connection to a server failed or was lost."""


class MCPTimeoutError(MCPConnectionError):
    """A connection attempt or request timed out."""


class MCPProtocolError(MCPClientError):
    """The server answered with a JSON-RPC error or broke the protocol."""

    def __init__(self, message: str, code: int | None = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class MCPToolInvocationError(MCPProtocolError):
    """A tools/call request was answered with a JSON-RPC error."""

    def __init__(self, tool_name: str, message: str, code: int | None = None, data: Any = None):
        super().__init__(f"Error invoking tool '{tool_name}': {message}", code, data)
        self.tool_name = tool_name
        self.original_message = message


class MCPCapabilityError(MCPClientError):
    """The server did not advertise the capability a call needs."""

    def __init__(self, capability: str, server: str | None = None):
        target = f"Server '{server}'" if server else "Server"
        super().__init__(f"{target} does not support '{capability}'")
        self.capability = capability
        self.server = server
