"""MCP client/server bridge."""

__version__ = "1.0.0"
