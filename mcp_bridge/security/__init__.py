"""Security modules: authentication."""

from mcp_bridge.security.auth import verify_auth_token, AuthMiddleware

__all__ = ["verify_auth_token", "AuthMiddleware"]
