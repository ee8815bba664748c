"""Configuration loading and management."""

from mcp_bridge.config.loader import (
    ClientConnectionConfig,
    Settings,
    get_client_configs,
    get_settings,
    load_bridge_config,
)

__all__ = [
    "ClientConnectionConfig",
    "Settings",
    "get_client_configs",
    "get_settings",
    "load_bridge_config",
]
