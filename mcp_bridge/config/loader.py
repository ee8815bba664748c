"""Configuration loading from environment and YAML files."""

import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PROVIDERS = ["calculator", "diagnostics"]

# Remote server names become part of qualified tool names (<server>__<tool>)
SERVER_NAME_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Authentication
    mcp_auth_token: str = ""

    # OpenAI API (for the chat agent)
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_model: str = "gpt-4o"

    # Rate limiting
    rate_limit_enabled: bool = False
    rate_limit_per_minute: int = 60

    # Chat rate limiting (separate from MCP rate limiting)
    chat_rate_limit_per_hour: int = 50  # Messages per hour per IP

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Timeouts
    default_timeout: int = 30
    client_connect_timeout: int = 10

    # Server info
    server_name: str = "mcp-bridge"
    server_version: str = "1.0.0"
    server_instructions: str = ""

    # Host and port
    host: str = "0.0.0.0"
    port: int = 8000

    # Protocol limits
    session_timeout_minutes: int = 30
    sse_keepalive_seconds: float = 30.0
    max_message_bytes: int = 4 * 1024 * 1024
    max_concurrent_requests: int = 32
    list_page_size: int = 50

    # Agent
    agent_max_tool_rounds: int = 8
    agent_use_remote_tools: bool = True

    # Path to the YAML file with providers and remote MCP servers
    config_path: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def auth_enabled(self) -> bool:
        """Check if authentication is enabled."""
        return bool(self.mcp_auth_token)

    @property
    def chat_enabled(self) -> bool:
        """Check if chat agent is enabled (OpenAI configured)."""
        return bool(self.openai_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


class ClientConnectionConfig(BaseModel):
    """Connection settings for one remote MCP server."""

    transport: Literal["stdio", "sse"] = "stdio"
    enabled: bool = True

    # stdio
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    # sse
    url: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    request_timeout: float | None = None

    @model_validator(mode="after")
    def check_transport_fields(self) -> "ClientConnectionConfig":
        if self.transport == "stdio" and not self.command:
            raise ValueError("stdio transport requires 'command'")
        if self.transport == "sse" and not self.url:
            raise ValueError("sse transport requires 'url'")
        return self


def _default_config() -> dict[str, Any]:
    return {"enabled_providers": list(DEFAULT_PROVIDERS), "clients": {}}


def load_bridge_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """
    Load bridge configuration from YAML file.

    Args:
        config_path: Path to the config file. If None, uses the configured
            path or the default location.

    Returns:
        Dictionary with configuration data.
    """
    if config_path is None:
        settings = get_settings()
        possible_paths = [
            Path(settings.config_path) if settings.config_path else None,
            Path("config/servers.yaml"),
            Path(__file__).parent.parent.parent / "config" / "servers.yaml",
        ]
        for path in possible_paths:
            if path is not None and path.exists():
                config_path = path
                break
        else:
            return _default_config()

    config_path = Path(config_path)
    if not config_path.exists():
        return _default_config()

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    return config


def get_enabled_providers(config: dict[str, Any] | None = None) -> list[str]:
    """Get list of enabled provider names."""
    if config is None:
        config = load_bridge_config()
    return config.get("enabled_providers", list(DEFAULT_PROVIDERS))


def get_client_configs(
    config: dict[str, Any] | None = None,
) -> dict[str, ClientConnectionConfig]:
    """
    Get validated connection settings for the configured remote servers.

    Disabled entries are dropped. Raises ValueError on an invalid server
    name or connection block.
    """
    if config is None:
        config = load_bridge_config()

    clients: dict[str, ClientConnectionConfig] = {}
    for name, raw in (config.get("clients") or {}).items():
        if not SERVER_NAME_PATTERN.match(name):
            raise ValueError(
                f"Invalid MCP server name '{name}': use letters, digits and hyphens"
            )
        client_config = ClientConnectionConfig(**(raw or {}))
        if client_config.enabled:
            clients[name] = client_config
    return clients
