"""Tests for settings and YAML configuration loading."""

import pytest

from mcp_bridge.config.loader import (
    DEFAULT_PROVIDERS,
    ClientConnectionConfig,
    get_client_configs,
    get_enabled_providers,
    get_settings,
    load_bridge_config,
)


def test_settings_defaults(settings):
    assert settings.server_name == "mcp-bridge"
    assert settings.max_message_bytes == 4 * 1024 * 1024
    assert settings.list_page_size == 50


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("SESSION_TIMEOUT_MINUTES", "5")
    monkeypatch.setenv("MCP_AUTH_TOKEN", "x")
    get_settings.cache_clear()
    settings = get_settings()
    assert settings.session_timeout_minutes == 5
    assert settings.auth_enabled


def test_load_yaml(tmp_path):
    path = tmp_path / "servers.yaml"
    path.write_text(
        "enabled_providers:\n"
        "  - diagnostics\n"
        "clients:\n"
        "  weather:\n"
        "    transport: sse\n"
        "    url: http://weather.local/sse\n"
        "    headers:\n"
        "      Authorization: Bearer abc\n"
    )
    config = load_bridge_config(path)
    assert get_enabled_providers(config) == ["diagnostics"]

    clients = get_client_configs(config)
    assert clients["weather"].url == "http://weather.local/sse"
    assert clients["weather"].headers == {"Authorization": "Bearer abc"}


def test_missing_file_gives_defaults(tmp_path):
    config = load_bridge_config(tmp_path / "absent.yaml")
    assert get_enabled_providers(config) == DEFAULT_PROVIDERS
    assert get_client_configs(config) == {}


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    config = load_bridge_config(path)
    assert get_enabled_providers(config) == DEFAULT_PROVIDERS


def test_config_path_setting(tmp_path, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text("enabled_providers: [calculator]\n")
    monkeypatch.setenv("CONFIG_PATH", str(path))
    get_settings.cache_clear()
    assert get_enabled_providers() == ["calculator"]


@pytest.mark.parametrize("name", ["has space", "double__underscore", "dot.ted"])
def test_invalid_server_names(name):
    with pytest.raises(ValueError, match="Invalid MCP server name"):
        get_client_configs({"clients": {name: {"command": "x"}}})


def test_transport_fields_are_required():
    with pytest.raises(ValueError, match="requires 'command'"):
        ClientConnectionConfig(transport="stdio")
    with pytest.raises(ValueError, match="requires 'url'"):
        ClientConnectionConfig(transport="sse")


def test_disabled_clients_are_dropped():
    clients = get_client_configs(
        {"clients": {"a": {"command": "x", "enabled": False}, "b": {"command": "y"}}}
    )
    assert list(clients) == ["b"]
