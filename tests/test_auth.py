"""Tests for bearer token authentication."""

import pytest
from fastapi.testclient import TestClient

from mcp_bridge.config.loader import get_settings
from mcp_bridge.mcp.errors import AUTHENTICATION_ERROR
from mcp_bridge.security.auth import extract_bearer_token, verify_auth_token


@pytest.fixture
def auth_token(monkeypatch):
    monkeypatch.setenv("MCP_AUTH_TOKEN", "s3cret")
    get_settings.cache_clear()
    return "s3cret"


PING = {"jsonrpc": "2.0", "id": 1, "method": "ping"}


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Bearer abc", "abc"),
        ("bearer abc", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        ("Bearer a b", None),
        (None, None),
    ],
)
def test_extract_bearer_token(header, expected):
    assert extract_bearer_token(header) == expected


def test_verify_without_configured_token(monkeypatch):
    monkeypatch.setenv("MCP_AUTH_TOKEN", "")
    get_settings.cache_clear()
    assert verify_auth_token(None) is True


def test_verify_with_configured_token(auth_token):
    assert verify_auth_token(auth_token) is True
    assert verify_auth_token("wrong") is False
    assert verify_auth_token(None) is False


def test_message_requires_token(client: TestClient, auth_token):
    response = client.post("/message", json=PING)
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert response.json()["error"]["code"] == AUTHENTICATION_ERROR


def test_wrong_token_is_rejected(client: TestClient, auth_token):
    response = client.post("/message", json=PING, headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_valid_token_is_accepted(client: TestClient, auth_token):
    response = client.post(
        "/message", json=PING, headers={"Authorization": f"Bearer {auth_token}"}
    )
    assert response.status_code == 200
    assert response.json()["result"] == {}


def test_api_paths_get_rest_style_error(client: TestClient, auth_token):
    response = client.get("/api/chat/status")
    assert response.status_code == 401
    assert response.json()["error"] == "Authentication required"


def test_public_paths_stay_open(client: TestClient, auth_token):
    assert client.get("/health").status_code == 200
    assert client.get("/").status_code == 200


def test_preflight_is_not_authenticated(client: TestClient, auth_token):
    response = client.options(
        "/message",
        headers={"Origin": "http://example.com", "Access-Control-Request-Method": "POST"},
    )
    assert response.status_code == 200
