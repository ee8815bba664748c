"""Tests for the chat and remote-server REST endpoints."""

from fastapi.testclient import TestClient
from httpx import AsyncClient

from mcp_bridge.agent.runner import AgentRunner
from mcp_bridge.config.loader import get_settings
from mcp_bridge.main import app

from test_agent_runner import FakeOpenAI, completion
from test_client_manager import InProcessManager, configs


def install_runner(*answers: str) -> FakeOpenAI:
    openai = FakeOpenAI([completion(answer) for answer in answers])
    app.state.agent_runner = AgentRunner(openai_client=openai)
    return openai


class TestChat:

    def test_chat_unavailable_without_model(self, client: TestClient, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "")
        response = client.post("/api/chat", json={"message": "Hi"})
        assert response.status_code == 503

    def test_chat(self, client: TestClient):
        install_runner("Hello!")
        response = client.post("/api/chat", json={"message": "Hi"})
        assert response.status_code == 200
        data = response.json()
        assert data["text"] == "Hello!"
        assert data["tools_used"] == []

    def test_chat_rejects_empty_message(self, client: TestClient):
        install_runner()
        response = client.post("/api/chat", json={"message": ""})
        assert response.status_code == 400
        assert "Invalid request" in response.json()["error"]

    def test_chat_rejects_invalid_json(self, client: TestClient):
        install_runner()
        response = client.post(
            "/api/chat", content="{oops", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    def test_chat_is_rate_limited(self, client: TestClient, monkeypatch):
        monkeypatch.setenv("CHAT_RATE_LIMIT_PER_HOUR", "1")
        get_settings.cache_clear()
        install_runner("one", "two")

        assert client.post("/api/chat", json={"message": "first"}).status_code == 200
        limited = client.post("/api/chat", json={"message": "second"})
        assert limited.status_code == 429
        assert "1 messages per hour" in limited.json()["message"]

    def test_chat_stream(self, client: TestClient):
        install_runner("Streamed hello")
        with client.stream("POST", "/api/chat/stream", json={"message": "Hi"}) as response:
            assert response.status_code == 200
            body = "".join(response.iter_text())

        assert "event: status" in body
        assert "event: token" in body
        assert "event: done" in body
        assert "Streamed hello" in body

    def test_chat_status(self, client: TestClient, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "")
        data = client.get("/api/chat/status").json()
        assert data["enabled"] is False
        assert data["remote_servers"] == []

        install_runner()
        assert client.get("/api/chat/status").json()["enabled"] is True


class TestClients:

    def test_no_manager(self, client: TestClient):
        assert client.get("/api/clients").json() == {"clients": [], "tool_count": 0}

    async def test_connected_servers_and_tools(self, async_client: AsyncClient):
        manager = InProcessManager(configs("up-a", "down-b"))
        await manager.connect_all()
        app.state.client_manager = manager
        try:
            data = (await async_client.get("/api/clients")).json()
            by_name = {entry["name"]: entry for entry in data["clients"]}
            assert by_name["up-a"]["connected"] is True
            assert "calculator-add" in by_name["up-a"]["tools"]
            assert by_name["down-b"]["connected"] is False
            assert by_name["down-b"]["tools"] == []
            assert data["tool_count"] == 8

            root = (await async_client.get("/")).json()
            assert root["remote_servers"] == 1
        finally:
            await manager.close_all()

