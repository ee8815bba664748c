"""Agent module for chat interface with tool calling."""

from mcp_bridge.agent.runner import AgentRunner, ChatRequest, ChatResponse

__all__ = ["AgentRunner", "ChatRequest", "ChatResponse"]
