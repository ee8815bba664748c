"""Agent runner that uses OpenAI with local and remote MCP tools - with SSE streaming support."""

import asyncio
import logging
import time
from typing import Any, AsyncGenerator

from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from mcp_bridge.client.exceptions import MCPClientError
from mcp_bridge.client.manager import McpClientManager, QUALIFIED_NAME_SEPARATOR, split_qualified_name
from mcp_bridge.config.loader import get_settings
from mcp_bridge.mcp.models import Tool, ToolCallResult, load_json
from mcp_bridge.mcp.registry import ServerRegistry, get_registry

logger = logging.getLogger(__name__)

LOCAL_SERVER = "local"

PREVIEW_LENGTH = 150


# =============================================================================
# Request/Response Models
# =============================================================================


class ChatRequest(BaseModel):
    """Request model for chat endpoint."""

    message: str = Field(..., min_length=1, description="User message")
    conversation_history: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Previous messages in the conversation"
    )
    use_remote_tools: bool | None = Field(
        default=None,
        description="Offer tools from connected MCP servers (defaults to the server setting)"
    )


class ChatResponse(BaseModel):
    """Final answer of the agent."""

    text: str
    tools_used: list[str] = Field(default_factory=list)
    servers_consulted: list[str] = Field(default_factory=list)
    processing_time_ms: int = 0
    model: str = ""


# =============================================================================
# SSE Event Models
# =============================================================================


class SSEEvent(BaseModel):
    """Base class for SSE events."""
    type: str


class StatusEvent(SSEEvent):
    """Status update event."""
    type: str = "status"
    message: str


class ToolStartEvent(SSEEvent):
    """Tool execution started."""
    type: str = "tool_start"
    tool: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolEndEvent(SSEEvent):
    """Tool execution completed."""
    type: str = "tool_end"
    tool: str
    success: bool
    preview: str | None = None


class TokenEvent(SSEEvent):
    """Token from streaming response."""
    type: str = "token"
    content: str


class DoneEvent(SSEEvent):
    """Final response."""
    type: str = "done"
    response: ChatResponse


class ErrorEvent(SSEEvent):
    """Error event."""
    type: str = "error"
    message: str


SYSTEM_PROMPT = """
You are a helpful assistant with access to tools served over the Model Context Protocol.

## Tool Usage

- Use a tool whenever it gives a more reliable answer than reasoning alone, in particular for arithmetic.
- Tools run in parallel, so request every independent tool call in the same turn.
- Tool names of the form `server__tool` belong to connected remote servers.
- If a tool reports an error, correct the arguments or explain the problem; do not invent results.

## Response Guidelines

1. Answer in the same language as the user's question.
2. Keep answers concise and base them on the tool results.
"""


def to_openai_tool(tool: Tool) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.inputSchema,
        }
    }


# =============================================================================
# Agent Runner
# =============================================================================


class AgentRunner:
    """Runs the chat agent with tool calling and streaming support."""

    def __init__(
        self,
        registry: ServerRegistry | None = None,
        client_manager: McpClientManager | None = None,
        openai_client: AsyncOpenAI | None = None,
        model: str | None = None,
    ):
        settings = get_settings()
        self.client = openai_client or AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url or None,
        )
        self.model = model or settings.openai_model
        self.registry = registry or get_registry()
        self.client_manager = client_manager
        self.max_tool_rounds = settings.agent_max_tool_rounds
        self.use_remote_tools = settings.agent_use_remote_tools

    async def _get_tools(self, use_remote: bool) -> list[dict[str, Any]]:
        """OpenAI tool definitions for local tools and, optionally, remote ones."""
        tools = [to_openai_tool(tool) for tool in self.registry.tools.list_tools()]
        if use_remote and self.client_manager is not None:
            remote = await self.client_manager.list_tools()
            tools.extend(tool.to_openai_tool() for tool in remote)
        return tools

    def _server_for(self, tool_name: str) -> str:
        if QUALIFIED_NAME_SEPARATOR in tool_name and self.registry.tools.get(tool_name) is None:
            try:
                return split_qualified_name(tool_name)[0]
            except MCPClientError:
                # Malformed name from the model; the local registry reports it
                return LOCAL_SERVER
        return LOCAL_SERVER

    async def _execute_tool(self, tool_name: str, arguments: dict[str, Any]) -> ToolCallResult:
        """Execute a local or remote tool. Failures come back as error results."""
        if self._server_for(tool_name) == LOCAL_SERVER:
            return await self.registry.tools.call_tool(tool_name, arguments)

        if self.client_manager is None:
            return ToolCallResult.error(f"Tool not found: {tool_name}")
        try:
            return await self.client_manager.call_tool(tool_name, arguments)
        except MCPClientError as e:
            logger.warning(f"Remote tool {tool_name} failed: {e}")
            return ToolCallResult.error(str(e))

    async def _completion(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> Any:
        return await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            tools=tools if tools else None,
            tool_choice="auto" if tools else None,
            max_tokens=2048,
            temperature=0.7,
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncGenerator[SSEEvent, None]:
        """Process a chat request with streaming events."""
        start_time = time.time()
        tools_used: list[str] = []
        servers_consulted: set[str] = set()
        full_response_text = ""

        yield StatusEvent(message="Analyzing question...")

        # Build messages
        messages: list[dict[str, Any]] = [{"role": "system", "content": SYSTEM_PROMPT}]
        for msg in request.conversation_history:
            messages.append(msg)
        messages.append({"role": "user", "content": request.message})

        use_remote = self.use_remote_tools if request.use_remote_tools is None else request.use_remote_tools

        try:
            tools = await self._get_tools(use_remote)

            response = await self._completion(messages, tools)
            message = response.choices[0].message
            rounds = 0

            # Handle tool calls
            while message.tool_calls and rounds < self.max_tool_rounds:
                rounds += 1
                messages.append({
                    "role": "assistant",
                    "content": message.content,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.function.name,
                                "arguments": tc.function.arguments,
                            }
                        }
                        for tc in message.tool_calls
                    ]
                })

                # Prepare all tool calls for parallel execution
                tool_call_info = []
                for tool_call in message.tool_calls:
                    tool_name = tool_call.function.name
                    tools_used.append(tool_name)
                    servers_consulted.add(self._server_for(tool_name))

                    try:
                        arguments = load_json(tool_call.function.arguments or "{}")
                    except ValueError:
                        arguments = {}
                    if not isinstance(arguments, dict):
                        arguments = {}

                    tool_call_info.append((tool_call.id, tool_name, arguments))

                for _, tool_name, arguments in tool_call_info:
                    yield ToolStartEvent(tool=tool_name, arguments=arguments)

                if len(tool_call_info) > 1:
                    logger.info(f"Executing {len(tool_call_info)} tools in parallel")

                results = await asyncio.gather(*[
                    self._execute_tool(tool_name, arguments)
                    for _, tool_name, arguments in tool_call_info
                ])

                for (tool_call_id, tool_name, _), result in zip(tool_call_info, results):
                    text = result.text()
                    preview = text[:PREVIEW_LENGTH] + "..." if len(text) > PREVIEW_LENGTH else text
                    yield ToolEndEvent(tool=tool_name, success=not result.isError, preview=preview)

                    messages.append({
                        "role": "tool",
                        "tool_call_id": tool_call_id,
                        "content": text,
                    })

                response = await self._completion(messages, tools)
                message = response.choices[0].message

            if message.tool_calls:
                # Round limit reached; ask for an answer without tools
                logger.warning(f"Agent stopped after {self.max_tool_rounds} tool rounds")
                yield StatusEvent(message="Generating answer...")

                stream = await self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_tokens=2048,
                    temperature=0.7,
                    stream=True,
                )
                async for chunk in stream:
                    if chunk.choices and chunk.choices[0].delta.content:
                        token = chunk.choices[0].delta.content
                        full_response_text += token
                        yield TokenEvent(content=token)
            elif message.content:
                full_response_text = message.content
                yield TokenEvent(content=full_response_text)

        except Exception as e:
            logger.error("Error in chat_stream", exc_info=True)
            yield ErrorEvent(message=str(e))
            return

        processing_time_ms = int((time.time() - start_time) * 1000)

        yield DoneEvent(
            response=ChatResponse(
                text=full_response_text.strip(),
                tools_used=tools_used,
                servers_consulted=sorted(servers_consulted),
                processing_time_ms=processing_time_ms,
                model=self.model,
            )
        )

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Process a chat request and return the final response (non-streaming)."""
        final_response = None

        async for event in self.chat_stream(request):
            if isinstance(event, DoneEvent):
                final_response = event.response
            elif isinstance(event, ErrorEvent):
                return ChatResponse(text=f"Error: {event.message}", model=self.model)

        if final_response is None:
            return ChatResponse(text="No response generated.", model=self.model)

        return final_response
