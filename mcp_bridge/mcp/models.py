"""Pydantic models for MCP JSON-RPC 2.0 protocol."""

import json
from typing import Any, Literal
from pydantic import BaseModel, Field, field_validator


# =============================================================================
# JSON-RPC 2.0 Base Models
# =============================================================================


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request object."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str | None = None  # None for notifications
    method: str
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def null_params_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def is_notification(self) -> bool:
        return self.id is None


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response object."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str | None = None
    result: Any = None
    error: JsonRpcError | None = None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        """Custom serialization to exclude None fields appropriately."""
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            data["error"] = self.error.model_dump(exclude_none=True)
        else:
            data["result"] = self.result
        return data


def dump_message(message: JsonRpcResponse | list[JsonRpcResponse]) -> Any:
    """Serialize a response or a batch of responses to plain JSON data."""
    if isinstance(message, list):
        return [item.model_dump() for item in message]
    return message.model_dump()


def _reject_constant(token: str) -> Any:
    raise ValueError(f"{token} is not valid JSON")


def load_json(raw: str | bytes) -> Any:
    """Parse a message strictly; NaN and Infinity are not JSON."""
    return json.loads(raw, parse_constant=_reject_constant)


# =============================================================================
# MCP Content Types
# =============================================================================


class TextContent(BaseModel):
    """Text content returned by tools."""

    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    """Image content returned by tools (base64 encoded)."""

    type: Literal["image"] = "image"
    data: str  # base64 encoded
    mimeType: str


class ResourceContents(BaseModel):
    """Text contents of a resource."""

    uri: str
    mimeType: str | None = None
    text: str


class EmbeddedResource(BaseModel):
    """Resource contents embedded in a tool result."""

    type: Literal["resource"] = "resource"
    resource: ResourceContents


Content = TextContent | ImageContent | EmbeddedResource


def content_to_text(content: list[Content]) -> str:
    """Flatten content items into plain text for an LLM tool message."""
    parts = []
    for item in content:
        if isinstance(item, TextContent):
            parts.append(item.text)
        elif isinstance(item, EmbeddedResource):
            parts.append(item.resource.text)
        else:
            parts.append(f"[image: {item.mimeType}]")
    return "\n".join(parts)


# =============================================================================
# MCP Tool Models
# =============================================================================


class Tool(BaseModel):
    """MCP tool definition."""

    name: str = Field(..., description="Tool name (lowercase with hyphens)")
    description: str = Field(default="", description="Human-readable description")
    inputSchema: dict[str, Any] = Field(
        ..., description="JSON Schema for tool input"
    )
    outputSchema: dict[str, Any] | None = Field(
        default=None, description="JSON Schema for structured tool output"
    )


class ToolCallResult(BaseModel):
    """Result of a tool call."""

    content: list[Content]
    isError: bool = False
    structuredContent: dict[str, Any] | None = None

    @classmethod
    def error(cls, message: str) -> "ToolCallResult":
        return cls(content=[TextContent(text=message)], isError=True)

    @classmethod
    def structured(cls, data: dict[str, Any]) -> "ToolCallResult":
        return cls(
            content=[TextContent(text=json.dumps(data, ensure_ascii=False, allow_nan=False))],
            structuredContent=data,
        )

    def text(self) -> str:
        return content_to_text(self.content)


# =============================================================================
# MCP Resource and Prompt Models
# =============================================================================


class Resource(BaseModel):
    """MCP resource descriptor."""

    uri: str
    name: str
    description: str | None = None
    mimeType: str | None = None


class ReadResourceResult(BaseModel):
    """Result of resources/read request."""

    contents: list[ResourceContents]


class PromptArgument(BaseModel):
    """An argument accepted by a prompt template."""

    name: str
    description: str | None = None
    required: bool = False


class Prompt(BaseModel):
    """MCP prompt descriptor."""

    name: str
    description: str | None = None
    arguments: list[PromptArgument] = Field(default_factory=list)


class PromptMessage(BaseModel):
    """One message of a rendered prompt."""

    role: Literal["user", "assistant"]
    content: TextContent


class GetPromptResult(BaseModel):
    """Result of prompts/get request."""

    description: str | None = None
    messages: list[PromptMessage]


# =============================================================================
# MCP Protocol Models
# =============================================================================


class Implementation(BaseModel):
    """Name and version of an MCP client or server."""

    name: str
    version: str


ClientInfo = Implementation
ServerInfo = Implementation


class ServerCapabilities(BaseModel):
    """Server capabilities. A capability is advertised when its field is set."""

    tools: dict[str, Any] | None = None
    resources: dict[str, Any] | None = None
    prompts: dict[str, Any] | None = None
    logging: dict[str, Any] | None = None


# Kept for the capability field name used in protocol docs
Capabilities = ServerCapabilities


class InitializeParams(BaseModel):
    """Parameters for initialize request."""

    protocolVersion: str
    capabilities: dict[str, Any] = Field(default_factory=dict)
    clientInfo: ClientInfo


class InitializeResult(BaseModel):
    """Result of initialize request."""

    protocolVersion: str
    capabilities: ServerCapabilities
    serverInfo: ServerInfo
    instructions: str | None = None


class PaginatedParams(BaseModel):
    """Parameters for list requests."""

    cursor: str | None = None


class ToolsListResult(BaseModel):
    """Result of tools/list request."""

    tools: list[Tool]
    nextCursor: str | None = None


class ResourcesListResult(BaseModel):
    """Result of resources/list request."""

    resources: list[Resource]
    nextCursor: str | None = None


class PromptsListResult(BaseModel):
    """Result of prompts/list request."""

    prompts: list[Prompt]
    nextCursor: str | None = None


class ToolCallParams(BaseModel):
    """Parameters for tools/call request."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    @field_validator("arguments", mode="before")
    @classmethod
    def null_arguments_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class ReadResourceParams(BaseModel):
    """Parameters for resources/read request."""

    uri: str


class GetPromptParams(BaseModel):
    """Parameters for prompts/get request."""

    name: str
    arguments: dict[str, str] = Field(default_factory=dict)


class CancelledParams(BaseModel):
    """Parameters for notifications/cancelled."""

    requestId: int | str
    reason: str | None = None
