"""Tool registry for managing MCP tools, plus the provider-loading server registry."""

import importlib
import inspect
import json
import logging
import re
from typing import Any, Awaitable, Callable

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError, ValidationError, best_match
from pydantic import BaseModel

from mcp_bridge.mcp.models import Tool, TextContent, ImageContent, EmbeddedResource, ToolCallResult
from mcp_bridge.mcp.prompts import PromptRegistry
from mcp_bridge.mcp.resources import ResourceRegistry

logger = logging.getLogger(__name__)

# Type alias for tool handlers. Handlers may also be plain functions.
ToolHandler = Callable[[dict[str, Any]], Awaitable[Any] | Any]

TOOL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

CONTENT_TYPES = (TextContent, ImageContent, EmbeddedResource)


def _describe_error(error: ValidationError) -> str:
    path = "/".join(str(part) for part in error.absolute_path)
    return f"{error.message} (at '{path}')" if path else error.message


class ToolDefinition:
    """A registered tool with its metadata, validators and handler."""

    def __init__(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any],
        handler: ToolHandler,
        output_schema: dict[str, Any] | None = None,
    ):
        self.name = name
        self.description = description
        self.input_schema = input_schema
        self.output_schema = output_schema
        self.handler = handler
        self._input_validator = Draft7Validator(input_schema)
        self._output_validator = Draft7Validator(output_schema) if output_schema else None

    def validate_input(self, arguments: dict[str, Any]) -> str | None:
        """Return a description of the first schema violation, or None."""
        error = best_match(self._input_validator.iter_errors(arguments))
        return _describe_error(error) if error is not None else None

    def validate_output(self, structured: dict[str, Any]) -> str | None:
        if self._output_validator is None:
            return None
        error = best_match(self._output_validator.iter_errors(structured))
        return _describe_error(error) if error is not None else None

    def to_mcp_tool(self) -> Tool:
        """Convert to MCP Tool model for protocol responses."""
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema,
            outputSchema=self.output_schema,
        )


def to_tool_result(value: Any) -> ToolCallResult:
    """Normalize whatever a handler returned into a ToolCallResult."""
    if isinstance(value, ToolCallResult):
        return value
    if isinstance(value, BaseModel):
        return ToolCallResult.structured(value.model_dump(mode="json"))
    if isinstance(value, dict):
        return ToolCallResult.structured(value)
    if isinstance(value, list) and all(isinstance(item, CONTENT_TYPES) for item in value):
        return ToolCallResult(content=value)
    if isinstance(value, str):
        return ToolCallResult(content=[TextContent(text=value)])
    if value is None:
        return ToolCallResult(content=[])
    if isinstance(value, list):
        return ToolCallResult(content=[TextContent(text=json.dumps(value, ensure_ascii=False, default=str))])
    return ToolCallResult(content=[TextContent(text=str(value))])


class ToolRegistry:
    """Registry mapping tool names to handlers with JSON-schema contracts."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any],
        handler: ToolHandler,
        output_schema: dict[str, Any] | None = None,
    ) -> None:
        """
        Register a tool with the registry.

        Raises:
            ValueError: If the name or either schema is invalid.
        """
        if not TOOL_NAME_PATTERN.match(name):
            raise ValueError(
                f"Invalid tool name {name!r}: use 1-64 letters, digits, '_' or '-'"
            )
        for label, schema in (("input", input_schema), ("output", output_schema)):
            if schema is None:
                continue
            try:
                Draft7Validator.check_schema(schema)
            except SchemaError as e:
                raise ValueError(f"Invalid {label} schema for tool '{name}': {e.message}") from e
        if input_schema.get("type") != "object":
            raise ValueError(f"Input schema for tool '{name}' must describe an object")

        if name in self._tools:
            logger.warning(f"Tool '{name}' already registered, overwriting")
        self._tools[name] = ToolDefinition(
            name=name,
            description=description,
            input_schema=input_schema,
            handler=handler,
            output_schema=output_schema,
        )
        logger.info(f"Registered tool: {name}")

    def register_function(self, func: Callable[..., Any]) -> None:
        """Register a function decorated with `mcp_bridge.tools.base.tool`."""
        metadata = getattr(func, "_tool_metadata", None)
        if metadata is None:
            raise ValueError(f"{func!r} is not decorated with @tool")
        self.register(handler=func, **metadata)

    def get(self, name: str) -> ToolDefinition | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        """List all registered tools as MCP Tool models."""
        return [tool.to_mcp_tool() for tool in self._tools.values()]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolCallResult:
        """
        Call a tool by name with the given arguments.

        Failures are reported in the result (isError), never raised.
        """
        tool = self.get(name)
        if tool is None:
            return ToolCallResult.error(f"Tool not found: {name}")

        problem = tool.validate_input(arguments)
        if problem is not None:
            logger.info(f"Rejected arguments for tool {name}: {problem}")
            return ToolCallResult.error(f"Invalid arguments for tool '{name}': {problem}")

        try:
            value = tool.handler(arguments)
            if inspect.isawaitable(value):
                value = await value
            result = to_tool_result(value)
        except Exception as e:
            logger.exception(f"Error executing tool {name}")
            return ToolCallResult.error(f"Tool execution error: {str(e)}")

        if tool.output_schema is not None and not result.isError:
            if result.structuredContent is None:
                return ToolCallResult.error(
                    f"Tool '{name}' returned no structured content for its output schema"
                )
            problem = tool.validate_output(result.structuredContent)
            if problem is not None:
                logger.error(f"Tool {name} produced invalid output: {problem}")
                return ToolCallResult.error(f"Tool '{name}' produced invalid output: {problem}")

        return result

    @property
    def tool_count(self) -> int:
        """Return the number of registered tools."""
        return len(self._tools)


class ServerRegistry:
    """Tools, resources and prompts served by this process, with plugin-style provider loading."""

    def __init__(self) -> None:
        self.tools = ToolRegistry()
        self.resources = ResourceRegistry()
        self.prompts = PromptRegistry()
        self._providers: set[str] = set()

    def load_provider(self, provider_name: str) -> bool:
        """
        Load a provider module and register its tools.

        Providers are expected to be in mcp_bridge/tools/<provider_name>/
        and have a register(registry) function.
        """
        if provider_name in self._providers:
            logger.debug(f"Provider '{provider_name}' already loaded")
            return True

        module_path = f"mcp_bridge.tools.{provider_name}.tools"
        try:
            module = importlib.import_module(module_path)
            if hasattr(module, "register"):
                module.register(self)
                self._providers.add(provider_name)
                logger.info(f"Loaded provider: {provider_name}")
                return True
            else:
                logger.warning(
                    f"Provider '{provider_name}' has no register function"
                )
                return False
        except ImportError as e:
            logger.warning(f"Could not import provider '{provider_name}': {e}")
            return False
        except Exception as e:
            logger.error(f"Error loading provider '{provider_name}': {e}")
            return False

    def load_providers(self, provider_names: list[str]) -> dict[str, bool]:
        """Load multiple providers, returning success status for each."""
        results = {}
        for name in provider_names:
            results[name] = self.load_provider(name)
        return results

    @property
    def tool_count(self) -> int:
        return self.tools.tool_count

    @property
    def provider_count(self) -> int:
        """Return the number of loaded providers."""
        return len(self._providers)


# Global registry instance
_registry: ServerRegistry | None = None


def get_registry() -> ServerRegistry:
    """Get the global server registry, creating it if necessary."""
    global _registry
    if _registry is None:
        _registry = ServerRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (useful for testing)."""
    global _registry
    _registry = None
