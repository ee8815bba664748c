"""Decorator for declaring tool handlers as plain Python functions."""

import functools
import inspect
import typing
from typing import Any, Callable, Awaitable

# JSON Schema types for annotated parameters
_SCHEMA_TYPES: dict[Any, str] = {
    float: "number",
    int: "integer",
    str: "string",
    bool: "boolean",
    list: "array",
    dict: "object",
}


def _schema_for_annotation(annotation: Any) -> dict[str, Any]:
    origin = typing.get_origin(annotation) or annotation
    schema_type = _SCHEMA_TYPES.get(origin)
    if schema_type is None:
        raise TypeError(f"Cannot derive a JSON schema type for {annotation!r}")
    return {"type": schema_type}


def schema_from_signature(
    func: Callable[..., Any], descriptions: dict[str, str] | None = None
) -> dict[str, Any]:
    """
    Build an object input schema from a function's parameters.

    Parameters without defaults are required. Unannotated parameters
    accept any JSON value.
    """
    descriptions = descriptions or {}
    hints = typing.get_type_hints(func)
    properties: dict[str, Any] = {}
    required: list[str] = []

    for name, param in inspect.signature(func).parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        prop = _schema_for_annotation(hints[name]) if name in hints else {}
        if name in descriptions:
            prop["description"] = descriptions[name]
        if param.default is inspect.Parameter.empty:
            required.append(name)
        else:
            prop["default"] = param.default
        properties[name] = prop

    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }


def tool(
    name: str,
    description: str,
    input_schema: dict[str, Any] | None = None,
    output_schema: dict[str, Any] | None = None,
    parameter_descriptions: dict[str, str] | None = None,
) -> Callable[[Callable[..., Any]], Callable[[dict[str, Any]], Awaitable[Any]]]:
    """
    Decorator to mark a function as an MCP tool.

    Usage:
        @tool(name="calculator-add", description="Add two numbers together")
        def add(a: float, b: float) -> float:
            return a + b

    The function is called with the validated arguments as keyword
    arguments. When `input_schema` is omitted it is derived from the
    signature. The returned wrapper takes the raw arguments dict, as the
    registry expects, and has _tool_metadata attached for
    ToolRegistry.register_function.
    """
    def decorator(func: Callable[..., Any]) -> Callable[[dict[str, Any]], Awaitable[Any]]:
        schema = input_schema or schema_from_signature(func, parameter_descriptions)

        @functools.wraps(func)
        async def wrapper(arguments: dict[str, Any]) -> Any:
            result = func(**arguments)
            if inspect.isawaitable(result):
                result = await result
            return result

        wrapper._tool_metadata = {  # type: ignore
            "name": name,
            "description": description,
            "input_schema": schema,
            "output_schema": output_schema,
        }
        return wrapper

    return decorator


def get_tool_metadata(
    func: Callable
) -> dict[str, Any] | None:
    """Get tool metadata from a decorated function."""
    return getattr(func, "_tool_metadata", None)
