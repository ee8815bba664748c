"""Prompt registry backing the prompts capability."""

import logging
from typing import Callable

from mcp_bridge.mcp.errors import INVALID_PARAMS, McpError
from mcp_bridge.mcp.models import (
    GetPromptResult,
    Prompt,
    PromptArgument,
    PromptMessage,
)

logger = logging.getLogger(__name__)

# Receives the prompt arguments, returns the rendered messages
PromptRenderer = Callable[[dict[str, str]], list[PromptMessage]]


class PromptDefinition:
    """A registered prompt template."""

    def __init__(
        self,
        name: str,
        renderer: PromptRenderer,
        description: str | None = None,
        arguments: list[PromptArgument] | None = None,
    ):
        self.name = name
        self.renderer = renderer
        self.description = description
        self.arguments = arguments or []

    def to_mcp_prompt(self) -> Prompt:
        return Prompt(
            name=self.name,
            description=self.description,
            arguments=self.arguments,
        )


class PromptRegistry:
    """Maps prompt names to renderers."""

    def __init__(self) -> None:
        self._prompts: dict[str, PromptDefinition] = {}

    def register(
        self,
        name: str,
        renderer: PromptRenderer,
        description: str | None = None,
        arguments: list[PromptArgument] | None = None,
    ) -> None:
        if name in self._prompts:
            logger.warning(f"Prompt '{name}' already registered, overwriting")
        self._prompts[name] = PromptDefinition(
            name=name,
            renderer=renderer,
            description=description,
            arguments=arguments,
        )
        logger.info(f"Registered prompt: {name}")

    def list_prompts(self) -> list[Prompt]:
        return [prompt.to_mcp_prompt() for prompt in self._prompts.values()]

    def get(self, name: str, arguments: dict[str, str] | None = None) -> GetPromptResult:
        prompt = self._prompts.get(name)
        if prompt is None:
            raise McpError(INVALID_PARAMS, f"Prompt not found: {name}")

        arguments = arguments or {}
        missing = [
            arg.name for arg in prompt.arguments
            if arg.required and not arguments.get(arg.name)
        ]
        if missing:
            raise McpError(
                INVALID_PARAMS,
                f"Missing required arguments for prompt '{name}': {', '.join(missing)}",
            )

        return GetPromptResult(
            description=prompt.description,
            messages=prompt.renderer(arguments),
        )

    @property
    def prompt_count(self) -> int:
        return len(self._prompts)
