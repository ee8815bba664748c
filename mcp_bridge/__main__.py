"""Command line interface for the MCP bridge."""

import asyncio
import os
import sys
from typing import Any

import click

from mcp_bridge.config.loader import get_client_configs, get_settings, load_bridge_config
from mcp_bridge.mcp.models import load_json
from mcp_bridge.utils.logging import setup_logging


def _load_config(ctx: click.Context) -> dict[str, Any]:
    try:
        return load_bridge_config(ctx.obj.get("config_path"))
    except Exception as e:
        raise click.ClickException(f"Error loading configuration: {e}") from e


def _client_configs(config: dict[str, Any]):
    try:
        return get_client_configs(config)
    except ValueError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(dir_okay=False, resolve_path=True),
    help="Path to the YAML file with providers and remote MCP servers.",
    envvar="CONFIG_PATH",
)
@click.option(
    "--log-level", "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override the logging level.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """MCP bridge - serve local tools over MCP and use tools of remote MCP servers."""
    # Settings are read from the environment, so overrides go there
    if config_path:
        os.environ["CONFIG_PATH"] = config_path
    if log_level:
        os.environ["LOG_LEVEL"] = log_level.upper()
    get_settings.cache_clear()

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


@cli.command()
@click.option(
    "--transport", "-t",
    type=click.Choice(["sse", "stdio"]),
    default="sse",
    show_default=True,
    help="stdio serves one session on stdin/stdout; sse runs the HTTP server.",
)
@click.option("--host", default=None, help="Bind address for the HTTP server.")
@click.option("--port", type=int, default=None, help="Port for the HTTP server.")
@click.pass_context
def serve(ctx: click.Context, transport: str, host: str | None, port: int | None) -> None:
    """Run the MCP server."""
    if transport == "stdio":
        from mcp_bridge.main import load_registry
        from mcp_bridge.mcp.transport_stdio import run_stdio_server

        # stdout carries protocol messages only
        setup_logging(stream=sys.stderr)
        registry = load_registry(_load_config(ctx))
        asyncio.run(run_stdio_server(registry))
        return

    from mcp_bridge.main import main

    main(host=host, port=port)


@cli.command()
@click.pass_context
def tools(ctx: click.Context) -> None:
    """List the tools of every configured remote MCP server."""
    from mcp_bridge.client.manager import McpClientManager

    setup_logging(stream=sys.stderr)
    configs = _client_configs(_load_config(ctx))
    if not configs:
        click.echo("No remote MCP servers configured.")
        return

    async def run() -> None:
        manager = McpClientManager(configs)
        try:
            await manager.connect_all()
            for name, error in manager.errors.items():
                click.echo(f"{name}: not connected ({error})", err=True)
            for tool in await manager.list_tools():
                click.echo(f"{tool.qualified_name}\t{tool.tool.description}")
        finally:
            await manager.close_all()

    asyncio.run(run())


@cli.command()
@click.argument("server")
@click.argument("tool_name", metavar="TOOL")
@click.option(
    "--arguments", "-a", "arguments_json",
    default="{}",
    show_default=True,
    help="Tool arguments as a JSON object.",
)
@click.pass_context
def call(ctx: click.Context, server: str, tool_name: str, arguments_json: str) -> None:
    """Call TOOL on the remote MCP server SERVER and print the result."""
    from mcp_bridge.client.exceptions import MCPClientError
    from mcp_bridge.client.manager import McpClientManager, qualify

    try:
        arguments = load_json(arguments_json)
    except ValueError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--arguments") from e
    if not isinstance(arguments, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--arguments")

    setup_logging(stream=sys.stderr)
    configs = _client_configs(_load_config(ctx))
    if server not in configs:
        raise click.ClickException(f"Unknown MCP server: {server}")

    async def run():
        manager = McpClientManager({server: configs[server]})
        try:
            await manager.connect_all()
            if server in manager.errors:
                raise click.ClickException(f"Could not connect to {server}: {manager.errors[server]}")
            return await manager.call_tool(qualify(server, tool_name), arguments)
        except MCPClientError as e:
            raise click.ClickException(str(e)) from e
        finally:
            await manager.close_all()

    result = asyncio.run(run())
    click.echo(result.text())
    if result.isError:
        ctx.exit(1)


@cli.command()
@click.argument("message")
@click.option("--no-remote", is_flag=True, help="Offer only the local tools to the model.")
@click.pass_context
def chat(ctx: click.Context, message: str, no_remote: bool) -> None:
    """Ask the agent MESSAGE and print its answer."""
    from mcp_bridge.agent.runner import AgentRunner, ChatRequest
    from mcp_bridge.client.manager import McpClientManager
    from mcp_bridge.main import load_registry

    settings = get_settings()
    if not settings.chat_enabled:
        raise click.ClickException("OPENAI_API_KEY is not set")

    setup_logging(stream=sys.stderr)
    config = _load_config(ctx)
    registry = load_registry(config)
    configs = {} if no_remote else _client_configs(config)

    async def run():
        manager = McpClientManager(configs)
        try:
            await manager.connect_all()
            runner = AgentRunner(registry=registry, client_manager=manager)
            return await runner.chat(ChatRequest(message=message, use_remote_tools=not no_remote))
        finally:
            await manager.close_all()

    response = asyncio.run(run())
    click.echo(response.text)
    if response.tools_used:
        click.echo(f"\nTools used: {', '.join(response.tools_used)}", err=True)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
