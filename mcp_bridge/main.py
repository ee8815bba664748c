"""FastAPI MCP bridge - Main application entrypoint."""

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sse_starlette.sse import EventSourceResponse

from mcp_bridge.agent.runner import AgentRunner, ChatRequest, ErrorEvent
from mcp_bridge.client.manager import McpClientManager
from mcp_bridge.config.loader import get_enabled_providers, get_settings, load_bridge_config
from mcp_bridge.mcp.errors import INVALID_REQUEST, PARSE_ERROR, make_error_data
from mcp_bridge.mcp.handlers import PROTOCOL_VERSION, MCPHandlers
from mcp_bridge.mcp.jsonrpc import JsonRpcProcessor, encode_reply
from mcp_bridge.mcp.registry import ServerRegistry, get_registry
from mcp_bridge.mcp.session import SUPPORTED_PROTOCOL_VERSIONS
from mcp_bridge.mcp.transport_sse import create_sse_response, get_session_manager
from mcp_bridge.security.auth import AuthMiddleware
from mcp_bridge.utils.http import close_shared_client
from mcp_bridge.utils.logging import get_logger, set_request_id, setup_logging
from mcp_bridge.utils.rate_limit import RateLimiter, RateLimitMiddleware, get_client_key

logger = logging.getLogger(__name__)


def load_registry(config: dict) -> ServerRegistry:
    """Load the enabled providers into the global registry and log every tool."""
    log = get_logger("startup")
    enabled_providers = get_enabled_providers(config)
    log.info("Loading providers", providers=enabled_providers)

    registry = get_registry()
    results = registry.load_providers(enabled_providers)
    for provider, success in results.items():
        if success:
            log.info("Loaded provider", provider=provider)
        else:
            log.warning("Failed to load provider", provider=provider)

    for tool in registry.tools.list_tools():
        log.info("Tool available", tool=tool.name, description=tool.description)

    log.info(
        "Tool registry ready",
        tool_count=registry.tool_count,
        resource_count=registry.resources.resource_count,
        prompt_count=registry.prompts.prompt_count,
        provider_count=registry.provider_count,
    )
    return registry


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    setup_logging()
    log = get_logger("startup")

    settings = get_settings()
    log.info(
        "Starting MCP bridge",
        server_name=settings.server_name,
        version=settings.server_version,
        auth_enabled=settings.auth_enabled,
    )

    config = load_bridge_config()
    load_registry(config)

    try:
        client_manager = McpClientManager.from_config(config)
    except ValueError as e:
        log.error("Invalid MCP client configuration", error=str(e))
        client_manager = McpClientManager({})
    await client_manager.connect_all()
    app.state.client_manager = client_manager

    session_manager = get_session_manager()
    await session_manager.start_cleanup_task()

    yield

    # Shutdown
    log.info("Shutting down MCP bridge")
    session_manager.stop_cleanup_task()
    session_manager.close_all()
    await client_manager.close_all()
    await close_shared_client()


app = FastAPI(
    title="MCP Bridge",
    description="MCP client/server bridge exposing local tools and aggregating remote MCP servers",
    version="1.0.0",
    lifespan=lifespan,
)

# Last added = first to process incoming requests, so CORS goes last
app.add_middleware(RateLimitMiddleware)
app.add_middleware(AuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next):
    """Add request ID to all requests."""
    request_id = set_request_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def get_client_manager(request: Request) -> McpClientManager | None:
    return getattr(request.app.state, "client_manager", None)


# =============================================================================
# Health and Info Endpoints
# =============================================================================


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/")
async def root(request: Request) -> dict:
    """Root endpoint with server info."""
    settings = get_settings()
    registry = get_registry()
    client_manager = get_client_manager(request)

    return {
        "name": settings.server_name,
        "version": settings.server_version,
        "description": "MCP client/server bridge",
        "endpoints": {
            "health": "/health",
            "sse": "/sse",
            "message": "/message",
            "clients": "/api/clients",
            "chat": "/api/chat",
            "docs": "/docs",
        },
        "tools_available": registry.tool_count,
        "resources_available": registry.resources.resource_count,
        "prompts_available": registry.prompts.prompt_count,
        "remote_servers": len(client_manager.sessions) if client_manager else 0,
        "mcp_protocol_version": PROTOCOL_VERSION,
        "supported_protocol_versions": list(SUPPORTED_PROTOCOL_VERSIONS),
    }


# =============================================================================
# MCP Endpoints
# =============================================================================


def jsonrpc_error(status_code: int, code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"jsonrpc": "2.0", "id": None, "error": make_error_data(code, message)},
    )


@app.get("/sse")
async def sse_endpoint(request: Request):
    """
    SSE endpoint for MCP session establishment.

    Returns an SSE stream that:
    1. Sends an 'endpoint' event with the message URL
    2. Streams JSON-RPC responses as 'message' events
    """
    session = get_session_manager().create_session(get_registry())

    log = get_logger("sse")
    log.info("SSE session created", session_id=session.session_id)

    return await create_sse_response(session, "/message")


@app.post("/message")
async def message_endpoint(request: Request) -> Response:
    """
    Message endpoint for JSON-RPC requests.

    With a session_id the message is processed in that session and the
    reply is delivered on its event stream (202 here). Without one the
    request is handled statelessly and answered in the body.
    """
    settings = get_settings()
    session_id = request.query_params.get("session_id")

    try:
        body = await request.body()
    except Exception as e:
        return jsonrpc_error(400, PARSE_ERROR, f"Could not read request body: {e}")

    if len(body) > settings.max_message_bytes:
        return jsonrpc_error(
            413, INVALID_REQUEST, f"Message exceeds {settings.max_message_bytes} bytes"
        )

    if session_id:
        session = get_session_manager().get_session(session_id)
        if session is None:
            return jsonrpc_error(404, INVALID_REQUEST, f"Session not found: {session_id}")
        session.dispatch(body)
        return JSONResponse(content={"status": "accepted"}, status_code=202)

    processor = JsonRpcProcessor(MCPHandlers(get_registry()))
    response = await processor.handle_message(body)

    if response is None:
        # Notification - no response needed
        return JSONResponse(content={"status": "accepted"}, status_code=202)

    return Response(content=encode_reply(response), media_type="application/json")


# =============================================================================
# Remote MCP servers
# =============================================================================


@app.get("/api/clients")
async def clients_endpoint(request: Request) -> dict:
    """Connected remote MCP servers and their tools."""
    client_manager = get_client_manager(request)
    if client_manager is None:
        return {"clients": [], "tool_count": 0}

    tools = await client_manager.list_tools()
    clients = client_manager.status()
    for entry in clients:
        entry["tools"] = [tool.name for tool in tools if tool.server == entry["name"]]
    return {"clients": clients, "tool_count": len(tools)}


# =============================================================================
# Chat API Endpoints
# =============================================================================

_chat_limiter: RateLimiter | None = None


def get_chat_limiter() -> RateLimiter:
    """Per-IP limiter for chat requests, to control model costs."""
    global _chat_limiter
    if _chat_limiter is None:
        _chat_limiter = RateLimiter(get_settings().chat_rate_limit_per_hour, 3600)
    return _chat_limiter


def get_agent_runner(request: Request) -> AgentRunner | None:
    runner = getattr(request.app.state, "agent_runner", None)
    if runner is not None:
        return runner
    if not get_settings().chat_enabled:
        return None
    return AgentRunner(client_manager=get_client_manager(request))


async def parse_chat_request(request: Request) -> ChatRequest | JSONResponse:
    """Check limits and parse the body; returns an error response on failure."""
    settings = get_settings()

    allowed, _ = get_chat_limiter().is_allowed(get_client_key(request))
    if not allowed:
        return JSONResponse(
            status_code=429,
            content={
                "error": "Rate limit exceeded",
                "message": f"Maximum {settings.chat_rate_limit_per_hour} messages per hour",
            },
        )

    try:
        body = await request.json()
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": f"Invalid JSON: {e}"})

    try:
        return ChatRequest.model_validate(body)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": f"Invalid request: {e}"})


def chat_unavailable() -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": "Chat service not configured"})


@app.post("/api/chat")
async def chat_endpoint(request: Request) -> JSONResponse:
    """
    Chat endpoint for the AI agent.

    Requires MCP auth token in Authorization header when auth is enabled.
    Rate limited per IP.
    """
    runner = get_agent_runner(request)
    if runner is None:
        return chat_unavailable()

    chat_request = await parse_chat_request(request)
    if isinstance(chat_request, JSONResponse):
        return chat_request

    log = get_logger("chat")
    log.info("Chat request", message_length=len(chat_request.message))

    try:
        response = await runner.chat(chat_request)
    except Exception as e:
        log.error("Chat error", exc_info=True)
        return JSONResponse(status_code=500, content={"error": f"Chat processing failed: {e}"})

    log.info(
        "Chat response",
        tools_used=response.tools_used,
        servers_consulted=response.servers_consulted,
    )
    return JSONResponse(content=response.model_dump())


@app.post("/api/chat/stream")
async def chat_stream_endpoint(request: Request):
    """Chat with the agent, streaming status, tool and token events over SSE."""
    runner = get_agent_runner(request)
    if runner is None:
        return chat_unavailable()

    chat_request = await parse_chat_request(request)
    if isinstance(chat_request, JSONResponse):
        return chat_request

    async def event_generator():
        try:
            async for event in runner.chat_stream(chat_request):
                yield {"event": event.type, "data": event.model_dump_json()}
        except Exception as e:
            logger.exception("Chat stream failed")
            error = ErrorEvent(message=str(e))
            yield {"event": error.type, "data": json.dumps(error.model_dump())}

    return EventSourceResponse(event_generator())


@app.get("/api/chat/status")
async def chat_status(request: Request) -> dict:
    """Check if chat is available and get configuration."""
    settings = get_settings()
    client_manager = get_client_manager(request)
    return {
        "enabled": settings.chat_enabled or getattr(request.app.state, "agent_runner", None) is not None,
        "model": settings.openai_model,
        "rate_limit_per_hour": settings.chat_rate_limit_per_hour,
        "max_tool_rounds": settings.agent_max_tool_rounds,
        "remote_servers": sorted(client_manager.sessions) if client_manager else [],
    }


# =============================================================================
# Main Entry Point
# =============================================================================


def main(host: str | None = None, port: int | None = None) -> None:
    """Run the server with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "mcp_bridge.main:app",
        host=host or settings.host,
        port=port or settings.port,
    )


if __name__ == "__main__":
    main()
