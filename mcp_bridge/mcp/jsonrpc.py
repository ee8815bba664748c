"""JSON-RPC 2.0 message processing."""

import asyncio
import json
import logging
from typing import Any

from pydantic import ValidationError

from mcp_bridge.mcp.models import JsonRpcRequest, JsonRpcResponse, JsonRpcError, load_json
from mcp_bridge.mcp.handlers import MCPHandlers
from mcp_bridge.mcp.errors import PARSE_ERROR, INVALID_REQUEST, INTERNAL_ERROR, make_error_data

logger = logging.getLogger(__name__)

Reply = JsonRpcResponse | list[JsonRpcResponse] | None


def error_response(request_id: int | str | None, error: dict[str, Any]) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, error=JsonRpcError(**error))


def encode_reply(reply: JsonRpcResponse | list[JsonRpcResponse]) -> str:
    """
    Serialize a response or batch as strict JSON.

    A result holding NaN or Infinity has no JSON form; it is replaced by an
    internal error for the same request id.
    """
    if isinstance(reply, list):
        return "[" + ",".join(encode_reply(item) for item in reply) + "]"
    try:
        return json.dumps(reply.model_dump(), ensure_ascii=False, allow_nan=False)
    except ValueError as e:
        logger.error(f"Response to request {reply.id!r} is not valid JSON: {e}")
        fallback = error_response(
            reply.id, make_error_data(INTERNAL_ERROR, f"Result is not valid JSON: {e}")
        )
        return json.dumps(fallback.model_dump(), ensure_ascii=False)


class JsonRpcProcessor:
    """Process JSON-RPC 2.0 messages for one session."""

    def __init__(self, handlers: MCPHandlers):
        self.handlers = handlers

    @property
    def session(self):
        return self.handlers.session

    def parse_request(self, data: Any) -> tuple[JsonRpcRequest | None, dict | None]:
        """
        Validate one decoded JSON-RPC message.

        Returns (request, error) tuple. One will be None.
        """
        if not isinstance(data, dict):
            return None, make_error_data(
                INVALID_REQUEST, "Invalid JSON-RPC request: expected an object"
            )
        try:
            request = JsonRpcRequest(**data)
            return request, None
        except ValidationError as e:
            return None, make_error_data(
                INVALID_REQUEST, f"Invalid JSON-RPC request: {e}"
            )

    async def process_request(
        self, request: JsonRpcRequest
    ) -> JsonRpcResponse | None:
        """
        Process a validated JSON-RPC request.

        Returns None for notifications (requests without id) and for
        requests cancelled by the client.
        """
        if request.is_notification:
            await self.handlers.dispatch(request.method, request.params)
            return None

        if self.session.is_in_flight(request.id):
            return error_response(
                request.id,
                make_error_data(INVALID_REQUEST, f"Duplicate request id: {request.id!r}"),
            )

        task = asyncio.ensure_future(self._dispatch_limited(request))
        self.session.track(request.id, task)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self.session.untrack(request.id)

        if task.cancelled():
            logger.info(f"Request {request.id!r} ({request.method}) was cancelled")
            return None

        result, error = task.result()
        if error is not None:
            return error_response(request.id, error)
        return JsonRpcResponse(id=request.id, result=result)

    async def _dispatch_limited(
        self, request: JsonRpcRequest
    ) -> tuple[Any | None, dict[str, Any] | None]:
        async with self.session.request_slots:
            return await self.handlers.dispatch(request.method, request.params)

    async def process_item(self, data: Any) -> JsonRpcResponse | None:
        # Responses to server-initiated requests; this server sends none
        if isinstance(data, dict) and "method" not in data and ("result" in data or "error" in data):
            logger.debug(f"Ignoring response message with id {data.get('id')!r}")
            return None

        request, error = self.parse_request(data)
        if error is not None:
            request_id = data.get("id") if isinstance(data, dict) else None
            if not isinstance(request_id, (int, str)) or isinstance(request_id, bool):
                request_id = None
            return error_response(request_id, error)
        return await self.process_request(request)  # type: ignore

    async def handle_data(self, data: Any) -> Reply:
        """Handle a decoded message or batch."""
        if isinstance(data, list):
            if not data:
                return error_response(
                    None, make_error_data(INVALID_REQUEST, "Invalid JSON-RPC request: empty batch")
                )
            replies = await asyncio.gather(*(self.process_item(item) for item in data))
            responses = [reply for reply in replies if reply is not None]
            return responses or None
        return await self.process_item(data)

    async def handle_message(self, raw_data: str | bytes) -> Reply:
        """
        Handle a raw JSON-RPC message end-to-end.

        Returns a response, a list of responses for a batch, or None when
        nothing should be sent back.
        """
        try:
            if isinstance(raw_data, bytes):
                raw_data = raw_data.decode("utf-8")
            data = load_json(raw_data)
        except ValueError as e:
            # Parse errors don't have a request id
            return error_response(None, make_error_data(PARSE_ERROR, f"Invalid JSON: {e}"))

        return await self.handle_data(data)

    def serialize_response(self, response: JsonRpcResponse | list[JsonRpcResponse]) -> str:
        """Serialize a JSON-RPC response to JSON string."""
        return encode_reply(response)
