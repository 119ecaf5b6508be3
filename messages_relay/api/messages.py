"""
Messages API Endpoints

Accepts Messages API requests, routes them to a backend and answers with a
Messages event stream or a complete message.
"""

import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from messages_relay.api.deps import BackendRouterDep
from messages_relay.common.errors import AppError, InvalidRequestError, RoutingError
from messages_relay.common.token_counter import estimate_payload_tokens
from messages_relay.protocol.anthropic import parse_messages_request

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Messages"])

# Model assumed by token counting when the body names none
DEFAULT_COUNT_MODEL = "claude-3-opus-20240229"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidRequestError("Request body is not valid JSON", code="invalid_json") from e


async def _relay(first: bytes, frames: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Yield the primed first frame, then the rest; closing this closes the backend stream."""
    async with aclosing(frames) as stream:
        if first:
            yield first
        async for frame in stream:
            yield frame


@router.post("/v1/messages")
async def messages(request: Request, backend_router: BackendRouterDep) -> Any:
    """
    Messages Endpoint

    The first stream frame is produced before the response starts, so any
    failure up to that point is answered by the AppError handler with a JSON
    error and its status.
    """
    try:
        body = await _read_json(request)
        parsed = parse_messages_request(body, dict(request.headers))
        handler, model_id = backend_router.select(parsed.model)

        if not parsed.stream:
            return JSONResponse(content=await handler.complete(parsed, model_id))

        frames = handler.stream_response(parsed, model_id)
        try:
            first = await anext(frames)
        except StopAsyncIteration:
            first = b""
        return StreamingResponse(
            _relay(first, frames),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )
    except AppError as e:
        logger.warning("Messages request failed: %s (%s)", e.message, e.code)
        raise


@router.post("/v1/messages/count_tokens")
async def count_tokens(request: Request, backend_router: BackendRouterDep) -> Any:
    """
    Token Count Endpoint

    Forwarded to the real endpoint when the request routes to the native
    handler; otherwise estimated from the serialized body length.
    """
    body = await _read_json(request)
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    model = body.get("model") or DEFAULT_COUNT_MODEL
    try:
        handler, _ = backend_router.select(model)
    except RoutingError:
        return {"input_tokens": estimate_payload_tokens(body)}
    return await handler.count_tokens(body, dict(request.headers))
