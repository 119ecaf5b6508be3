"""
Messages Protocol Conversion

Parses inbound Messages requests into canonical messages and builds the
outbound event frames and non-streaming message bodies.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Optional

from messages_relay.common.errors import InvalidRequestError
from messages_relay.common.sse import DONE_PAYLOAD, encode_sse_data, encode_sse_json
from messages_relay.protocol.types import (
    CanonicalMessage,
    ContentBlock,
    ImageBlock,
    MessagesRequest,
    ModelConfig,
    Role,
    TextBlock,
    ToolCall,
    ToolResultBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

# Headers relayed to the native Messages API by the pass-through handler
FORWARDED_HEADERS = ("x-api-key", "authorization", "anthropic-version", "anthropic-beta")


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:24]}"


def _flatten_text(content: Any) -> str:
    """Collapse a string or a list of text blocks into one string."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)
    return str(content)


def _parse_image(block: dict[str, Any]) -> Optional[ImageBlock]:
    source = block.get("source")
    if not isinstance(source, dict):
        return None
    if source.get("type") == "base64" and source.get("data"):
        media_type = source.get("media_type") or "image/png"
        return ImageBlock(url=f"data:{media_type};base64,{source['data']}", media_type=media_type)
    if source.get("type") == "url" and source.get("url"):
        return ImageBlock(url=source["url"], media_type=source.get("media_type"))
    return None


def _parse_block(block: Any) -> Optional[ContentBlock]:
    if isinstance(block, str):
        return TextBlock(block)
    if not isinstance(block, dict):
        return None

    block_type = block.get("type")
    if block_type == "text":
        text = block.get("text")
        return TextBlock(text) if isinstance(text, str) else None
    if block_type == "image":
        return _parse_image(block)
    if block_type == "tool_use":
        if not block.get("id") or not block.get("name"):
            return None
        tool_input = block.get("input")
        return ToolUseBlock(
            id=str(block["id"]),
            name=str(block["name"]),
            input=tool_input if isinstance(tool_input, dict) else {},
            signature=block.get("signature"),
        )
    if block_type == "tool_result":
        if not block.get("tool_use_id"):
            return None
        return ToolResultBlock(
            tool_call_id=str(block["tool_use_id"]),
            content=_flatten_text(block.get("content")),
            is_error=bool(block.get("is_error", False)),
        )

    logger.debug("Dropping unsupported content block type: %s", block_type)
    return None


def _parse_message(message: Any) -> Optional[CanonicalMessage]:
    if not isinstance(message, dict):
        return None
    try:
        role = Role(message.get("role"))
    except ValueError:
        logger.debug("Dropping message with unknown role: %s", message.get("role"))
        return None

    content = message.get("content")
    if isinstance(content, str):
        return CanonicalMessage(role=role, content=content)

    blocks = tuple(
        parsed for parsed in (_parse_block(b) for b in (content or [])) if parsed is not None
    )
    tool_calls = tuple(
        ToolCall(id=b.id, name=b.name, args=dict(b.input), signature=b.signature)
        for b in blocks
        if isinstance(b, ToolUseBlock)
    )
    return CanonicalMessage(role=role, content=blocks, tool_calls=tool_calls)


def parse_messages_request(body: Any, headers: Optional[dict[str, str]] = None) -> MessagesRequest:
    """
    Parse an inbound Messages request body

    The top-level system prompt and any system-role messages are collapsed
    into at most one leading system message. Unknown content blocks are dropped.

    Args:
        body: Decoded JSON body
        headers: Inbound request headers

    Returns:
        MessagesRequest: Canonical request

    Raises:
        InvalidRequestError: Body is not an object or lacks model/messages
    """
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    model = body.get("model")
    if not isinstance(model, str) or not model:
        raise InvalidRequestError("Request missing 'model'", code="missing_model")
    raw_messages = body.get("messages")
    if not isinstance(raw_messages, list):
        raise InvalidRequestError("Request missing 'messages'", code="missing_messages")

    system_parts: list[str] = []
    top_level_system = _flatten_text(body.get("system"))
    if top_level_system:
        system_parts.append(top_level_system)

    messages: list[CanonicalMessage] = []
    for raw in raw_messages:
        parsed = _parse_message(raw)
        if parsed is None:
            continue
        if parsed.role == Role.SYSTEM:
            if parsed.text:
                system_parts.append(parsed.text)
            continue
        messages.append(parsed)

    if system_parts:
        messages.insert(0, CanonicalMessage(role=Role.SYSTEM, content="\n\n".join(system_parts)))

    tools = [t for t in (body.get("tools") or []) if isinstance(t, dict) and t.get("name")]
    forwarded = {
        k.lower(): v for k, v in (headers or {}).items() if k.lower() in FORWARDED_HEADERS
    }

    return MessagesRequest(
        model=model,
        messages=messages,
        model_config=ModelConfig(
            max_output_tokens=body.get("max_tokens"),
            temperature=body.get("temperature"),
            top_p=body.get("top_p"),
            top_k=body.get("top_k"),
        ),
        tools=tools,
        tool_choice=body.get("tool_choice") if isinstance(body.get("tool_choice"), dict) else None,
        stream=bool(body.get("stream", False)),
        body=body,
        headers=forwarded,
    )


# ============ Outbound frames ============

def message_start_frame(message_id: str, model: str) -> bytes:
    return encode_sse_json(
        {
            "type": "message_start",
            "message": {
                "id": message_id,
                "type": "message",
                "role": "assistant",
                "content": [],
                "model": model,
                "stop_reason": None,
                "stop_sequence": None,
                "usage": {"input_tokens": 0, "output_tokens": 0},
            },
        },
        event="message_start",
    )


def text_block_start_frame(index: int) -> bytes:
    return encode_sse_json(
        {
            "type": "content_block_start",
            "index": index,
            "content_block": {"type": "text", "text": ""},
        },
        event="content_block_start",
    )


def text_delta_frame(index: int, text: str) -> bytes:
    return encode_sse_json(
        {
            "type": "content_block_delta",
            "index": index,
            "delta": {"type": "text_delta", "text": text},
        },
        event="content_block_delta",
    )


def tool_use_block_start_frame(index: int, call: ToolCall) -> bytes:
    """Tool-use blocks carry their complete input; no input_json_delta follows."""
    return encode_sse_json(
        {
            "type": "content_block_start",
            "index": index,
            "content_block": {
                "type": "tool_use",
                "id": call.id,
                "name": call.name,
                "input": call.args,
            },
        },
        event="content_block_start",
    )


def block_stop_frame(index: int) -> bytes:
    return encode_sse_json(
        {"type": "content_block_stop", "index": index},
        event="content_block_stop",
    )


def message_delta_frame(output_tokens: int, stop_reason: str = "end_turn") -> bytes:
    return encode_sse_json(
        {
            "type": "message_delta",
            "delta": {"stop_reason": stop_reason, "stop_sequence": None},
            "usage": {"output_tokens": output_tokens},
        },
        event="message_delta",
    )


def message_stop_frame() -> bytes:
    return encode_sse_json({"type": "message_stop"}, event="message_stop")


def done_frame() -> bytes:
    return encode_sse_data(DONE_PAYLOAD)


def error_frame(message: str) -> bytes:
    return encode_sse_json(
        {
            "type": "error",
            "error": {"type": "server_error", "message": f"Stream error: {message}"},
        },
        event="error",
    )


# ============ Non-streaming responses ============

def map_finish_reason(finish_reason: Optional[str], has_tool_calls: bool = False) -> str:
    """Map a backend finish reason to a Messages stop_reason."""
    if has_tool_calls:
        return "tool_use"
    if not finish_reason:
        return "end_turn"
    reason = finish_reason.lower()
    if reason in {"length", "max_tokens"}:
        return "max_tokens"
    if reason in {"tool_calls", "function_call", "tool_use"}:
        return "tool_use"
    return "end_turn"


def build_message_response(
    *,
    model: str,
    text: str,
    tool_calls: Iterable[ToolCall],
    input_tokens: int,
    output_tokens: int,
    finish_reason: Optional[str] = None,
    message_id: Optional[str] = None,
) -> dict[str, Any]:
    """
    Build a complete (non-streaming) Messages response

    Returns:
        dict: Message object with the text block first, then tool_use blocks
    """
    calls = list(tool_calls)
    content: list[dict[str, Any]] = []
    if text:
        content.append({"type": "text", "text": text})
    for call in calls:
        content.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.args})

    return {
        "id": message_id or new_message_id(),
        "type": "message",
        "role": "assistant",
        "model": model,
        "content": content,
        "stop_reason": map_finish_reason(finish_reason, has_tool_calls=bool(calls)),
        "stop_sequence": None,
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }
