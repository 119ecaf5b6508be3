"""
Chat Completions Protocol Conversion

Builds chat-completions request payloads from canonical messages and
normalizes streamed chat-completions chunks into backend-neutral events.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from messages_relay.common.errors import BackendTransportError, MalformedChunkError
from messages_relay.protocol.tools import map_tool_choice_to_openai, remove_uri_format
from messages_relay.protocol.types import (
    CanonicalMessage,
    Finish,
    ImageBlock,
    MessagesRequest,
    NormalizedEvent,
    Role,
    TextBlock,
    TextDelta,
    ToolCallFragment,
    ToolResultBlock,
    Usage,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 1


def convert_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert Messages tool declarations to chat-completions functions."""
    converted: list[dict[str, Any]] = []
    for tool in tools:
        converted.append(
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": remove_uri_format(
                        tool.get("input_schema") or {"type": "object", "properties": {}}
                    ),
                },
            }
        )
    return converted


def _convert_user_message(message: CanonicalMessage) -> list[dict[str, Any]]:
    """
    Tool results become separate `tool` messages placed before the user's
    remaining content, matching the order chat-completions backends expect.
    """
    if isinstance(message.content, str):
        return [{"role": "user", "content": message.content}]

    tool_messages: list[dict[str, Any]] = []
    parts: list[dict[str, Any]] = []
    for block in message.blocks:
        if isinstance(block, ToolResultBlock):
            tool_messages.append(
                {"role": "tool", "tool_call_id": block.tool_call_id, "content": block.content}
            )
        elif isinstance(block, TextBlock):
            parts.append({"type": "text", "text": block.text})
        elif isinstance(block, ImageBlock):
            parts.append({"type": "image_url", "image_url": {"url": block.url}})

    result = list(tool_messages)
    if parts:
        if all(p["type"] == "text" for p in parts):
            result.append({"role": "user", "content": "\n".join(p["text"] for p in parts)})
        else:
            result.append({"role": "user", "content": parts})
    return result


def _convert_assistant_message(message: CanonicalMessage) -> dict[str, Any]:
    converted: dict[str, Any] = {"role": "assistant", "content": message.text or None}
    if message.tool_calls:
        converted["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {
                    "name": call.name,
                    "arguments": json.dumps(call.args, ensure_ascii=False),
                },
            }
            for call in message.tool_calls
        ]
    if converted["content"] is None and not message.tool_calls:
        converted["content"] = ""
    return converted


def convert_messages(messages: list[CanonicalMessage]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == Role.SYSTEM:
            converted.append({"role": "system", "content": message.text})
        elif message.role == Role.USER:
            converted.extend(_convert_user_message(message))
        elif message.role == Role.ASSISTANT:
            converted.append(_convert_assistant_message(message))
        elif message.role == Role.TOOL:
            converted.append(
                {"role": "tool", "tool_call_id": message.tool_call_id, "content": message.text}
            )
    return converted


def to_openai_payload(request: MessagesRequest, model_id: str) -> dict[str, Any]:
    """
    Build a streaming chat-completions payload

    Args:
        request: Canonical request
        model_id: Resolved backend model id

    Returns:
        dict: Request body; unset generation parameters are omitted
    """
    config = request.model_config
    payload: dict[str, Any] = {
        "model": model_id,
        "messages": convert_messages(request.messages),
        "temperature": config.temperature if config.temperature is not None else DEFAULT_TEMPERATURE,
        "stream": True,
        "stream_options": {"include_usage": True},
    }
    if config.max_output_tokens is not None:
        payload["max_tokens"] = config.max_output_tokens
    if config.top_p is not None:
        payload["top_p"] = config.top_p
    if config.top_k is not None:
        payload["top_k"] = config.top_k
    if request.tools:
        payload["tools"] = convert_tools(request.tools)
        tool_choice = map_tool_choice_to_openai(request.tool_choice)
        if tool_choice is not None:
            payload["tool_choice"] = tool_choice
    return payload


def parse_sse_json(data: str) -> dict[str, Any]:
    """
    Decode one SSE data payload

    Raises:
        MalformedChunkError: Payload is not a JSON object
    """
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError as e:
        raise MalformedChunkError(f"Invalid JSON chunk: {data[:200]}") from e
    if not isinstance(chunk, dict):
        raise MalformedChunkError(f"Unexpected chunk shape: {data[:200]}")
    return chunk


def extract_thought_signature(tool_call: dict[str, Any]) -> Optional[str]:
    """Read extra_content.google.thought_signature from a tool call, if present."""
    extra_content = tool_call.get("extra_content")
    if not isinstance(extra_content, dict):
        return None
    google = extra_content.get("google")
    if not isinstance(google, dict):
        return None
    signature = google.get("thought_signature")
    return signature if isinstance(signature, str) and signature else None


def _fragment_slot(tool_call: dict[str, Any]) -> Optional[int | str]:
    index = tool_call.get("index")
    if isinstance(index, int):
        return index
    call_id = tool_call.get("id")
    if call_id:
        return str(call_id)
    return None


def _token_count(value: Any) -> Optional[int]:
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        return None
    return int(value)


def _reported_cost(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def normalize_openai_chunk(chunk: dict[str, Any]) -> list[NormalizedEvent]:
    """
    Normalize one chat-completions stream chunk

    Args:
        chunk: Decoded chunk

    Returns:
        list: TextDelta, ToolCallFragment, Finish and Usage events in chunk order

    Raises:
        BackendTransportError: Chunk carries an error body
        MalformedChunkError: delta, tool_calls or a function entry has the wrong type
    """
    error = chunk.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise BackendTransportError(
            message=message or "Backend returned an error",
            code="backend_stream_error",
            details={"error": error},
        )

    events: list[NormalizedEvent] = []
    choices = chunk.get("choices")
    if isinstance(choices, list) and choices:
        choice = choices[0] if isinstance(choices[0], dict) else {}
        delta = choice.get("delta") or {}
        if not isinstance(delta, dict):
            raise MalformedChunkError(f"Unexpected delta type: {type(delta).__name__}")

        content = delta.get("content")
        if isinstance(content, str) and content:
            events.append(TextDelta(content))

        tool_calls = delta.get("tool_calls") or []
        if not isinstance(tool_calls, list):
            raise MalformedChunkError(f"Unexpected tool_calls type: {type(tool_calls).__name__}")
        for tool_call in tool_calls:
            if not isinstance(tool_call, dict):
                continue
            function = tool_call.get("function") or {}
            if not isinstance(function, dict):
                raise MalformedChunkError(f"Unexpected function type: {type(function).__name__}")
            arguments = function.get("arguments")
            if not isinstance(arguments, (str, dict)):
                arguments = None
            call_id = tool_call.get("id")
            events.append(
                ToolCallFragment(
                    slot=_fragment_slot(tool_call),
                    call_id=str(call_id) if call_id else None,
                    name=_optional_str(function.get("name")),
                    args_chunk=arguments,
                    signature=extract_thought_signature(tool_call),
                )
            )

        finish_reason = _optional_str(choice.get("finish_reason"))
        if finish_reason:
            events.append(Finish(finish_reason))

    usage = chunk.get("usage")
    if isinstance(usage, dict):
        events.append(
            Usage(
                input_tokens=_token_count(usage.get("prompt_tokens")),
                output_tokens=_token_count(usage.get("completion_tokens")),
                cost=_reported_cost(usage.get("cost")),
            )
        )
    return events
