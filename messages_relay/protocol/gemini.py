"""
Native Chat Protocol Conversion

Converts canonical messages into google-genai chat history and generation
config, and normalizes streamed chat responses into backend-neutral events.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from google.genai import types

from messages_relay.common.errors import InvalidRequestError
from messages_relay.protocol.tools import map_tool_choice_to_gemini, remove_uri_format
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

_ROLE_MAP = {
    Role.USER: "user",
    Role.ASSISTANT: "model",
    Role.TOOL: "user",
}


@dataclass
class ChatTurn:
    """History plus the trailing user turn sent through the chat session."""
    history: list[types.Content]
    message: list[types.Part]


def _image_part(block: ImageBlock) -> Optional[types.Part]:
    """Inline data-URI images; the MIME type is read from the URI header, never sniffed."""
    if not block.is_data_uri:
        logger.debug("Dropping non-inline image for native chat backend")
        return None
    header, _, data = block.url.partition(",")
    mime_type = header[len("data:"):].split(";", 1)[0] or block.media_type or "image/png"
    try:
        raw = base64.b64decode(data)
    except (binascii.Error, ValueError):
        logger.debug("Dropping image with undecodable base64 payload")
        return None
    return types.Part.from_bytes(data=raw, mime_type=mime_type)


def _function_response(name: str, block: ToolResultBlock) -> types.Part:
    response: dict[str, Any]
    try:
        parsed = json.loads(block.content) if block.content else {}
        response = parsed if isinstance(parsed, dict) else {"result": block.content}
    except json.JSONDecodeError:
        response = {"result": block.content}
    if block.is_error:
        response = {"error": block.content}
    return types.Part.from_function_response(name=name, response=response)


def _decode_signature(signature: Optional[str]) -> Optional[bytes]:
    if not signature:
        return None
    try:
        return base64.b64decode(signature)
    except (binascii.Error, ValueError):
        return None


def _message_parts(message: CanonicalMessage, call_names: dict[str, str]) -> list[types.Part]:
    parts: list[types.Part] = []
    for block in message.blocks:
        if isinstance(block, TextBlock):
            if block.text:
                parts.append(types.Part.from_text(text=block.text))
        elif isinstance(block, ImageBlock):
            image = _image_part(block)
            if image is not None:
                parts.append(image)
        elif isinstance(block, ToolResultBlock):
            name = call_names.get(block.tool_call_id, block.tool_call_id)
            parts.append(_function_response(name, block))

    if message.role == Role.TOOL and message.tool_call_id:
        name = call_names.get(message.tool_call_id, message.tool_call_id)
        parts.append(
            _function_response(name, ToolResultBlock(tool_call_id=message.tool_call_id, content=message.text))
        )

    for call in message.tool_calls:
        call_names[call.id] = call.name
        parts.append(
            types.Part(
                function_call=types.FunctionCall(name=call.name, args=call.args),
                thought_signature=_decode_signature(call.signature),
            )
        )
    return parts


def to_chat_turn(messages: list[CanonicalMessage]) -> ChatTurn:
    """
    Split canonical messages into chat history and the message to send

    The system message is excluded (it travels as a system instruction).
    Tool results carry the function name of the earlier invocation with
    the same id.

    Raises:
        InvalidRequestError: The conversation does not end with a user turn
    """
    call_names: dict[str, str] = {}
    contents: list[types.Content] = []
    for message in messages:
        role = _ROLE_MAP.get(message.role)
        if role is None:
            continue
        parts = _message_parts(message, call_names)
        if not parts:
            continue
        if contents and contents[-1].role == role:
            contents[-1].parts.extend(parts)
        else:
            contents.append(types.Content(role=role, parts=parts))

    if not contents or contents[-1].role != "user":
        raise InvalidRequestError(
            "Native chat requests must end with a user turn", code="invalid_turn_order"
        )
    last = contents.pop()
    return ChatTurn(history=contents, message=list(last.parts or []))


def build_generate_config(request: MessagesRequest) -> types.GenerateContentConfig:
    config = request.model_config
    kwargs: dict[str, Any] = {}
    if request.system_prompt:
        kwargs["system_instruction"] = request.system_prompt
    if config.max_output_tokens is not None:
        kwargs["max_output_tokens"] = config.max_output_tokens
    if config.temperature is not None:
        kwargs["temperature"] = config.temperature
    if config.top_p is not None:
        kwargs["top_p"] = config.top_p
    if config.top_k is not None:
        kwargs["top_k"] = config.top_k

    if request.tools:
        kwargs["tools"] = [
            types.Tool(
                function_declarations=[
                    types.FunctionDeclaration(
                        name=tool["name"],
                        description=tool.get("description", ""),
                        parameters_json_schema=remove_uri_format(
                            tool.get("input_schema") or {"type": "object", "properties": {}}
                        ),
                    )
                    for tool in request.tools
                ]
            )
        ]
        tool_config = map_tool_choice_to_gemini(request.tool_choice)
        if tool_config is not None:
            kwargs["tool_config"] = tool_config

    return types.GenerateContentConfig(**kwargs)


def _enum_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    name = getattr(value, "name", None)
    return name if isinstance(name, str) else str(value)


class GeminiChunkNormalizer:
    """
    Normalizes streamed chat responses

    Function calls arrive whole, so each one gets its own slot; the counter
    lives here because slots must stay unique for the whole stream.
    """

    def __init__(self) -> None:
        self._next_slot = 0

    def normalize(self, chunk: Any) -> list[NormalizedEvent]:
        events: list[NormalizedEvent] = []
        for candidate in getattr(chunk, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                if getattr(part, "thought", False):
                    continue
                function_call = getattr(part, "function_call", None)
                if function_call is not None:
                    events.append(self._fragment(function_call, getattr(part, "thought_signature", None)))
                    continue
                text = getattr(part, "text", None)
                if text:
                    events.append(TextDelta(text))

            finish_reason = _enum_name(getattr(candidate, "finish_reason", None))
            if finish_reason:
                events.append(Finish(finish_reason))

        usage = getattr(chunk, "usage_metadata", None)
        if usage is not None:
            events.append(
                Usage(
                    input_tokens=getattr(usage, "prompt_token_count", None),
                    output_tokens=getattr(usage, "candidates_token_count", None),
                )
            )
        return events

    def _fragment(self, function_call: Any, thought_signature: Optional[bytes]) -> ToolCallFragment:
        slot = self._next_slot
        self._next_slot += 1
        signature = base64.b64encode(thought_signature).decode("ascii") if thought_signature else None
        return ToolCallFragment(
            slot=slot,
            call_id=getattr(function_call, "id", None),
            name=getattr(function_call, "name", None),
            args_chunk=dict(getattr(function_call, "args", None) or {}),
            signature=signature,
        )
