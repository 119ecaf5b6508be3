"""
Backend Handler Base Classes

Every backend family implements BackendHandler; the router hands callers
this interface and never a concrete type.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import Any, AsyncGenerator, AsyncIterator, Optional

from messages_relay.common.errors import BackendTransportError
from messages_relay.common.token_counter import estimate_output_tokens, estimate_payload_tokens
from messages_relay.protocol import anthropic
from messages_relay.protocol.types import GenerationResult, MessagesRequest, StreamItem, TextDelta
from messages_relay.streaming.transcoder import StreamTranscoder

logger = logging.getLogger(__name__)


class BackendHandler(ABC):
    """
    Backend Handler Abstract Base Class

    One implementation per backend family, shared by concurrent requests.
    Per-request state lives in the generation, never on the handler.
    """

    name = "backend"

    @abstractmethod
    def stream_response(self, request: MessagesRequest, model_id: str) -> AsyncIterator[bytes]:
        """
        Stream the Messages event frames for a request

        Args:
            request: Canonical request
            model_id: Resolved backend model id

        Yields:
            bytes: Encoded SSE frames
        """

    @abstractmethod
    async def complete(self, request: MessagesRequest, model_id: str) -> dict[str, Any]:
        """Return one complete Messages response body."""

    async def count_tokens(self, body: dict[str, Any], headers: Optional[dict[str, str]] = None) -> dict[str, Any]:
        """Estimate input tokens from the serialized request length."""
        return {"input_tokens": estimate_payload_tokens(body)}

    async def warm_up(self) -> None:
        return None

    async def aclose(self) -> None:
        return None


class TranscodingHandler(BackendHandler):
    """
    Handler for backends whose responses are translated

    Subclasses implement generate(); streaming and non-streaming responses
    are both built from it.
    """

    @abstractmethod
    def generate(self, request: MessagesRequest, model_id: str) -> AsyncGenerator[StreamItem, None]:
        """
        Run one backend generation

        Yields TextDelta items as text arrives, then exactly one
        GenerationResult with the finalized tool calls and usage.
        """

    def stream_response(self, request: MessagesRequest, model_id: str) -> AsyncIterator[bytes]:
        transcoder = StreamTranscoder(model=request.model)
        return transcoder.transcode(self.generate(request, model_id))

    async def complete(self, request: MessagesRequest, model_id: str) -> dict[str, Any]:
        text_parts: list[str] = []
        result: Optional[GenerationResult] = None
        async with aclosing(self.generate(request, model_id)) as items:
            async for item in items:
                if isinstance(item, TextDelta):
                    text_parts.append(item.text)
                elif isinstance(item, GenerationResult):
                    result = item
        if result is None:
            raise BackendTransportError("Backend stream ended without a result", code="incomplete_stream")

        text = "".join(text_parts)
        usage = result.usage
        input_tokens = usage.input_tokens if usage and usage.input_tokens is not None else 0
        output_tokens = (
            usage.output_tokens
            if usage and usage.output_tokens
            else estimate_output_tokens(text)
        )
        return anthropic.build_message_response(
            model=request.model,
            text=text,
            tool_calls=result.tool_calls,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            finish_reason=result.finish_reason,
        )
