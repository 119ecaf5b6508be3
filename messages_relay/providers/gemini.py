"""
Native Chat Backend Handler

Runs Messages requests as a google-genai multi-turn chat: earlier turns
become the chat history and the final user turn is sent through the
streaming chat call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, AsyncGenerator, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors

from messages_relay.common.errors import BackendTransportError
from messages_relay.common.token_counter import estimate_output_tokens, estimate_payload_tokens
from messages_relay.protocol.gemini import GeminiChunkNormalizer, build_generate_config, to_chat_turn
from messages_relay.protocol.types import (
    Finish,
    GenerationResult,
    MessagesRequest,
    StreamItem,
    TextDelta,
    ToolCallFragment,
    Usage,
)
from messages_relay.providers.base import TranscodingHandler
from messages_relay.status import TokenStatusWriter
from messages_relay.streaming.assembler import ArgsMergeStrategy, ToolCallAssembler

if TYPE_CHECKING:
    from messages_relay.config import Settings

logger = logging.getLogger(__name__)

# Aggregator-style namespace that the native API does not accept
NATIVE_MODEL_PREFIX = "google/"


def native_model_name(model_id: str) -> str:
    if model_id.startswith(NATIVE_MODEL_PREFIX):
        return model_id[len(NATIVE_MODEL_PREFIX):]
    return model_id


class GeminiNativeHandler(TranscodingHandler):
    """
    Native Chat Backend Handler

    One instance per process. Function calls arrive whole, never split, so
    each gets its own assembler slot and arguments are merged as objects.
    """

    name = "gemini"

    def __init__(self, settings: "Settings", status: TokenStatusWriter, client: Optional[Any] = None):
        if client is None:
            if not settings.GEMINI_API_KEY:
                raise ValueError("API key cannot be empty.")
            client = genai.Client(api_key=settings.GEMINI_API_KEY)
        self.settings = settings
        self.status = status
        self.client = client

    async def generate(self, request: MessagesRequest, model_id: str) -> AsyncGenerator[StreamItem, None]:
        turn = to_chat_turn(request.messages)
        config = build_generate_config(request)
        model = native_model_name(model_id)
        logger.info(
            "Native chat request: requested=%s target=%s history=%d tools=%d",
            request.model, model, len(turn.history), len(request.tools),
        )

        normalizer = GeminiChunkNormalizer()
        assembler = ToolCallAssembler(ArgsMergeStrategy.OBJECT_MERGE)
        text_parts: list[str] = []
        usage: Optional[Usage] = None
        finish_reason: Optional[str] = None
        completed = False

        try:
            chat = self.client.aio.chats.create(model=model, config=config, history=turn.history)
            stream = await chat.send_message_stream(turn.message)
            async for chunk in stream:
                for event in normalizer.normalize(chunk):
                    if isinstance(event, TextDelta):
                        text_parts.append(event.text)
                        yield event
                    elif isinstance(event, ToolCallFragment):
                        assembler.feed_fragment(event)
                    elif isinstance(event, Usage):
                        usage = event
                    elif isinstance(event, Finish):
                        finish_reason = event.reason
            completed = True
        except asyncio.CancelledError:
            raise
        except genai_errors.APIError as e:
            raise BackendTransportError(
                message=f"Native chat backend error: {e.message or e}",
                code="backend_http_error",
                details={"upstream_status": e.code},
            ) from e
        except httpx.HTTPError as e:
            raise BackendTransportError(
                message=f"Native chat request failed: {e}",
                code="backend_unreachable",
            ) from e
        finally:
            if not completed:
                assembler.discard()

        full_content = "".join(text_parts)
        result = GenerationResult(
            full_content=full_content,
            tool_calls=assembler.finalize(),
            usage=usage,
            finish_reason=finish_reason,
        )

        recorded = usage or Usage()
        await self.status.safe_record(
            input_tokens=(
                recorded.input_tokens
                if recorded.input_tokens is not None
                else estimate_payload_tokens(request.body.get("messages", []))
            ),
            output_tokens=recorded.output_tokens or estimate_output_tokens(full_content),
            context_window=self.settings.DEFAULT_CONTEXT_WINDOW,
        )
        yield result
