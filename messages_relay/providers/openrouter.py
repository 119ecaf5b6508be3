"""
Aggregator Backend Handler

Translates Messages requests to a chat-completions aggregator (or a local
OpenAI-compatible server when that adapter is active) and turns its SSE
stream back into canonical items.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from contextlib import aclosing
from typing import TYPE_CHECKING, Any, AsyncGenerator, AsyncIterator, Optional

import httpx

from messages_relay.adapters.registry import AdapterRegistry
from messages_relay.common.errors import BackendTransportError, MalformedChunkError
from messages_relay.common.http_client import HttpClient
from messages_relay.common.sse import DONE_PAYLOAD, SSEDecoder
from messages_relay.common.token_counter import estimate_output_tokens, estimate_payload_tokens
from messages_relay.middleware.base import ChunkContext, MiddlewarePipeline, RequestContext
from messages_relay.middleware.thought_signature import (
    REASONING_DETAILS_KEY,
    THOUGHT_SIGNATURES_KEY,
    GeminiThoughtSignatureMiddleware,
)
from messages_relay.protocol.openai import normalize_openai_chunk, parse_sse_json, to_openai_payload
from messages_relay.protocol.types import (
    Finish,
    GenerationResult,
    MessagesRequest,
    StreamItem,
    TextDelta,
    ToolCall,
    ToolCallFragment,
    Usage,
)
from messages_relay.providers.base import TranscodingHandler
from messages_relay.status import TokenStatusWriter
from messages_relay.streaming.assembler import ToolCallAssembler

if TYPE_CHECKING:
    from messages_relay.config import Settings
    from messages_relay.services.model_catalog import ModelCatalog

logger = logging.getLogger(__name__)

# Upstream error bodies are truncated to this many characters in error messages
MAX_ERROR_BODY_CHARS = 2000


def _first_delta(chunk: dict[str, Any]) -> dict[str, Any]:
    choices = chunk.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta")
        if isinstance(delta, dict):
            return delta
    return {}


async def iter_sse_payloads(response: httpx.Response) -> AsyncIterator[str]:
    """Yield SSE data payloads until the [DONE] sentinel or end of body."""
    decoder = SSEDecoder()
    async for raw in response.aiter_bytes():
        for data in decoder.feed(raw):
            if data.strip() == DONE_PAYLOAD:
                return
            yield data
    for data in decoder.flush():
        if data.strip() == DONE_PAYLOAD:
            return
        yield data


class OpenRouterHandler(TranscodingHandler):
    """
    Aggregator Backend Handler

    One instance per resolved model id, cached by the router. It owns no
    per-request state: adapters, assemblers and chunk metadata are created
    inside each generation.
    """

    name = "openrouter"

    def __init__(
        self,
        model_id: str,
        settings: "Settings",
        http: HttpClient,
        catalog: "ModelCatalog",
        status: TokenStatusWriter,
        adapters: Optional[AdapterRegistry] = None,
        middleware: Optional[MiddlewarePipeline] = None,
    ):
        self.model_id = model_id
        self.settings = settings
        self.http = http
        self.catalog = catalog
        self.status = status
        self.adapters = adapters or AdapterRegistry(settings)
        self.middleware = middleware or MiddlewarePipeline([GeminiThoughtSignatureMiddleware()])

    async def warm_up(self) -> None:
        await self.catalog.ensure(self.model_id)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "HTTP-Referer": self.settings.OPENROUTER_REFERER,
            "X-Title": self.settings.OPENROUTER_TITLE,
        }
        if self.settings.OPENROUTER_API_KEY:
            headers["Authorization"] = f"Bearer {self.settings.OPENROUTER_API_KEY}"
        return headers

    async def _build_payload(self, request: MessagesRequest, model_id: str, adapter) -> dict[str, Any]:
        info = await self.catalog.ensure(model_id)
        payload = to_openai_payload(request, model_id)
        if info.supports_reasoning and self.settings.ADAPTER != "ollama":
            payload["include_reasoning"] = True

        adapter.reset()
        payload = adapter.prepare_request(payload, request)
        await self.middleware.before_request(
            RequestContext(
                model_id=model_id,
                messages=request.messages,
                payload=payload,
                tools=payload.get("tools", []),
                stream=True,
            )
        )
        return payload

    async def generate(self, request: MessagesRequest, model_id: str) -> AsyncGenerator[StreamItem, None]:
        adapter = self.adapters.select(model_id)
        payload = await self._build_payload(request, model_id, adapter)
        endpoint = adapter.endpoint(self.settings.OPENROUTER_BASE_URL, self._headers())

        logger.info(
            "Aggregator request: requested=%s target=%s adapter=%s tools=%d",
            request.model, model_id, adapter.name, len(payload.get("tools", [])),
        )
        logger.debug("Aggregator payload: url=%s body=%s", endpoint.url, json.dumps(payload, ensure_ascii=False))

        assembler = ToolCallAssembler(adapter.args_strategy)
        metadata: dict[str, Any] = {}
        extracted: list[ToolCall] = []
        accumulated = ""
        usage: Optional[Usage] = None
        finish_reason: Optional[str] = None
        completed = False

        try:
            async with self.http.stream("POST", endpoint.url, headers=endpoint.headers, json=payload) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise BackendTransportError(
                        message=f"Backend returned HTTP {response.status_code}: {body[:MAX_ERROR_BODY_CHARS]}",
                        code="backend_http_error",
                        details={"upstream_status": response.status_code},
                    )

                async with aclosing(iter_sse_payloads(response)) as payloads:
                    async for data in payloads:
                        try:
                            chunk = parse_sse_json(data)
                            events = normalize_openai_chunk(chunk)
                        except MalformedChunkError as e:
                            logger.warning("Skipping malformed chunk from %s: %s", model_id, e)
                            continue

                        await self.middleware.after_stream_chunk(
                            ChunkContext(model_id=model_id, chunk=chunk, delta=_first_delta(chunk)),
                            metadata,
                        )

                        for event in events:
                            if isinstance(event, TextDelta):
                                processed = adapter.process_text_content(event.text, accumulated)
                                extracted.extend(processed.extracted_tool_calls)
                                if processed.cleaned_text:
                                    accumulated += processed.cleaned_text
                                    yield TextDelta(processed.cleaned_text)
                            elif isinstance(event, ToolCallFragment):
                                assembler.feed_fragment(event)
                            elif isinstance(event, Usage):
                                usage = event
                            elif isinstance(event, Finish):
                                finish_reason = event.reason

            tail = adapter.flush()
            extracted.extend(tail.extracted_tool_calls)
            if tail.cleaned_text:
                accumulated += tail.cleaned_text
                yield TextDelta(tail.cleaned_text)
            completed = True
        except httpx.HTTPError as e:
            raise BackendTransportError(
                message=f"Backend request failed: {e}",
                code="backend_unreachable",
            ) from e
        finally:
            if not completed:
                assembler.discard()

        tool_calls = self._attach_signatures(assembler.finalize(), metadata) + extracted
        result = GenerationResult(
            full_content=accumulated,
            tool_calls=tool_calls,
            reasoning_details=list(metadata.get(REASONING_DETAILS_KEY, [])),
            usage=usage,
            finish_reason=finish_reason,
        )
        await self._record_usage(model_id, payload, result)
        yield result

    @staticmethod
    def _attach_signatures(calls: list[ToolCall], metadata: dict[str, Any]) -> list[ToolCall]:
        signatures = metadata.get(THOUGHT_SIGNATURES_KEY) or {}
        if not signatures:
            return calls
        return [
            dataclasses.replace(call, signature=signatures[call.id])
            if call.signature is None and call.id in signatures
            else call
            for call in calls
        ]

    async def _record_usage(self, model_id: str, payload: dict[str, Any], result: GenerationResult) -> None:
        usage = result.usage or Usage()
        input_tokens = usage.input_tokens
        if input_tokens is None:
            input_tokens = estimate_payload_tokens(payload.get("messages", []))
        output_tokens = usage.output_tokens or estimate_output_tokens(result.full_content)
        await self.status.safe_record(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            context_window=self.catalog.context_window(model_id),
            reported_cost=usage.cost,
        )
