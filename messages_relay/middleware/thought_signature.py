"""
Thought signature middleware.

Gemini models reached through a chat-completions endpoint attach an opaque
thought signature to each tool call (extra_content.google.thought_signature)
and expect it back on that call in the next turn:
https://ai.google.dev/gemini-api/docs/thought-signatures#openai
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Optional

from messages_relay.middleware.base import ChunkContext, Middleware, RequestContext
from messages_relay.protocol.openai import extract_thought_signature

logger = logging.getLogger(__name__)

REASONING_DETAILS_KEY = "reasoning_details"
THOUGHT_SIGNATURES_KEY = "thought_signatures"
# Upper bound on remembered signatures per middleware instance
MAX_CACHED_SIGNATURES = 1024


class GeminiThoughtSignatureMiddleware(Middleware):
    """
    Collects thought signatures and reasoning details from stream chunks

    Signatures are written to the per-request metadata keyed by call id (or
    slot when the id is absent) and remembered by call id, so they can be
    re-attached when the client sends the tool call back.
    """

    name = "gemini_thought_signature"

    def __init__(self, max_cached: int = MAX_CACHED_SIGNATURES):
        self._max_cached = max_cached
        self._signatures: OrderedDict[str, str] = OrderedDict()

    def remember(self, call_id: str, signature: str) -> None:
        self._signatures[call_id] = signature
        self._signatures.move_to_end(call_id)
        while len(self._signatures) > self._max_cached:
            self._signatures.popitem(last=False)

    def lookup(self, call_id: str) -> Optional[str]:
        return self._signatures.get(call_id)

    async def before_request(self, ctx: RequestContext) -> None:
        known: dict[str, str] = {}
        for message in ctx.messages:
            for call in message.tool_calls:
                signature = call.signature or self.lookup(call.id)
                if signature:
                    known[call.id] = signature

        if not known:
            return
        for message in ctx.payload.get("messages", []):
            if message.get("role") != "assistant":
                continue
            for tool_call in message.get("tool_calls") or []:
                signature = known.get(tool_call.get("id", ""))
                if signature:
                    tool_call["extra_content"] = {"google": {"thought_signature": signature}}
                    logger.debug("Re-attached thought signature to tool call %s", tool_call.get("id"))

    async def after_stream_chunk(self, ctx: ChunkContext, metadata: dict[str, Any]) -> None:
        reasoning_details = ctx.delta.get("reasoning_details")
        if isinstance(reasoning_details, list) and reasoning_details:
            metadata.setdefault(REASONING_DETAILS_KEY, []).extend(reasoning_details)

        for tool_call in ctx.delta.get("tool_calls") or []:
            if not isinstance(tool_call, dict):
                continue
            signature = extract_thought_signature(tool_call)
            if signature is None:
                continue
            call_id = tool_call.get("id")
            key = call_id or tool_call.get("index")
            metadata.setdefault(THOUGHT_SIGNATURES_KEY, {})[key] = signature
            if call_id:
                self.remember(call_id, signature)
                logger.info("Captured thought signature for tool call %s", call_id)
