"""
Local OpenAI-compatible server adapter.
"""

from __future__ import annotations

import logging
from typing import Any

from messages_relay.adapters.base import BaseModelAdapter, Endpoint
from messages_relay.protocol.types import MessagesRequest
from messages_relay.streaming.assembler import ArgsMergeStrategy

logger = logging.getLogger(__name__)

UNSUPPORTED_FIELDS = ("thinking", "reasoning_effort", "include_reasoning")


class OllamaAdapter(BaseModelAdapter):
    """
    Targets a local server instead of the aggregator

    Selected only by explicit configuration. The local server resends tool
    arguments as object snapshots, so fragments are merged by key.
    """

    name = "ollama"
    args_strategy = ArgsMergeStrategy.OBJECT_MERGE

    @classmethod
    def handles(cls, model_id: str, settings) -> bool:
        return settings.ADAPTER == "ollama"

    def prepare_request(self, payload: dict[str, Any], original: MessagesRequest) -> dict[str, Any]:
        stripped = [key for key in UNSUPPORTED_FIELDS if key in payload]
        for key in stripped:
            del payload[key]
        if stripped:
            logger.info("Stripped unsupported fields for local server: %s", ", ".join(stripped))

        prefix = self.settings.OLLAMA_MODEL_PREFIX
        model = payload.get("model")
        if prefix and isinstance(model, str) and model.startswith(prefix):
            payload["model"] = model[len(prefix):]
        return payload

    def endpoint(self, base_url: str, headers: dict[str, str]) -> Endpoint:
        # The local server takes no bearer credential
        local_headers = {k: v for k, v in headers.items() if k.lower() != "authorization"}
        return Endpoint(
            url=f"{self.settings.OLLAMA_HOST.rstrip('/')}/v1/chat/completions",
            headers=local_headers,
        )
