"""
Model Catalog

Process-wide cache of backend model metadata (context window, reasoning
support) read from the aggregator's model listing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from messages_relay.common.http_client import HttpClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    context_window: int
    supports_reasoning: bool = False


class ModelCatalog:
    """
    Model Catalog

    Entries are written at most once per model id and never changed. Two
    concurrent first lookups for one id may both fetch; the second write
    stores the same value. Failed lookups are not cached, so a later
    request retries.
    """

    def __init__(self, http: HttpClient, models_url: str, default_context_window: int):
        self._http = http
        self._models_url = models_url
        self._default_context_window = default_context_window
        self._cache: dict[str, ModelInfo] = {}

    def get(self, model_id: str) -> Optional[ModelInfo]:
        return self._cache.get(model_id)

    def context_window(self, model_id: str) -> int:
        info = self._cache.get(model_id)
        return info.context_window if info else self._default_context_window

    def supports_reasoning(self, model_id: str) -> bool:
        info = self._cache.get(model_id)
        return bool(info and info.supports_reasoning)

    async def ensure(self, model_id: str) -> ModelInfo:
        """
        Look up a model once

        Returns:
            ModelInfo: Cached entry, or the defaults when the listing is unavailable
        """
        cached = self._cache.get(model_id)
        if cached is not None:
            return cached

        try:
            response = await self._http.get(self._models_url)
            response.raise_for_status()
            listing = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Model listing unavailable, using defaults for %s: %s", model_id, e)
            return ModelInfo(context_window=self._default_context_window)

        info = self._find(listing, model_id)
        self._cache[model_id] = info
        logger.debug("Model %s: context_window=%d reasoning=%s", model_id, info.context_window, info.supports_reasoning)
        return info

    def _find(self, listing: Any, model_id: str) -> ModelInfo:
        models = listing.get("data") if isinstance(listing, dict) else None
        for model in models or []:
            if not isinstance(model, dict) or model.get("id") != model_id:
                continue
            context_length = model.get("context_length")
            if not isinstance(context_length, int) or context_length <= 0:
                top_provider = model.get("top_provider") or {}
                context_length = top_provider.get("context_length")
            if not isinstance(context_length, int) or context_length <= 0:
                context_length = self._default_context_window
            parameters = model.get("supported_parameters") or []
            return ModelInfo(
                context_window=context_length,
                supports_reasoning="reasoning" in parameters or "include_reasoning" in parameters,
            )
        return ModelInfo(context_window=self._default_context_window)
