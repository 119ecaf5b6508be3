"""
Adapter Registry

Selects the adapter for a backend model id. The first adapter whose predicate
matches wins; the default adapter always matches last.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from messages_relay.adapters.base import BaseModelAdapter, DefaultAdapter
from messages_relay.adapters.grok import GrokAdapter
from messages_relay.adapters.ollama import OllamaAdapter

if TYPE_CHECKING:
    from messages_relay.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_ADAPTERS: tuple[type[BaseModelAdapter], ...] = (OllamaAdapter, GrokAdapter)


class AdapterRegistry:
    """
    Adapter Registry

    Holds adapter classes, not instances: select() builds a fresh adapter for
    every request so per-stream state cannot leak between concurrent requests.
    """

    def __init__(
        self,
        settings: "Settings",
        adapters: Optional[list[type[BaseModelAdapter]]] = None,
    ):
        self.settings = settings
        self._adapters: list[type[BaseModelAdapter]] = list(
            DEFAULT_ADAPTERS if adapters is None else adapters
        )

    def register(self, adapter_cls: type[BaseModelAdapter]) -> None:
        """Add an adapter ahead of the default fallback."""
        self._adapters.append(adapter_cls)

    def select(self, model_id: str) -> BaseModelAdapter:
        for adapter_cls in self._adapters:
            if adapter_cls.handles(model_id, self.settings):
                adapter = adapter_cls(model_id, self.settings)
                break
        else:
            adapter = DefaultAdapter(model_id, self.settings)
        logger.debug("Adapter for %s: %s", model_id, adapter.name)
        return adapter
