"""
Backend Router

Resolves a requested model id to a backend handler and the backend model id
to send, using configured mappings and model-id markers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from messages_relay.adapters.registry import AdapterRegistry
from messages_relay.common.errors import RoutingError
from messages_relay.common.http_client import HttpClient
from messages_relay.providers.base import BackendHandler
from messages_relay.providers.gemini import GeminiNativeHandler
from messages_relay.providers.native import NativeHandler
from messages_relay.providers.openrouter import OpenRouterHandler
from messages_relay.services.model_catalog import ModelCatalog
from messages_relay.status import TokenStatusWriter

if TYPE_CHECKING:
    from messages_relay.config import Settings

logger = logging.getLogger(__name__)


class BackendRouter:
    """
    Backend Router

    Owns the shared HTTP client, model catalog and status writer, and the
    per-model cache of aggregator handlers. Rules, first match wins:

    1. Monitor mode: always the native pass-through handler.
    2. Target = default model or the requested id, overridden by the first
       tier substring (opus, sonnet, haiku) that has a configured target.
    3. Native chat forced by configuration (when it is configured).
    4. Target contains a native chat marker (when native chat is configured).
    5. Target has no namespace separator: native pass-through handler.
    6. Otherwise the aggregator handler cached for the target.
    """

    def __init__(
        self,
        settings: "Settings",
        http: Optional[HttpClient] = None,
        catalog: Optional[ModelCatalog] = None,
        status: Optional[TokenStatusWriter] = None,
        adapters: Optional[AdapterRegistry] = None,
        native_chat: Optional[BackendHandler] = None,
    ):
        self.settings = settings
        self.http = http or HttpClient(timeout=settings.HTTP_TIMEOUT)
        self.catalog = catalog or ModelCatalog(
            self.http,
            models_url=f"{settings.OPENROUTER_BASE_URL.rstrip('/')}/models",
            default_context_window=settings.DEFAULT_CONTEXT_WINDOW,
        )
        self.status = status or TokenStatusWriter.from_settings(settings)
        self.adapters = adapters or AdapterRegistry(settings)
        self.native: BackendHandler = NativeHandler(settings, self.http, monitor=settings.MONITOR_MODE)
        if native_chat is None and settings.GEMINI_API_KEY:
            native_chat = GeminiNativeHandler(settings, self.status)
        self.native_chat: Optional[BackendHandler] = native_chat
        self._aggregators: dict[str, BackendHandler] = {}

    def resolve_target(self, requested: str) -> str:
        """Apply the default model and tier overrides to a requested id."""
        target = self.settings.DEFAULT_MODEL or requested
        lowered = requested.lower()
        for tier, override in self.settings.tier_overrides:
            if tier in lowered and override:
                return override
        return target

    def _is_native_chat_target(self, target: str) -> bool:
        return any(marker in target for marker in self.settings.NATIVE_CHAT_MARKERS)

    def _aggregator_available(self) -> bool:
        return bool(self.settings.OPENROUTER_API_KEY) or self.settings.ADAPTER == "ollama"

    def _aggregator(self, target: str) -> BackendHandler:
        handler = self._aggregators.get(target)
        if handler is None:
            handler = OpenRouterHandler(
                target,
                self.settings,
                http=self.http,
                catalog=self.catalog,
                status=self.status,
                adapters=self.adapters,
            )
            self._aggregators[target] = handler
        return handler

    def select(self, requested: str) -> tuple[BackendHandler, str]:
        """
        Select the handler for a requested model id

        Args:
            requested: Model id from the inbound request

        Returns:
            tuple: (handler, resolved backend model id)

        Raises:
            RoutingError: No usable backend for the model
        """
        if not requested:
            raise RoutingError("Request has no model id", code="missing_model")

        if self.settings.MONITOR_MODE:
            logger.info("Route %s -> native (monitor mode)", requested)
            return self.native, requested

        target = self.resolve_target(requested)

        if self.settings.USE_GEMINI_NATIVE and self.native_chat is not None:
            logger.info("Route %s -> native chat (forced), target=%s", requested, target)
            return self.native_chat, target

        if self.native_chat is not None and self._is_native_chat_target(target):
            logger.info("Route %s -> native chat, target=%s", requested, target)
            return self.native_chat, target

        if self.settings.NAMESPACE_SEPARATOR not in target:
            logger.info("Route %s -> native, target=%s", requested, target)
            return self.native, target

        if not self._aggregator_available():
            raise RoutingError(
                f"No aggregator credentials configured for model '{target}'",
                details={"requested_model": requested, "target_model": target},
            )
        logger.info("Route %s -> aggregator, target=%s", requested, target)
        return self._aggregator(target), target

    def warm_targets(self) -> list[str]:
        """Configured targets that route to the aggregator."""
        candidates = [self.settings.DEFAULT_MODEL, *self.settings.mappings.values()]
        targets: list[str] = []
        for target in candidates:
            if not target or target in targets:
                continue
            if self.settings.NAMESPACE_SEPARATOR not in target:
                continue
            if self.native_chat is not None and self._is_native_chat_target(target):
                continue
            targets.append(target)
        return targets

    async def warm_up(self) -> None:
        """Pre-build aggregator handlers for configured targets and fetch their metadata."""
        if self.settings.MONITOR_MODE or not self._aggregator_available():
            return
        for target in self.warm_targets():
            await self._aggregator(target).warm_up()

    def describe(self) -> dict[str, Any]:
        return {
            "mode": "monitor" if self.settings.MONITOR_MODE else "hybrid",
            "mappings": self.settings.mappings,
        }

    async def aclose(self) -> None:
        for handler in list(self._aggregators.values()):
            await handler.aclose()
        self._aggregators.clear()
        await self.http.close()
