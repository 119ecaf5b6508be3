"""
Middleware Pipeline

Cross-cutting hooks invoked before a request is dispatched and after every
raw backend chunk, independent of which adapter is active.
"""

from __future__ import annotations

import logging
from abc import ABC
from dataclasses import dataclass, field
from typing import Any

from messages_relay.protocol.types import CanonicalMessage

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Outgoing request as seen by before_request hooks; payload may be mutated."""
    model_id: str
    messages: list[CanonicalMessage]
    payload: dict[str, Any]
    tools: list[dict[str, Any]] = field(default_factory=list)
    stream: bool = True


@dataclass
class ChunkContext:
    model_id: str
    chunk: dict[str, Any]
    delta: dict[str, Any] = field(default_factory=dict)


class Middleware(ABC):
    """Base middleware; both hooks default to no-ops."""

    name = "middleware"

    async def before_request(self, ctx: RequestContext) -> None:
        return None

    async def after_stream_chunk(self, ctx: ChunkContext, metadata: dict[str, Any]) -> None:
        return None


class MiddlewarePipeline:
    """
    Ordered list of middleware

    Every hook runs for every request. A failing before_request hook aborts
    the request; a failing chunk hook is logged and the chunk still flows.
    """

    def __init__(self, middlewares: list[Middleware] | None = None):
        self._middlewares: list[Middleware] = list(middlewares or [])

    def register(self, middleware: Middleware) -> None:
        self._middlewares.append(middleware)

    @property
    def middlewares(self) -> list[Middleware]:
        return list(self._middlewares)

    async def before_request(self, ctx: RequestContext) -> None:
        for middleware in self._middlewares:
            await middleware.before_request(ctx)

    async def after_stream_chunk(self, ctx: ChunkContext, metadata: dict[str, Any]) -> None:
        for middleware in self._middlewares:
            try:
                await middleware.after_stream_chunk(ctx, metadata)
            except Exception as e:
                logger.warning("Middleware %s failed on stream chunk: %s", middleware.name, e)
