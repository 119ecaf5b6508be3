"""
Middleware Package

Cross-cutting hooks around backend requests and stream chunks.
"""

from messages_relay.middleware.base import ChunkContext, Middleware, MiddlewarePipeline, RequestContext
from messages_relay.middleware.thought_signature import GeminiThoughtSignatureMiddleware

__all__ = [
    "ChunkContext",
    "GeminiThoughtSignatureMiddleware",
    "Middleware",
    "MiddlewarePipeline",
    "RequestContext",
]
