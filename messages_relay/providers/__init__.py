"""
Backend Handlers Module

One handler per backend family behind the BackendHandler interface.
"""

from messages_relay.providers.base import BackendHandler, TranscodingHandler
from messages_relay.providers.gemini import GeminiNativeHandler
from messages_relay.providers.native import NativeHandler
from messages_relay.providers.openrouter import OpenRouterHandler

__all__ = [
    "BackendHandler",
    "GeminiNativeHandler",
    "NativeHandler",
    "OpenRouterHandler",
    "TranscodingHandler",
]
