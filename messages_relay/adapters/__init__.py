"""
Model adapters for per-model request and response quirks.
"""

from messages_relay.adapters.base import AdapterResult, BaseModelAdapter, DefaultAdapter, Endpoint
from messages_relay.adapters.grok import GrokAdapter
from messages_relay.adapters.ollama import OllamaAdapter
from messages_relay.adapters.registry import AdapterRegistry

__all__ = [
    "AdapterRegistry",
    "AdapterResult",
    "BaseModelAdapter",
    "DefaultAdapter",
    "Endpoint",
    "GrokAdapter",
    "OllamaAdapter",
]
