"""
Services Module

Backend routing and model metadata.
"""

from messages_relay.services.model_catalog import ModelCatalog, ModelInfo
from messages_relay.services.router import BackendRouter

__all__ = ["BackendRouter", "ModelCatalog", "ModelInfo"]
