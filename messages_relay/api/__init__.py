"""
API Router Module Initialization
"""

from messages_relay.api.messages import router as messages_router

__all__ = ["messages_router"]
