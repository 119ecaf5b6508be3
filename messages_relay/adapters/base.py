"""
Model Adapter Base Class

Adapters correct per-model quirks of an aggregator backend: they reshape the
outgoing payload and clean the text channel of responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from messages_relay.protocol.types import MessagesRequest, ToolCall
from messages_relay.streaming.assembler import ArgsMergeStrategy

if TYPE_CHECKING:
    from messages_relay.config import Settings


@dataclass
class AdapterResult:
    """Outcome of processing one text delta."""
    cleaned_text: str
    extracted_tool_calls: list[ToolCall] = field(default_factory=list)
    was_transformed: bool = False


@dataclass
class Endpoint:
    url: str
    headers: dict[str, str] = field(default_factory=dict)


class BaseModelAdapter:
    """
    Model Adapter Base Class

    Adapters are constructed fresh for every request, so per-stream state
    never outlives one generation. reset() is still called before use.
    """

    name = "base"
    # How the assembler combines tool-call argument fragments for this model
    args_strategy = ArgsMergeStrategy.CONCAT

    def __init__(self, model_id: str, settings: "Settings"):
        self.model_id = model_id
        self.settings = settings

    @classmethod
    def handles(cls, model_id: str, settings: "Settings") -> bool:
        """Whether this adapter applies to the model id."""
        return False

    def reset(self) -> None:
        """Clear per-stream state."""

    def prepare_request(self, payload: dict[str, Any], original: MessagesRequest) -> dict[str, Any]:
        """
        Adjust the outgoing payload in place

        Must be safe to apply twice to the same payload.

        Args:
            payload: Chat-completions payload
            original: Canonical request it was built from

        Returns:
            dict: The payload
        """
        return payload

    def process_text_content(self, text: str, accumulated: str) -> AdapterResult:
        """
        Clean one text delta

        Args:
            text: The delta as received
            accumulated: Cleaned text already forwarded for this stream

        Returns:
            AdapterResult: Text to forward and any tool calls found in the text
        """
        return AdapterResult(cleaned_text=text)

    def flush(self) -> AdapterResult:
        """Release any text held back at stream end."""
        return AdapterResult(cleaned_text="")

    def endpoint(self, base_url: str, headers: dict[str, str]) -> Endpoint:
        """Chat-completions endpoint and headers for this model."""
        return Endpoint(url=f"{base_url.rstrip('/')}/chat/completions", headers=dict(headers))


class DefaultAdapter(BaseModelAdapter):
    """No-op adapter; matches every model."""

    name = "default"

    @classmethod
    def handles(cls, model_id: str, settings: "Settings") -> bool:
        return True
