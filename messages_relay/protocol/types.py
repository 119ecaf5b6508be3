"""
Canonical Type Definitions

Protocol-agnostic representation of a Messages request, the normalized
events every backend stream is reduced to, and the aggregate result a
backend client returns at stream end.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class Role(str, Enum):
    """Unified role representation across all backends."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ImageBlock:
    """Image reference; base64 sources are carried as data URIs."""
    url: str
    media_type: Optional[str] = None

    @property
    def is_data_uri(self) -> bool:
        return self.url.startswith("data:") and ";base64," in self.url


@dataclass(frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    signature: Optional[str] = None


@dataclass(frozen=True)
class ToolResultBlock:
    tool_call_id: str
    content: str = ""
    is_error: bool = False


ContentBlock = Union[TextBlock, ImageBlock, ToolUseBlock, ToolResultBlock]


@dataclass(frozen=True)
class ToolCall:
    """
    A complete tool invocation.

    Built once the stream for the call is known to be complete; never mutated afterwards.
    """
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    signature: Optional[str] = None


@dataclass(frozen=True)
class CanonicalMessage:
    role: Role
    content: Union[str, tuple[ContentBlock, ...]] = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: Optional[str] = None

    @property
    def blocks(self) -> tuple[ContentBlock, ...]:
        """Content as blocks, wrapping plain string content in one text block."""
        if isinstance(self.content, str):
            return (TextBlock(self.content),) if self.content else ()
        return self.content

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))


@dataclass(frozen=True)
class ModelConfig:
    """Optional generation parameters; each backend drops what it cannot express."""
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None


@dataclass
class MessagesRequest:
    """
    Parsed inbound Messages request

    Holds the canonical messages plus the raw body and forwarded headers,
    which the pass-through handler relays untouched.
    """
    model: str
    messages: list[CanonicalMessage]
    model_config: ModelConfig = field(default_factory=ModelConfig)
    tools: list[dict[str, Any]] = field(default_factory=list)
    tool_choice: Optional[dict[str, Any]] = None
    stream: bool = False
    body: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def system_prompt(self) -> Optional[str]:
        if self.messages and self.messages[0].role == Role.SYSTEM:
            return self.messages[0].text
        return None


# ============ Normalized backend events ============

@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallFragment:
    """
    One slice of a tool call as delivered by a backend.

    slot is the backend's positional index or call id; None continues the
    most recent call. args_chunk is a raw JSON text slice or a decoded object.
    signature is an opaque continuation token some backends attach to a call.
    """
    slot: Optional[Union[int, str]]
    call_id: Optional[str] = None
    name: Optional[str] = None
    args_chunk: Optional[Union[str, dict[str, Any]]] = None
    signature: Optional[str] = None


@dataclass(frozen=True)
class Finish:
    reason: Optional[str]


@dataclass(frozen=True)
class Usage:
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cost: Optional[float] = None


NormalizedEvent = Union[TextDelta, ToolCallFragment, Finish, Usage]


@dataclass
class GenerationResult:
    """
    Aggregate result of one backend generation

    Used for bookkeeping and non-streaming responses; streamed frames are
    already on the wire when this is produced.
    """
    full_content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    reasoning_details: list[Any] = field(default_factory=list)
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None


StreamItem = Union[TextDelta, GenerationResult]
