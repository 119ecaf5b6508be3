"""
Streaming Transcoder

Turns a backend generation (text deltas followed by one aggregate result)
into the ordered Messages event stream for a single request.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncGenerator, AsyncIterator, Optional

from messages_relay.common.token_counter import estimate_output_tokens
from messages_relay.protocol import anthropic
from messages_relay.protocol.types import GenerationResult, StreamItem, TextDelta

logger = logging.getLogger(__name__)

TEXT_BLOCK_INDEX = 0


@dataclass
class StreamState:
    """Outbound stream state; owned by exactly one transcoder."""
    has_opened_message: bool = False
    has_opened_text_block: bool = False
    text_block_index: int = TEXT_BLOCK_INDEX
    next_tool_block_index: int = TEXT_BLOCK_INDEX + 1
    closed: bool = False


class StreamClosedError(RuntimeError):
    """A frame was produced after the stream was closed."""


class StreamTranscoder:
    """
    Messages event-stream state machine

    Idle -> MessageOpen -> TextOpen -> ToolBlocks -> MessageClosing -> Closed.
    Text deltas are forwarded one frame each as they arrive. Tool-use blocks
    are emitted at completion with their full input.
    """

    def __init__(self, model: str, message_id: Optional[str] = None):
        self.model = model
        self.message_id = message_id or anthropic.new_message_id()
        self.state = StreamState()
        self.result: Optional[GenerationResult] = None
        self._streamed: list[str] = []

    def _check_open(self) -> None:
        if self.state.closed:
            raise StreamClosedError("Stream already closed")

    def _open_message(self) -> list[bytes]:
        self._check_open()
        if self.state.has_opened_message:
            return []
        self.state.has_opened_message = True
        return [anthropic.message_start_frame(self.message_id, self.model)]

    def on_text(self, text: str) -> list[bytes]:
        frames = self._open_message()
        if not self.state.has_opened_text_block:
            self.state.has_opened_text_block = True
            frames.append(anthropic.text_block_start_frame(self.state.text_block_index))
        frames.append(anthropic.text_delta_frame(self.state.text_block_index, text))
        self._streamed.append(text)
        return frames

    def on_complete(self, result: Optional[GenerationResult]) -> list[bytes]:
        """Close the text block, emit tool-use blocks, then the closing envelope."""
        frames = self._open_message()
        if self.state.has_opened_text_block:
            frames.append(anthropic.block_stop_frame(self.state.text_block_index))
            self.state.has_opened_text_block = False

        tool_calls = result.tool_calls if result else []
        for call in tool_calls:
            index = self.state.next_tool_block_index
            self.state.next_tool_block_index += 1
            frames.append(anthropic.tool_use_block_start_frame(index, call))
            frames.append(anthropic.block_stop_frame(index))

        output_tokens = None
        if result and result.usage and result.usage.output_tokens:
            output_tokens = result.usage.output_tokens
        if output_tokens is None:
            output_tokens = estimate_output_tokens("".join(self._streamed))

        frames.append(anthropic.message_delta_frame(output_tokens))
        frames.append(anthropic.message_stop_frame())
        frames.append(anthropic.done_frame())
        self.state.closed = True
        return frames

    def on_error(self, error: BaseException) -> list[bytes]:
        self._check_open()
        self.state.closed = True
        return [anthropic.error_frame(str(error) or error.__class__.__name__)]

    async def transcode(self, items: AsyncIterator[StreamItem]) -> AsyncGenerator[bytes, None]:
        """
        Drive the state machine from a backend generation

        A failure before the first frame is re-raised so the caller can answer
        with a JSON error. A failure after it becomes one error frame, and the
        stream ends without the terminator.

        Args:
            items: TextDelta items followed by one GenerationResult

        Yields:
            bytes: Encoded SSE frames
        """
        try:
            async with aclosing(items) as stream:
                async for item in stream:
                    if isinstance(item, TextDelta):
                        if not item.text:
                            continue
                        for frame in self.on_text(item.text):
                            yield frame
                    elif isinstance(item, GenerationResult):
                        self.result = item
        except Exception as e:
            if not self.state.has_opened_message:
                raise
            logger.error("Stream failed after %d text delta(s): %s", len(self._streamed), e)
            for frame in self.on_error(e):
                yield frame
            return

        for frame in self.on_complete(self.result):
            yield frame

    @property
    def streamed_text(self) -> str:
        return "".join(self._streamed)
