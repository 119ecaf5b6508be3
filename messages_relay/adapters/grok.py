"""
Grok adapter: tool calls embedded in the text channel.

Some Grok models write tool calls as inline XML instead of using the
structured tool_calls field:

    <xai:function_call name="read_file">
      <xai:parameter name="path">/tmp/a.txt</xai:parameter>
    </xai:function_call>

The adapter holds back text that may belong to such a block, across chunk
boundaries, and turns complete blocks into tool calls.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from messages_relay.adapters.base import AdapterResult, BaseModelAdapter
from messages_relay.protocol.types import ToolCall
from messages_relay.streaming.assembler import generate_call_id

logger = logging.getLogger(__name__)

OPEN_TAG = "<xai:function_call"
CLOSE_TAG = "</xai:function_call>"

_NAME_RE = re.compile(r'<xai:function_call\s+name="([^"]+)"')
_PARAM_RE = re.compile(r'<xai:parameter\s+name="([^"]+)"\s*>(.*?)</xai:parameter>', re.DOTALL)


def _parse_value(raw: str) -> Any:
    value = raw.strip()
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _partial_prefix_len(text: str, tag: str) -> int:
    """Length of the longest suffix of text that is a proper prefix of tag."""
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


class GrokAdapter(BaseModelAdapter):
    name = "grok"

    @classmethod
    def handles(cls, model_id: str, settings) -> bool:
        lowered = model_id.lower()
        return any(marker.lower() in lowered for marker in settings.GROK_MARKERS)

    def __init__(self, model_id: str, settings):
        super().__init__(model_id, settings)
        self._buffer = ""

    def reset(self) -> None:
        self._buffer = ""

    def _parse_block(self, block: str) -> ToolCall | None:
        name_match = _NAME_RE.search(block)
        if not name_match:
            logger.warning("Dropping inline tool call without a name")
            return None
        args = {key: _parse_value(value) for key, value in _PARAM_RE.findall(block)}
        return ToolCall(id=generate_call_id(), name=name_match.group(1), args=args)

    def process_text_content(self, text: str, accumulated: str) -> AdapterResult:
        self._buffer += text
        emitted: list[str] = []
        calls: list[ToolCall] = []

        while self._buffer:
            start = self._buffer.find(OPEN_TAG)
            if start < 0:
                hold = _partial_prefix_len(self._buffer, OPEN_TAG)
                cut = len(self._buffer) - hold
                emitted.append(self._buffer[:cut])
                self._buffer = self._buffer[cut:]
                break

            emitted.append(self._buffer[:start])
            end = self._buffer.find(CLOSE_TAG, start)
            if end < 0:
                self._buffer = self._buffer[start:]
                break

            block = self._buffer[start:end + len(CLOSE_TAG)]
            self._buffer = self._buffer[end + len(CLOSE_TAG):]
            call = self._parse_block(block)
            if call is not None:
                calls.append(call)

        cleaned = "".join(emitted)
        return AdapterResult(
            cleaned_text=cleaned,
            extracted_tool_calls=calls,
            was_transformed=bool(calls) or cleaned != text,
        )

    def flush(self) -> AdapterResult:
        # An unterminated block is forwarded as plain text
        remaining, self._buffer = self._buffer, ""
        return AdapterResult(cleaned_text=remaining, was_transformed=bool(remaining))
