"""
Server-Sent Events Helpers

Splits an upstream byte stream into SSE data payloads and encodes
outbound events.
"""

from __future__ import annotations

import json
from typing import Any, Optional

DONE_PAYLOAD = "[DONE]"


def _data_of(event: bytes) -> Optional[str]:
    """Joined data fields of one event block; None when it has none (comments, pings)."""
    lines = [line[5:].removeprefix(b" ") for line in event.split(b"\n") if line.startswith(b"data:")]
    if not lines:
        return None
    return b"\n".join(lines).decode("utf-8", errors="replace")


class SSEDecoder:
    """
    Incremental SSE data extractor

    Bytes are buffered until a blank line ends an event. CRLF line endings
    are accepted, also when split across chunks.
    """

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, chunk: bytes) -> list[str]:
        """Append bytes; return the data payload of every event completed by them."""
        if not chunk:
            return []
        *events, self._pending = (self._pending + chunk).replace(b"\r\n", b"\n").split(b"\n\n")
        return [payload for payload in map(_data_of, events) if payload is not None]

    def flush(self) -> list[str]:
        """Return the payload of a trailing event that was never terminated."""
        rest, self._pending = self._pending, b""
        payload = _data_of(rest) if rest.strip() else None
        return [payload] if payload is not None else []


def encode_sse_data(payload: str) -> bytes:
    return f"data: {payload}\n\n".encode("utf-8")


def encode_sse_json(obj: dict[str, Any], event: Optional[str] = None) -> bytes:
    """Encode an object as one SSE event, with an event line when named."""
    frame = encode_sse_data(json.dumps(obj, ensure_ascii=False))
    if event:
        return f"event: {event}\n".encode("utf-8") + frame
    return frame
