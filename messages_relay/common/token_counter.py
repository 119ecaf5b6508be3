"""
Token Estimation Module

Character-based token estimates used when a backend reports no usage.
"""

import json
import math
from typing import Any

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """
    Estimate tokens in text

    Args:
        text: Text to count

    Returns:
        int: ceil(len(text) / 4)
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_output_tokens(streamed_text: str) -> int:
    """Output estimate reported at the end of a stream; never zero."""
    return estimate_tokens(streamed_text) or 1


def estimate_payload_tokens(payload: Any) -> int:
    """Estimate tokens of a JSON payload from its compact serialized length."""
    serialized = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return estimate_tokens(serialized)
