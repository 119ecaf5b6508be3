"""
Token Status File

Writes a small per-port JSON file after every response with the latest
token usage, the running session cost and how much context is left. It is a
read-only artifact for external tooling (status lines, dashboards).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from messages_relay.common.costs import PriceTable, resolve_request_cost

if TYPE_CHECKING:
    from messages_relay.config import Settings

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


class TokenStatusWriter:
    """
    Token Status Writer

    Shared by every handler of one process; the session cost is the sum of
    all responses recorded since startup.
    """

    def __init__(
        self,
        port: int,
        directory: Optional[str] = None,
        prefix: str = "relay-tokens",
        input_price: Optional[float] = None,
        output_price: Optional[float] = None,
    ):
        self.path = os.path.join(directory or tempfile.gettempdir(), f"{prefix}-{port}.json")
        self.prices = PriceTable(input_per_mtok=input_price, output_per_mtok=output_price)
        self.session_total_cost = 0.0

    @classmethod
    def from_settings(cls, settings: "Settings") -> "TokenStatusWriter":
        return cls(
            port=settings.PORT,
            directory=settings.STATUS_DIR,
            prefix=settings.STATUS_FILE_PREFIX,
            input_price=settings.INPUT_PRICE_PER_MTOK,
            output_price=settings.OUTPUT_PRICE_PER_MTOK,
        )

    async def record(
        self,
        *,
        input_tokens: int,
        output_tokens: int,
        context_window: int,
        reported_cost: Optional[float] = None,
    ) -> dict[str, Any]:
        """
        Add one response to the session and rewrite the status file

        The file is written off the event loop. Write failures are logged and
        otherwise ignored.

        Returns:
            dict: The status written
        """
        total = input_tokens + output_tokens
        cost = resolve_request_cost(
            reported_cost=reported_cost,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            prices=self.prices,
        )
        self.session_total_cost += cost.cost

        if context_window > 0:
            left_percent = max(0, min(100, round((context_window - total) / context_window * 100)))
        else:
            left_percent = 100

        status = {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": total,
            "total_cost": round(self.session_total_cost, 6),
            "context_window": context_window,
            "context_left_percent": left_percent,
            "updated_at": _now_ms(),
        }
        await asyncio.to_thread(self._write, status)
        return status

    async def safe_record(self, **kwargs: Any) -> Optional[dict[str, Any]]:
        """Record a response; a failure is logged and never reaches the caller's stream."""
        try:
            return await self.record(**kwargs)
        except Exception as e:
            logger.warning("Failed to record token status: %s", e)
            return None

    def _write(self, status: dict[str, Any]) -> None:
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(status, f)
        except OSError as e:
            logger.warning("Failed to write token status file %s: %s", self.path, e)
