"""
Response cost accounting for the token status file.

Prices are USD per million tokens. Computed costs round up to 1/10000 USD.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_UP, Decimal
from typing import Optional

COST_SOURCE_BACKEND_REPORTED = "BackendReported"
COST_SOURCE_PRICE_TABLE = "PriceTable"
COST_SOURCE_DEFAULT_ZERO = "DefaultZero"

_TOKENS_PER_PRICE_UNIT = Decimal(1_000_000)
_PRECISION = Decimal("0.0001")


def _priced(tokens: Optional[int], price: Optional[float]) -> Decimal:
    if not tokens or not price:
        return Decimal(0)
    amount = Decimal(int(tokens)) * Decimal(str(price)) / _TOKENS_PER_PRICE_UNIT
    return amount.quantize(_PRECISION, rounding=ROUND_UP)


@dataclass(frozen=True)
class PriceTable:
    input_per_mtok: Optional[float] = None
    output_per_mtok: Optional[float] = None

    @property
    def is_priced(self) -> bool:
        return self.input_per_mtok is not None or self.output_per_mtok is not None

    def price(self, input_tokens: Optional[int], output_tokens: Optional[int]) -> float:
        """Cost of one response; each direction is rounded up before summing."""
        total = _priced(input_tokens, self.input_per_mtok) + _priced(output_tokens, self.output_per_mtok)
        return float(total.quantize(_PRECISION, rounding=ROUND_UP))


@dataclass(frozen=True)
class RequestCost:
    cost: float
    source: str


def resolve_request_cost(
    *,
    reported_cost: Optional[float],
    input_tokens: Optional[int],
    output_tokens: Optional[int],
    prices: PriceTable,
) -> RequestCost:
    """
    Resolve the cost of one response.

    A backend-reported cost wins, then the configured price table, then zero.
    """
    if reported_cost is not None:
        return RequestCost(cost=float(reported_cost), source=COST_SOURCE_BACKEND_REPORTED)
    if not prices.is_priced:
        return RequestCost(cost=0.0, source=COST_SOURCE_DEFAULT_ZERO)
    return RequestCost(cost=prices.price(input_tokens, output_tokens), source=COST_SOURCE_PRICE_TABLE)
