"""
quotes.py - Mint quotes

A PositionQuote prices N wrapped units at one instant: the option premium
plus the stable needed for N interest-bearing units. Quotes are never
stored; a caller may hand one back to mint to bound price drift.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from .core import QuoteStale


@dataclass(frozen=True, slots=True)
class PositionQuote:
    amount: Decimal
    premium: Decimal
    asset_cost: Decimal
    exchange_rate: Decimal
    timestamp: datetime

    @property
    def total(self) -> Decimal:
        return self.premium + self.asset_cost


def premium_drift(quoted: Decimal, live: Decimal) -> Decimal:
    """Relative move from quoted to live (0 when both are zero)."""
    if quoted == 0:
        return Decimal("0") if live == 0 else Decimal("Infinity")
    return abs(live - quoted) / quoted


def check_quote(quote: PositionQuote, amount: Decimal, live_premium: Decimal, max_drift: Decimal) -> None:
    """
    Raises:
        ValueError: If the quote was taken for a different amount
        QuoteStale: If the live premium moved more than max_drift
    """
    if quote.amount != amount:
        raise ValueError(f"quote is for {quote.amount}, mint asked {amount}")
    drift = premium_drift(quote.premium, live_premium)
    if drift > max_drift:
        raise QuoteStale(
            f"premium moved {drift:.4%} since {quote.timestamp} "
            f"({quote.premium} -> {live_premium}), max {max_drift:.4%}"
        )
