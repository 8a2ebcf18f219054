"""Data models for the ingestor module."""

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any


class QuoteParseError(ValueError):
    """Raised when a feed entry does not have the expected shape."""


@dataclass(frozen=True)
class MarketQuote:
    """One entry of the market-data feed."""

    symbol: str
    name: str
    usd_price: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MarketQuote":
        """Create a MarketQuote from a feed entry.

        Raises:
            QuoteParseError: If a required field is missing or the price
                is not a finite number.
        """
        if not isinstance(data, dict):
            raise QuoteParseError(f"Feed entry must be an object, got {type(data).__name__}")
        missing = [k for k in ("symbol", "name", "usd_price") if data.get(k) is None]
        if missing:
            raise QuoteParseError(f"Feed entry missing fields: {', '.join(missing)}")
        try:
            price = float(Decimal(str(data["usd_price"])))
        except (InvalidOperation, ValueError) as e:
            raise QuoteParseError(f"Non-numeric usd_price: {data['usd_price']!r}") from e
        if not math.isfinite(price):
            raise QuoteParseError(f"Non-finite usd_price: {data['usd_price']!r}")
        return cls(
            symbol=str(data["symbol"]),
            name=str(data["name"]),
            usd_price=price,
        )

    @staticmethod
    def symbol_of(data: Any) -> str | None:
        """Lowercased symbol of a raw entry, or None when absent."""
        if not isinstance(data, dict) or data.get("symbol") is None:
            return None
        return str(data["symbol"]).lower()
