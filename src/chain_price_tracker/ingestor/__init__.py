"""Data ingestion layer - Market-data feed polling and price persistence."""

from chain_price_tracker.ingestor.feed_client import (
    MarketDataClient,
    MarketDataError,
    MarketDataNetworkError,
    MarketDataParseError,
)
from chain_price_tracker.ingestor.models import MarketQuote
from chain_price_tracker.ingestor.price_ingestor import FetchFailedError, PriceIngestor

__all__ = [
    "FetchFailedError",
    "MarketDataClient",
    "MarketDataError",
    "MarketDataNetworkError",
    "MarketDataParseError",
    "MarketQuote",
    "PriceIngestor",
]
