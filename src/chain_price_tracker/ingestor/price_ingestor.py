"""Price ingestion: fetch the feed, keep tracked assets, persist samples."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from chain_price_tracker.ingestor.feed_client import MarketDataClient, MarketDataParseError
from chain_price_tracker.ingestor.models import MarketQuote, QuoteParseError
from chain_price_tracker.storage.repos import PriceSampleDTO
from chain_price_tracker.storage.stores import TimeSeriesStore

logger = logging.getLogger(__name__)

DEFAULT_TRACKED_SYMBOLS = ("eth", "matic")


class FetchFailedError(Exception):
    """Raised when a fetch-and-save cycle fails for any reason."""


def filter_tracked(entries: Iterable[Any], tracked_symbols: Iterable[str]) -> list[MarketQuote]:
    """Keep entries whose symbol is tracked (case-insensitive) and parse them.

    Untracked entries are skipped without being parsed.

    Raises:
        MarketDataParseError: If a tracked entry is malformed.
    """
    tracked = {s.lower() for s in tracked_symbols}
    quotes: list[MarketQuote] = []
    for entry in entries:
        symbol = MarketQuote.symbol_of(entry)
        if symbol is None or symbol not in tracked:
            continue
        try:
            quotes.append(MarketQuote.from_dict(entry))
        except QuoteParseError as e:
            raise MarketDataParseError(f"Malformed entry for symbol {symbol}: {e}") from e
    return quotes


class PriceIngestor:
    """Fetches market data and writes one sample per tracked asset.

    Each sample is inserted on its own; a failure partway through leaves
    the already-written samples in place and aborts the rest of the cycle.

    Example:
        ```python
        ingestor = PriceIngestor(client, store, tracked_symbols=("eth", "matic"))
        samples = await ingestor.fetch_and_save()
        ```
    """

    def __init__(
        self,
        client: MarketDataClient,
        store: TimeSeriesStore,
        *,
        tracked_symbols: Iterable[str] = DEFAULT_TRACKED_SYMBOLS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._tracked_symbols = tuple(s.lower() for s in tracked_symbols)
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def tracked_symbols(self) -> tuple[str, ...]:
        return self._tracked_symbols

    async def fetch_and_save(self) -> list[PriceSampleDTO]:
        """Fetch the feed and persist each tracked asset's price.

        Returns:
            The stored samples, in feed order.

        Raises:
            FetchFailedError: On any network, parse or persistence failure.
        """
        logger.info("Price fetch triggered at %s", self._clock().isoformat())
        try:
            entries = await self._client.get_market_data()
            quotes = filter_tracked(entries, self._tracked_symbols)
            if not quotes:
                logger.warning("Feed contained none of the tracked symbols: %s", ", ".join(self._tracked_symbols))

            saved: list[PriceSampleDTO] = []
            for quote in quotes:
                sample = await self._store.insert(
                    PriceSampleDTO(
                        chain=quote.name,
                        price=quote.usd_price,
                        created_at=self._clock(),
                    )
                )
                saved.append(sample)
                logger.info("Saved price for %s: $%s", quote.name, quote.usd_price)
        except Exception as e:
            logger.error("Error fetching or saving prices: %s", e)
            raise FetchFailedError("Failed to fetch or save prices") from e

        logger.info("Prices saved successfully (%d samples)", len(saved))
        return saved
