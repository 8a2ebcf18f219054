"""Tests for PriceIngestor and feed entry parsing."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from chain_price_tracker.ingestor.feed_client import (
    MarketDataClient,
    MarketDataNetworkError,
    MarketDataParseError,
)
from chain_price_tracker.ingestor.models import MarketQuote, QuoteParseError
from chain_price_tracker.ingestor.price_ingestor import (
    FetchFailedError,
    PriceIngestor,
    filter_tracked,
)
from chain_price_tracker.storage.stores import PersistenceError

FEED = [
    {"symbol": "ETH", "name": "Ethereum", "usd_price": 1800.25},
    {"symbol": "BTC", "name": "Bitcoin", "usd_price": 60000},
    {"symbol": "MATIC", "name": "Polygon", "usd_price": "0.52"},
]


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def mock_client() -> MagicMock:
    client = MagicMock(spec=MarketDataClient)
    client.get_market_data = AsyncMock(return_value=FEED)
    return client


class TestMarketQuote:
    """Tests for feed entry parsing."""

    def test_from_dict(self) -> None:
        quote = MarketQuote.from_dict({"symbol": "ETH", "name": "Ethereum", "usd_price": "1800.5"})
        assert quote == MarketQuote(symbol="ETH", name="Ethereum", usd_price=1800.5)

    def test_missing_field(self) -> None:
        with pytest.raises(QuoteParseError, match="usd_price"):
            MarketQuote.from_dict({"symbol": "ETH", "name": "Ethereum"})

    def test_non_numeric_price(self) -> None:
        with pytest.raises(QuoteParseError):
            MarketQuote.from_dict({"symbol": "ETH", "name": "Ethereum", "usd_price": "n/a"})

    @pytest.mark.parametrize("price", ["NaN", "Infinity", "-inf", "1e400", float("nan"), float("inf")])
    def test_non_finite_price(self, price) -> None:
        with pytest.raises(QuoteParseError, match="Non-finite"):
            MarketQuote.from_dict({"symbol": "ETH", "name": "Ethereum", "usd_price": price})

    def test_symbol_of(self) -> None:
        assert MarketQuote.symbol_of({"symbol": "MaTiC"}) == "matic"
        assert MarketQuote.symbol_of({"name": "x"}) is None
        assert MarketQuote.symbol_of("not a dict") is None


class TestFilterTracked:
    """Tests for tracked-symbol filtering."""

    def test_case_insensitive(self) -> None:
        quotes = filter_tracked(FEED, ["eth", "MATIC"])
        assert [q.name for q in quotes] == ["Ethereum", "Polygon"]

    def test_untracked_malformed_entries_are_ignored(self) -> None:
        entries = [{"symbol": "DOGE"}, "garbage", {"symbol": "ETH", "name": "Ethereum", "usd_price": 1}]
        assert [q.symbol for q in filter_tracked(entries, ["eth"])] == ["ETH"]

    def test_tracked_malformed_entry_raises(self) -> None:
        with pytest.raises(MarketDataParseError):
            filter_tracked([{"symbol": "eth", "name": "Ethereum"}], ["eth"])


class TestPriceIngestor:
    """Tests for PriceIngestor.fetch_and_save."""

    @pytest.mark.asyncio
    async def test_saves_one_sample_per_tracked_asset(self, mock_client, store, now) -> None:
        ingestor = PriceIngestor(mock_client, store, tracked_symbols=("eth", "matic"), clock=lambda: now)

        saved = await ingestor.fetch_and_save()

        assert [(s.chain, s.price) for s in saved] == [("Ethereum", 1800.25), ("Polygon", 0.52)]
        assert all(s.created_at == now for s in saved)
        assert all(s.id is not None for s in saved)
        assert len(store.samples) == 2

    @pytest.mark.asyncio
    async def test_lowercase_feed_entries(self, mock_client, store, now) -> None:
        mock_client.get_market_data.return_value = [
            {"symbol": "eth", "name": "ethereum", "usd_price": 1000},
            {"symbol": "matic", "name": "polygon", "usd_price": 0.5},
        ]
        ingestor = PriceIngestor(mock_client, store, clock=lambda: now)

        await ingestor.fetch_and_save()

        assert [(s.chain, s.price) for s in store.samples] == [("ethereum", 1000.0), ("polygon", 0.5)]

    @pytest.mark.asyncio
    async def test_identical_payload_twice_gives_two_samples_each(self, mock_client, store, now) -> None:
        clock = _Clock(now)
        ingestor = PriceIngestor(mock_client, store, clock=clock)

        await ingestor.fetch_and_save()
        clock.now = now + timedelta(minutes=5)
        await ingestor.fetch_and_save()

        eth = [s for s in store.samples if s.chain == "Ethereum"]
        polygon = [s for s in store.samples if s.chain == "Polygon"]
        assert [s.created_at for s in eth] == [now, now + timedelta(minutes=5)]
        assert len(polygon) == 2

    @pytest.mark.asyncio
    async def test_feed_without_tracked_symbols_saves_nothing(self, mock_client, store) -> None:
        mock_client.get_market_data.return_value = [{"symbol": "BTC", "name": "Bitcoin", "usd_price": 1}]
        ingestor = PriceIngestor(mock_client, store)

        assert await ingestor.fetch_and_save() == []
        assert store.samples == []

    @pytest.mark.asyncio
    async def test_network_error_becomes_fetch_failed(self, mock_client, store) -> None:
        mock_client.get_market_data.side_effect = MarketDataNetworkError("down", status_code=500)
        ingestor = PriceIngestor(mock_client, store)

        with pytest.raises(FetchFailedError) as exc_info:
            await ingestor.fetch_and_save()

        assert isinstance(exc_info.value.__cause__, MarketDataNetworkError)
        assert store.samples == []

    @pytest.mark.asyncio
    async def test_parse_error_becomes_fetch_failed(self, mock_client, store) -> None:
        mock_client.get_market_data.return_value = [{"symbol": "ETH", "usd_price": 1}]
        ingestor = PriceIngestor(mock_client, store)

        with pytest.raises(FetchFailedError):
            await ingestor.fetch_and_save()

    @pytest.mark.asyncio
    async def test_nan_price_is_not_stored(self, mock_client, store) -> None:
        mock_client.get_market_data.return_value = [{"symbol": "ETH", "name": "Ethereum", "usd_price": float("nan")}]
        ingestor = PriceIngestor(mock_client, store)

        with pytest.raises(FetchFailedError):
            await ingestor.fetch_and_save()

        assert store.samples == []

    @pytest.mark.asyncio
    async def test_insert_failure_keeps_earlier_samples(self, mock_client, now) -> None:
        inserted = []

        async def insert(sample):
            if sample.chain == "Polygon":
                raise PersistenceError("disk full")
            inserted.append(sample)
            return sample

        failing_store = MagicMock()
        failing_store.insert = AsyncMock(side_effect=insert)
        ingestor = PriceIngestor(mock_client, failing_store, clock=lambda: now)

        with pytest.raises(FetchFailedError):
            await ingestor.fetch_and_save()

        assert [s.chain for s in inserted] == ["Ethereum"]

    def test_tracked_symbols_lowercased(self, mock_client, store) -> None:
        ingestor = PriceIngestor(mock_client, store, tracked_symbols=["ETH"])
        assert ingestor.tracked_symbols == ("eth",)

    def test_fetched_at_is_utc(self, mock_client, store) -> None:
        ingestor = PriceIngestor(mock_client, store)
        assert ingestor._clock().tzinfo == UTC
