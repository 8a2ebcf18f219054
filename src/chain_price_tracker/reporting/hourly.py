"""Hour-labelled view of the last 24 hours of prices."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from chain_price_tracker.storage.repos import PriceSampleDTO
from chain_price_tracker.storage.stores import TimeSeriesStore

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(hours=24)
_HOUR_SECONDS = 3600


class AggregationError(Exception):
    """Raised when hourly prices could not be produced."""


@dataclass(frozen=True)
class HourlyPrice:
    """One sample relabelled with its rounded hour."""

    hour: datetime
    chain: str
    price: float

    def to_dict(self) -> dict[str, object]:
        return {"hour": self.hour.isoformat(), "chain": self.chain, "price": self.price}


def round_to_nearest_hour(ts: datetime) -> datetime:
    """Round to the nearest hour; exactly half past rounds up."""
    if ts.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    seconds = ts.timestamp()
    rounded = ((seconds + _HOUR_SECONDS / 2) // _HOUR_SECONDS) * _HOUR_SECONDS
    return datetime.fromtimestamp(rounded, tz=UTC)


def group_prices_by_hour(samples: list[PriceSampleDTO]) -> list[HourlyPrice]:
    """Label every sample with its rounded hour.

    Hours appear in first-seen order and samples keep their relative
    order inside an hour. Nothing is merged: one output row per sample.
    """
    grouped: dict[datetime, list[PriceSampleDTO]] = {}
    for sample in samples:
        grouped.setdefault(round_to_nearest_hour(sample.created_at), []).append(sample)

    return [
        HourlyPrice(hour=hour, chain=sample.chain, price=sample.price)
        for hour, members in grouped.items()
        for sample in members
    ]


class HourlyAggregator:
    """Produces hour-labelled prices for reporting, on demand."""

    def __init__(
        self,
        store: TimeSeriesStore,
        *,
        lookback: timedelta = DEFAULT_LOOKBACK,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._lookback = lookback
        self._clock = clock or (lambda: datetime.now(UTC))

    async def get_hourly_prices(self) -> list[HourlyPrice]:
        """Samples of the lookback window, each labelled with its rounded hour.

        Raises:
            AggregationError: If the samples could not be loaded.
        """
        now = self._clock()
        try:
            samples = await self._store.find_range(now - self._lookback, now)
        except Exception as e:
            logger.error("Error fetching hourly prices: %s", e)
            raise AggregationError("Failed to fetch hourly prices") from e
        return group_prices_by_hour(samples)
