"""Reporting - On-demand views over the price time series."""

from chain_price_tracker.reporting.hourly import (
    AggregationError,
    HourlyAggregator,
    HourlyPrice,
    group_prices_by_hour,
    round_to_nearest_hour,
)

__all__ = [
    "AggregationError",
    "HourlyAggregator",
    "HourlyPrice",
    "group_prices_by_hour",
    "round_to_nearest_hour",
]
