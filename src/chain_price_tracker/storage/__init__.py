"""Storage layer - Database schemas, repositories and store contracts."""

from chain_price_tracker.storage.database import DatabaseManager
from chain_price_tracker.storage.models import AlertModel, Base, PriceModel
from chain_price_tracker.storage.repos import (
    AlertDTO,
    AlertRepository,
    PriceRepository,
    PriceSampleDTO,
)
from chain_price_tracker.storage.stores import (
    AlertRegistry,
    PersistenceError,
    SqlAlertRegistry,
    SqlTimeSeriesStore,
    TimeSeriesStore,
)

__all__ = [
    "AlertDTO",
    "AlertModel",
    "AlertRegistry",
    "AlertRepository",
    "Base",
    "DatabaseManager",
    "PersistenceError",
    "PriceModel",
    "PriceRepository",
    "PriceSampleDTO",
    "SqlAlertRegistry",
    "SqlTimeSeriesStore",
    "TimeSeriesStore",
]
