"""Narrow persistence contracts used by the evaluators.

The evaluators, ingestor and aggregator depend on these protocols only.
The SQL implementations open one session per operation so that each
write commits on its own.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.exc import SQLAlchemyError

from chain_price_tracker.storage.repos import (
    AlertDTO,
    AlertRepository,
    PriceRepository,
    PriceSampleDTO,
)

if TYPE_CHECKING:
    from chain_price_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a store read or write fails."""


class TimeSeriesStore(Protocol):
    """Append-only price sample storage."""

    async def insert(self, sample: PriceSampleDTO) -> PriceSampleDTO: ...

    async def find_latest(self, limit: int) -> list[PriceSampleDTO]: ...

    async def find_latest_for_chain(self, chain: str) -> PriceSampleDTO | None: ...

    async def find_range(
        self, start: datetime, end: datetime, *, descending: bool = False
    ) -> list[PriceSampleDTO]: ...


class AlertRegistry(Protocol):
    """Storage for active threshold alerts."""

    async def create(self, email: str, chain: str, threshold_price: Decimal) -> AlertDTO: ...

    async def list_all(self) -> list[AlertDTO]: ...

    async def get(self, alert_id: int) -> AlertDTO | None: ...

    async def delete_by_id(self, alert_id: int) -> bool: ...


class SqlTimeSeriesStore:
    """TimeSeriesStore backed by the ``price`` table."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager

    async def insert(self, sample: PriceSampleDTO) -> PriceSampleDTO:
        try:
            async with self._db.session() as session:
                return await PriceRepository(session).insert(sample)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to insert price sample for {sample.chain}: {e}") from e

    async def find_latest(self, limit: int) -> list[PriceSampleDTO]:
        try:
            async with self._db.session() as session:
                return await PriceRepository(session).list_latest(limit)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load latest prices: {e}") from e

    async def find_latest_for_chain(self, chain: str) -> PriceSampleDTO | None:
        try:
            async with self._db.session() as session:
                return await PriceRepository(session).get_latest_for_chain(chain)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load latest price for {chain}: {e}") from e

    async def find_range(
        self, start: datetime, end: datetime, *, descending: bool = False
    ) -> list[PriceSampleDTO]:
        try:
            async with self._db.session() as session:
                return await PriceRepository(session).list_in_range(
                    start=start, end=end, descending=descending
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load prices in range: {e}") from e


class SqlAlertRegistry:
    """AlertRegistry backed by the ``alert`` table."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager

    async def create(self, email: str, chain: str, threshold_price: Decimal) -> AlertDTO:
        try:
            async with self._db.session() as session:
                return await AlertRepository(session).create(
                    email=email, chain=chain, threshold_price=threshold_price
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create alert for {chain}: {e}") from e

    async def list_all(self) -> list[AlertDTO]:
        try:
            async with self._db.session() as session:
                return await AlertRepository(session).list_all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list alerts: {e}") from e

    async def get(self, alert_id: int) -> AlertDTO | None:
        try:
            async with self._db.session() as session:
                return await AlertRepository(session).get(alert_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load alert {alert_id}: {e}") from e

    async def delete_by_id(self, alert_id: int) -> bool:
        try:
            async with self._db.session() as session:
                deleted = await AlertRepository(session).delete_by_id(alert_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete alert {alert_id}: {e}") from e
        if not deleted:
            logger.debug("Alert %s was already gone", alert_id)
        return deleted
