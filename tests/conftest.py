"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from chain_price_tracker.storage.database import DatabaseManager
from chain_price_tracker.storage.models import Base
from chain_price_tracker.storage.repos import AlertDTO, PriceSampleDTO

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


class InMemoryTimeSeriesStore:
    """List-backed TimeSeriesStore for evaluator tests."""

    def __init__(self, samples: list[PriceSampleDTO] | None = None) -> None:
        self.samples: list[PriceSampleDTO] = []
        for sample in samples or []:
            self._append(sample)

    def _append(self, sample: PriceSampleDTO) -> PriceSampleDTO:
        stored = PriceSampleDTO(
            id=len(self.samples) + 1,
            chain=sample.chain,
            price=sample.price,
            created_at=sample.created_at,
        )
        self.samples.append(stored)
        return stored

    def _ordered(self, *, descending: bool) -> list[PriceSampleDTO]:
        return sorted(self.samples, key=lambda s: (s.created_at, s.id), reverse=descending)

    async def insert(self, sample: PriceSampleDTO) -> PriceSampleDTO:
        return self._append(sample)

    async def find_latest(self, limit: int) -> list[PriceSampleDTO]:
        return self._ordered(descending=True)[:limit]

    async def find_latest_for_chain(self, chain: str) -> PriceSampleDTO | None:
        for sample in self._ordered(descending=True):
            if sample.chain == chain:
                return sample
        return None

    async def find_range(
        self, start: datetime, end: datetime, *, descending: bool = False
    ) -> list[PriceSampleDTO]:
        return [s for s in self._ordered(descending=descending) if start <= s.created_at <= end]


class InMemoryAlertRegistry:
    """Dict-backed AlertRegistry for evaluator tests."""

    def __init__(self) -> None:
        self.alerts: dict[int, AlertDTO] = {}
        self._next_id = 1

    async def create(self, email: str, chain: str, threshold_price: Decimal) -> AlertDTO:
        alert = AlertDTO(
            id=self._next_id,
            chain=chain,
            threshold_price=threshold_price,
            email=email,
            created_at=NOW,
            updated_at=NOW,
        )
        self.alerts[alert.id] = alert
        self._next_id += 1
        return alert

    async def list_all(self) -> list[AlertDTO]:
        return [self.alerts[k] for k in sorted(self.alerts)]

    async def get(self, alert_id: int) -> AlertDTO | None:
        return self.alerts.get(alert_id)

    async def delete_by_id(self, alert_id: int) -> bool:
        return self.alerts.pop(alert_id, None) is not None


@pytest.fixture
def now() -> datetime:
    """Fixed 'now' used by clock-injected components."""
    return NOW


@pytest.fixture
def store() -> InMemoryTimeSeriesStore:
    return InMemoryTimeSeriesStore()


@pytest.fixture
def registry() -> InMemoryAlertRegistry:
    return InMemoryAlertRegistry()


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def db_manager(async_engine) -> DatabaseManager:
    """DatabaseManager bound to the in-memory test engine."""
    return DatabaseManager.from_engine(async_engine)
