"""Repository pattern implementations for data access.

This module provides session-scoped data access for price samples and
threshold alerts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from chain_price_tracker.storage.models import AlertModel, PriceModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def as_utc(ts: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


@dataclass(frozen=True)
class PriceSampleDTO:
    """Data transfer object for one price observation."""

    chain: str
    price: float
    created_at: datetime
    id: int | None = None

    @classmethod
    def from_model(cls, model: PriceModel) -> PriceSampleDTO:
        return cls(
            id=model.id,
            chain=model.chain,
            price=float(model.price),
            created_at=as_utc(model.created_at),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "chain": self.chain,
            "price": self.price,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class AlertDTO:
    """Data transfer object for a threshold alert."""

    id: int
    chain: str
    threshold_price: Decimal
    email: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, model: AlertModel) -> AlertDTO:
        return cls(
            id=model.id,
            chain=model.chain,
            threshold_price=Decimal(str(model.alert_price)),
            email=model.email,
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "chain": self.chain,
            "alert_price": str(self.threshold_price),
            "email": self.email,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class PriceRepository:
    """Repository for the append-only price time series."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: PriceSampleDTO) -> PriceSampleDTO:
        """Insert a sample and return it with its assigned id."""
        model = PriceModel(
            chain=dto.chain,
            price=dto.price,
            created_at=dto.created_at,
        )
        self.session.add(model)
        await self.session.flush()
        return PriceSampleDTO(
            id=model.id,
            chain=dto.chain,
            price=dto.price,
            created_at=as_utc(dto.created_at),
        )

    async def list_latest(self, limit: int) -> list[PriceSampleDTO]:
        """Most recent samples across all chains, newest first."""
        result = await self.session.execute(
            select(PriceModel)
            .order_by(PriceModel.created_at.desc(), PriceModel.id.desc())
            .limit(limit)
        )
        return [PriceSampleDTO.from_model(m) for m in result.scalars().all()]

    async def get_latest_for_chain(self, chain: str) -> PriceSampleDTO | None:
        """Sample with the greatest created_at for a chain; ties go to the highest id."""
        result = await self.session.execute(
            select(PriceModel)
            .where(PriceModel.chain == chain)
            .order_by(PriceModel.created_at.desc(), PriceModel.id.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return PriceSampleDTO.from_model(model) if model else None

    async def list_in_range(
        self,
        *,
        start: datetime,
        end: datetime,
        descending: bool = False,
    ) -> list[PriceSampleDTO]:
        """Samples with start <= created_at <= end."""
        if start.tzinfo is None or end.tzinfo is None:
            raise ValueError("start/end must be timezone-aware")
        if descending:
            order = (PriceModel.created_at.desc(), PriceModel.id.desc())
        else:
            order = (PriceModel.created_at.asc(), PriceModel.id.asc())
        result = await self.session.execute(
            select(PriceModel)
            .where((PriceModel.created_at >= start) & (PriceModel.created_at <= end))
            .order_by(*order)
        )
        return [PriceSampleDTO.from_model(m) for m in result.scalars().all()]


class AlertRepository:
    """Repository for active threshold alerts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, *, email: str, chain: str, threshold_price: Decimal) -> AlertDTO:
        now = datetime.now(UTC)
        model = AlertModel(
            email=email,
            chain=chain,
            alert_price=threshold_price,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        await self.session.flush()
        return AlertDTO.from_model(model)

    async def get(self, alert_id: int) -> AlertDTO | None:
        result = await self.session.execute(select(AlertModel).where(AlertModel.id == alert_id))
        model = result.scalar_one_or_none()
        return AlertDTO.from_model(model) if model else None

    async def list_all(self) -> list[AlertDTO]:
        result = await self.session.execute(select(AlertModel).order_by(AlertModel.id.asc()))
        return [AlertDTO.from_model(m) for m in result.scalars().all()]

    async def delete_by_id(self, alert_id: int) -> bool:
        """Delete an alert.

        Returns:
            True if deleted, False if not found.
        """
        result = await self.session.execute(delete(AlertModel).where(AlertModel.id == alert_id))
        # SQLAlchemy Result does have rowcount but typing doesn't reflect it
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]
