"""Management surface for the price tracker.

PriceAlertService is the single entry point an outer layer (HTTP routes,
a CLI, an admin shell) calls into. Every operation logs the underlying
cause and raises OperationFailedError with a generic message, so callers
never see storage or transport details.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation

from chain_price_tracker.evaluator.models import ThresholdCheckResult, TrendCheckResult
from chain_price_tracker.evaluator.threshold import ThresholdAlertEvaluator
from chain_price_tracker.evaluator.trend import TrendAlertEvaluator
from chain_price_tracker.ingestor.price_ingestor import PriceIngestor
from chain_price_tracker.reporting.hourly import HourlyAggregator, HourlyPrice
from chain_price_tracker.storage.repos import AlertDTO, PriceSampleDTO
from chain_price_tracker.storage.stores import AlertRegistry, TimeSeriesStore

logger = logging.getLogger(__name__)

# Upper bound of Numeric(10, 2).
MAX_THRESHOLD_PRICE = Decimal("99999999.99")
DEFAULT_LATEST_LIMIT = 10

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class OperationFailedError(Exception):
    """Raised when a management operation fails."""


class AlertValidationError(ValueError):
    """Raised when alert input is rejected before reaching storage."""


def validate_alert_input(email: str, chain: str, threshold_price: object) -> tuple[str, str, Decimal]:
    """Normalize and validate the fields of a new alert.

    Returns:
        Tuple of (email, chain, threshold_price) ready to store.

    Raises:
        AlertValidationError: If any field is invalid.
    """
    email = (email or "").strip()
    chain = (chain or "").strip()
    if not chain:
        raise AlertValidationError("chain must not be empty")
    if not _EMAIL_RE.match(email):
        raise AlertValidationError(f"invalid email address: {email!r}")

    if isinstance(threshold_price, bool):
        raise AlertValidationError("threshold price must be a number")
    try:
        price = Decimal(str(threshold_price))
    except (InvalidOperation, ValueError) as e:
        raise AlertValidationError(f"threshold price is not a number: {threshold_price!r}") from e
    if not price.is_finite():
        raise AlertValidationError("threshold price must be finite")
    if price < 0:
        raise AlertValidationError("threshold price must be >= 0")
    if price > MAX_THRESHOLD_PRICE:
        raise AlertValidationError(f"threshold price must be <= {MAX_THRESHOLD_PRICE}")

    return email, chain, price


class PriceAlertService:
    """Facade over ingestion, evaluation, reporting and alert management.

    Example:
        ```python
        service = monitor.service
        alert = await service.create_alert("me@example.com", "Ethereum", "2000")
        await service.fetch_and_save()
        await service.check_alerts()
        ```
    """

    def __init__(
        self,
        *,
        ingestor: PriceIngestor,
        threshold_evaluator: ThresholdAlertEvaluator,
        trend_evaluator: TrendAlertEvaluator,
        aggregator: HourlyAggregator,
        store: TimeSeriesStore,
        registry: AlertRegistry,
    ) -> None:
        self._ingestor = ingestor
        self._threshold_evaluator = threshold_evaluator
        self._trend_evaluator = trend_evaluator
        self._aggregator = aggregator
        self._store = store
        self._registry = registry

    async def fetch_and_save(self) -> list[PriceSampleDTO]:
        """Fetch the feed now and persist the tracked prices."""
        try:
            return await self._ingestor.fetch_and_save()
        except Exception as e:
            logger.error("Error fetching prices manually: %s", e)
            raise OperationFailedError("Failed to fetch prices") from e

    async def check_alerts(self) -> ThresholdCheckResult:
        """Run one threshold-alert cycle now."""
        try:
            return await self._threshold_evaluator.check_alerts()
        except Exception as e:
            logger.error("Error checking price alerts: %s", e)
            raise OperationFailedError("Failed to check price alerts") from e

    async def check_price_increases(self) -> TrendCheckResult:
        """Run one price-increase cycle now."""
        try:
            return await self._trend_evaluator.check_price_increases()
        except Exception as e:
            logger.error("Error checking price increases: %s", e)
            raise OperationFailedError("Failed to check price increases") from e

    async def get_hourly_prices(self) -> list[HourlyPrice]:
        """Samples of the last 24 hours labelled with their rounded hour."""
        try:
            return await self._aggregator.get_hourly_prices()
        except Exception as e:
            logger.error("Error fetching hourly prices: %s", e)
            raise OperationFailedError("Failed to fetch hourly prices") from e

    async def get_latest_prices(self, limit: int = DEFAULT_LATEST_LIMIT) -> dict[str, float]:
        """Most recent price per chain among the newest ``limit`` samples.

        Returns:
            Mapping of chain name to price, newest chain first. Empty when
            nothing has been ingested yet.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        try:
            samples = await self._store.find_latest(limit)
        except Exception as e:
            logger.error("Error fetching latest prices: %s", e)
            raise OperationFailedError("Failed to fetch latest prices") from e

        latest: dict[str, float] = {}
        for sample in samples:
            latest.setdefault(sample.chain, sample.price)
        return latest

    async def create_alert(self, email: str, chain: str, threshold_price: object) -> AlertDTO:
        """Register a threshold alert.

        Raises:
            AlertValidationError: If the input is invalid. Nothing is stored.
            OperationFailedError: If the alert could not be stored.
        """
        email, chain, price = validate_alert_input(email, chain, threshold_price)
        try:
            alert = await self._registry.create(email, chain, price)
        except Exception as e:
            logger.error("Error adding price alert: %s", e)
            raise OperationFailedError("Failed to set price alert") from e
        logger.info("Price alert set for %s at $%s (id=%s)", chain, price, alert.id)
        return alert

    async def list_alerts(self) -> list[AlertDTO]:
        """All active alerts, oldest first."""
        try:
            return await self._registry.list_all()
        except Exception as e:
            logger.error("Error fetching alerts: %s", e)
            raise OperationFailedError("Failed to fetch active alerts") from e

    async def delete_alert(self, alert_id: int) -> bool:
        """Delete an alert by id.

        Returns:
            True if the alert existed.
        """
        try:
            deleted = await self._registry.delete_by_id(alert_id)
        except Exception as e:
            logger.error("Error deleting alert %s: %s", alert_id, e)
            raise OperationFailedError("Failed to delete alert") from e
        if deleted:
            logger.info("Alert with ID %s deleted", alert_id)
        return deleted
