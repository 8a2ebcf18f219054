"""Threshold alert evaluation.

This module provides the ThresholdAlertEvaluator that compares every
registered alert with the latest price of its chain, emails the owner
when the threshold is reached and then removes the alert.
"""

from __future__ import annotations

import asyncio
import logging
import math
from decimal import Decimal

from chain_price_tracker.alerter.claims import AlertClaims
from chain_price_tracker.alerter.formatter import format_threshold_alert
from chain_price_tracker.alerter.notifier import NotificationError, Notifier
from chain_price_tracker.evaluator.models import AlertOutcome, CheckFailedError, ThresholdCheckResult
from chain_price_tracker.storage.repos import AlertDTO, PriceSampleDTO
from chain_price_tracker.storage.stores import AlertRegistry, TimeSeriesStore

logger = logging.getLogger(__name__)


def threshold_reached(price: float, threshold_price: Decimal) -> bool:
    """True when the observed price is at or above the threshold."""
    return Decimal(str(price)) >= threshold_price


class ThresholdAlertEvaluator:
    """Evaluates user-registered threshold alerts.

    For each alert the most recent sample of its chain is used. When the
    price is at or above the threshold the alert owner is notified and the
    alert is deleted, so each alert fires at most once.

    If a claims backend is configured, an alert is claimed and re-read
    before the notification, and released only after the delete succeeds,
    so a concurrent cycle cannot notify the same alert twice. Without
    claims a cycle that overlaps an unfinished delete may notify twice.
    A latest sample with a non-finite price counts as no price.

    Alerts are processed concurrently and independently: one failing alert
    never prevents the others from being evaluated.

    Example:
        ```python
        evaluator = ThresholdAlertEvaluator(store, registry, notifier, claims=claims)
        result = await evaluator.check_alerts()
        print(result.notifications_sent)
        ```
    """

    def __init__(
        self,
        store: TimeSeriesStore,
        registry: AlertRegistry,
        notifier: Notifier,
        *,
        claims: AlertClaims | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._notifier = notifier
        self._claims = claims

    async def _load_latest_prices(self, alerts: list[AlertDTO]) -> dict[str, PriceSampleDTO]:
        chains = sorted({a.chain for a in alerts})
        samples = await asyncio.gather(*(self._store.find_latest_for_chain(c) for c in chains))
        return {chain: sample for chain, sample in zip(chains, samples, strict=True) if sample is not None}

    async def check_alerts(self) -> ThresholdCheckResult:
        """Run one evaluation cycle over all active alerts.

        Returns:
            ThresholdCheckResult with the outcome of each alert.

        Raises:
            CheckFailedError: If alerts or prices could not be loaded, or
                if any alert failed with an unexpected error. All other
                alerts have still been processed when this is raised.
        """
        try:
            alerts = await self._registry.list_all()
            latest_by_chain = await self._load_latest_prices(alerts)
        except Exception as e:
            logger.error("Error checking price alerts: %s", e)
            raise CheckFailedError("Failed to check price alerts") from e

        result = ThresholdCheckResult(alerts_evaluated=len(alerts))
        if not alerts:
            logger.debug("No active alerts")
            return result

        outcomes = await asyncio.gather(
            *(self._evaluate(alert, latest_by_chain.get(alert.chain)) for alert in alerts),
            return_exceptions=True,
        )

        errors: list[BaseException] = []
        for alert, outcome in zip(alerts, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("Error checking alert %s (%s): %s", alert.id, alert.chain, outcome)
                result.outcomes[alert.id] = AlertOutcome.ERROR
                errors.append(outcome)
            else:
                result.outcomes[alert.id] = outcome

        logger.info(
            "Checked %d alerts: %d notified, %d notification failures, %d errors",
            result.alerts_evaluated,
            result.notifications_sent,
            result.notification_failures,
            len(errors),
        )

        if errors:
            raise CheckFailedError(
                f"Failed to check {len(errors)} of {len(alerts)} price alerts"
            ) from errors[0]
        return result

    async def _evaluate(self, alert: AlertDTO, latest: PriceSampleDTO | None) -> AlertOutcome:
        if latest is None or not math.isfinite(latest.price):
            return AlertOutcome.NO_PRICE
        if not threshold_reached(latest.price, alert.threshold_price):
            return AlertOutcome.NOT_TRIGGERED

        if self._claims is not None:
            if not await self._claims.acquire(alert.id):
                return AlertOutcome.ALREADY_CLAIMED
            # Another cycle may have fired and deleted it since list_all().
            try:
                current = await self._registry.get(alert.id)
            except Exception:
                await self._release(alert.id)
                raise
            if current is None:
                await self._release(alert.id)
                logger.debug("Alert %s already fired by another cycle", alert.id)
                return AlertOutcome.GONE

        message = format_threshold_alert(alert.chain, latest.price)
        try:
            await self._notifier.send(alert.email, message.subject, message.body)
        except NotificationError as e:
            # Keep the alert so the next cycle retries it.
            logger.warning("Notification for alert %s failed: %s", alert.id, e)
            await self._release(alert.id)
            return AlertOutcome.NOTIFY_FAILED

        # A failed delete leaves the claim in place until it expires.
        await self._registry.delete_by_id(alert.id)
        await self._release(alert.id)

        logger.info(
            "Alert %s fired: %s reached $%s (threshold $%s)",
            alert.id,
            alert.chain,
            latest.price,
            alert.threshold_price,
        )
        return AlertOutcome.NOTIFIED

    async def _release(self, alert_id: int) -> None:
        if self._claims is None:
            return
        try:
            await self._claims.release(alert_id)
        except Exception as e:
            # The claim expires on its own after its TTL.
            logger.warning("Failed to release claim on alert %s: %s", alert_id, e)
