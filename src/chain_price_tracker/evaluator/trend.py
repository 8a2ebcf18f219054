"""Price-increase (trend) alert evaluation.

Compares the latest price of each chain with the earliest price inside
the lookback window and notifies a fixed operator address when the
increase exceeds the threshold. No state is kept between cycles, so the
alert fires again on every cycle while the condition holds.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from chain_price_tracker.alerter.formatter import format_trend_alert
from chain_price_tracker.alerter.notifier import NotificationError, Notifier
from chain_price_tracker.evaluator.models import CheckFailedError, PriceComparison, TrendCheckResult
from chain_price_tracker.storage.repos import PriceSampleDTO
from chain_price_tracker.storage.stores import TimeSeriesStore

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_PCT = Decimal("3")
DEFAULT_WINDOW = timedelta(hours=1)


def calculate_price_increase_percentage(old_price: float, new_price: float) -> Decimal:
    """Percentage change from old_price to new_price.

    Returns 0 when old_price is 0.
    """
    old = Decimal(str(old_price))
    if old == 0:
        return Decimal(0)
    return (Decimal(str(new_price)) - old) / old * 100


def window_endpoints(samples: list[PriceSampleDTO]) -> dict[str, tuple[PriceSampleDTO, PriceSampleDTO]]:
    """Earliest and latest sample per chain from an ascending sample list.

    Samples with a non-finite price are skipped.
    """
    endpoints: dict[str, tuple[PriceSampleDTO, PriceSampleDTO]] = {}
    for sample in samples:
        if not math.isfinite(sample.price):
            logger.warning("Ignoring non-finite price sample %s for %s", sample.id, sample.chain)
            continue
        first = endpoints[sample.chain][0] if sample.chain in endpoints else sample
        endpoints[sample.chain] = (first, sample)
    return endpoints


class TrendAlertEvaluator:
    """Detects price increases over a rolling window.

    Example:
        ```python
        evaluator = TrendAlertEvaluator(store, notifier, operator_email="ops@example.com")
        result = await evaluator.check_price_increases()
        ```
    """

    def __init__(
        self,
        store: TimeSeriesStore,
        notifier: Notifier,
        *,
        operator_email: str,
        threshold_pct: Decimal = DEFAULT_THRESHOLD_PCT,
        window: timedelta = DEFAULT_WINDOW,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the trend evaluator.

        Args:
            store: Price time series.
            notifier: Delivery for operator notifications.
            operator_email: Fixed recipient of every trend alert.
            threshold_pct: Increase (in percent) that must be exceeded.
            window: Lookback window; its earliest sample is the baseline.
            clock: Source of "now" (UTC).
        """
        self._store = store
        self._notifier = notifier
        self._operator_email = operator_email
        self._threshold_pct = threshold_pct
        self._window = window
        self._clock = clock or (lambda: datetime.now(UTC))

    async def check_price_increases(self) -> TrendCheckResult:
        """Run one trend cycle.

        Returns:
            TrendCheckResult with one comparison per chain seen in the window.

        Raises:
            CheckFailedError: If the price window could not be loaded or compared.
        """
        logger.info("Checking for price increases...")
        now = self._clock()
        try:
            samples = await self._store.find_range(now - self._window, now)
        except Exception as e:
            logger.error("Error checking price increases: %s", e)
            raise CheckFailedError("Failed to check price increases") from e

        result = TrendCheckResult()
        try:
            for chain, (oldest, latest) in window_endpoints(samples).items():
                result.comparisons.append(
                    PriceComparison(
                        chain=chain,
                        previous_price=oldest.price,
                        current_price=latest.price,
                        change_pct=calculate_price_increase_percentage(oldest.price, latest.price),
                    )
                )
            triggered = [c for c in result.comparisons if c.change_pct > self._threshold_pct]
        except Exception as e:
            logger.error("Error comparing prices: %s", e)
            raise CheckFailedError("Failed to check price increases") from e

        if not triggered:
            return result

        sent = await asyncio.gather(*(self._notify(c) for c in triggered), return_exceptions=True)
        for comparison, outcome in zip(triggered, sent, strict=True):
            if outcome is True:
                result.notifications_sent += 1
                continue
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("Unexpected error notifying increase for %s: %s", comparison.chain, outcome)
            result.notification_failures += 1

        return result

    async def _notify(self, comparison: PriceComparison) -> bool:
        logger.info(
            "Price of %s up %.2f%% (from $%s to $%s)",
            comparison.chain,
            comparison.change_pct,
            comparison.previous_price,
            comparison.current_price,
        )
        message = format_trend_alert(
            comparison.chain,
            current_price=comparison.current_price,
            previous_price=comparison.previous_price,
            threshold_pct=self._threshold_pct,
            window_minutes=int(self._window.total_seconds() // 60),
        )
        try:
            await self._notifier.send(self._operator_email, message.subject, message.body)
        except NotificationError as e:
            logger.warning("Price increase notification for %s failed: %s", comparison.chain, e)
            return False
        return True
