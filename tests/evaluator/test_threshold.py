"""Tests for the threshold alert evaluator."""

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from chain_price_tracker.alerter.claims import AlertClaims
from chain_price_tracker.alerter.notifier import NotificationError
from chain_price_tracker.evaluator.models import AlertOutcome, CheckFailedError
from chain_price_tracker.evaluator.threshold import ThresholdAlertEvaluator, threshold_reached
from chain_price_tracker.storage.repos import PriceSampleDTO
from chain_price_tracker.storage.stores import PersistenceError


@pytest.fixture
def notifier() -> AsyncMock:
    notifier = AsyncMock()
    notifier.send = AsyncMock(return_value=None)
    return notifier


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create a mock Redis client that grants every claim."""
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    return redis


async def _price(store, chain: str, price: float, now) -> None:
    await store.insert(PriceSampleDTO(chain=chain, price=price, created_at=now))


class _DictRedis:
    """Just enough of `SET NX EX` and `DELETE` to share claims between evaluators."""

    def __init__(self) -> None:
        self.keys: dict[str, str] = {}

    async def set(self, key: str, value: str, *, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self.keys:
            return None
        self.keys[key] = value
        return True

    async def delete(self, key: str) -> int:
        return int(self.keys.pop(key, None) is not None)


class TestThresholdReached:
    """Tests for the threshold comparison."""

    def test_at_or_above(self) -> None:
        assert threshold_reached(1000.0, Decimal("900"))
        assert threshold_reached(900.0, Decimal("900.00"))
        assert threshold_reached(0.1 + 0.2, Decimal("0.3"))

    def test_below(self) -> None:
        assert not threshold_reached(899.99, Decimal("900"))


class TestThresholdAlertEvaluator:
    """Tests for ThresholdAlertEvaluator.check_alerts."""

    @pytest.mark.asyncio
    async def test_reached_alert_notified_once_and_removed(self, store, registry, notifier, now) -> None:
        alert = await registry.create("user@example.com", "ethereum", Decimal("900"))
        await _price(store, "ethereum", 1000.0, now)
        evaluator = ThresholdAlertEvaluator(store, registry, notifier)

        result = await evaluator.check_alerts()

        notifier.send.assert_awaited_once_with(
            "user@example.com",
            "ethereum Price Alert",
            "The price of ethereum has reached $1000.",
        )
        assert result.outcomes == {alert.id: AlertOutcome.NOTIFIED}
        assert await registry.list_all() == []

        # Next cycle has nothing left to fire.
        await evaluator.check_alerts()
        assert notifier.send.await_count == 1

    @pytest.mark.asyncio
    async def test_uses_latest_sample_only(self, store, registry, notifier, now) -> None:
        await registry.create("user@example.com", "ethereum", Decimal("900"))
        await _price(store, "ethereum", 1000.0, now - timedelta(minutes=5))
        await _price(store, "ethereum", 800.0, now)
        evaluator = ThresholdAlertEvaluator(store, registry, notifier)

        result = await evaluator.check_alerts()

        assert result.count(AlertOutcome.NOT_TRIGGERED) == 1
        notifier.send.assert_not_awaited()
        assert len(await registry.list_all()) == 1

    @pytest.mark.asyncio
    async def test_alert_without_price_is_kept(self, store, registry, notifier) -> None:
        alert = await registry.create("user@example.com", "solana", Decimal("1"))
        evaluator = ThresholdAlertEvaluator(store, registry, notifier)

        result = await evaluator.check_alerts()

        assert result.outcomes[alert.id] == AlertOutcome.NO_PRICE
        assert await registry.get(alert.id) == alert

    @pytest.mark.asyncio
    async def test_no_alerts(self, store, registry, notifier) -> None:
        result = await ThresholdAlertEvaluator(store, registry, notifier).check_alerts()
        assert result.alerts_evaluated == 0
        assert result.outcomes == {}

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_alert(self, store, registry, notifier, mock_redis, now) -> None:
        alert = await registry.create("user@example.com", "ethereum", Decimal("900"))
        await _price(store, "ethereum", 1000.0, now)
        notifier.send.side_effect = NotificationError("smtp down", recipient="user@example.com")
        evaluator = ThresholdAlertEvaluator(store, registry, notifier, claims=AlertClaims(mock_redis))

        result = await evaluator.check_alerts()

        assert result.outcomes[alert.id] == AlertOutcome.NOTIFY_FAILED
        assert result.notification_failures == 1
        assert await registry.get(alert.id) is not None
        # Claim released so the next cycle can retry.
        mock_redis.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_one_failing_alert_does_not_block_others(self, store, registry, notifier, now) -> None:
        first = await registry.create("a@example.com", "ethereum", Decimal("900"))
        second = await registry.create("b@example.com", "ethereum", Decimal("950"))
        await _price(store, "ethereum", 1000.0, now)

        real_delete = registry.delete_by_id

        async def delete_by_id(alert_id: int) -> bool:
            if alert_id == first.id:
                raise PersistenceError("locked")
            return await real_delete(alert_id)

        registry.delete_by_id = delete_by_id
        evaluator = ThresholdAlertEvaluator(store, registry, notifier)

        with pytest.raises(CheckFailedError):
            await evaluator.check_alerts()

        assert notifier.send.await_count == 2
        assert await registry.get(second.id) is None
        assert await registry.get(first.id) is not None

    @pytest.mark.asyncio
    async def test_claimed_alert_is_skipped(self, store, registry, notifier, mock_redis, now) -> None:
        alert = await registry.create("user@example.com", "ethereum", Decimal("900"))
        await _price(store, "ethereum", 1000.0, now)
        mock_redis.set.return_value = None
        evaluator = ThresholdAlertEvaluator(store, registry, notifier, claims=AlertClaims(mock_redis))

        result = await evaluator.check_alerts()

        assert result.outcomes[alert.id] == AlertOutcome.ALREADY_CLAIMED
        notifier.send.assert_not_awaited()
        assert await registry.get(alert.id) is not None

    @pytest.mark.asyncio
    async def test_claim_released_after_delete(self, store, registry, notifier, mock_redis, now) -> None:
        alert = await registry.create("user@example.com", "ethereum", Decimal("900"))
        await _price(store, "ethereum", 1000.0, now)
        events: list[str] = []
        mock_redis.set.side_effect = lambda *a, **k: events.append("claim") or True
        mock_redis.delete.side_effect = lambda *a, **k: events.append("release") or 1
        notifier.send.side_effect = lambda *a: events.append("notify")

        real_delete = registry.delete_by_id

        async def delete_by_id(alert_id: int) -> bool:
            events.append("delete")
            return await real_delete(alert_id)

        registry.delete_by_id = delete_by_id
        evaluator = ThresholdAlertEvaluator(store, registry, notifier, claims=AlertClaims(mock_redis))

        result = await evaluator.check_alerts()

        assert result.outcomes[alert.id] == AlertOutcome.NOTIFIED
        assert events == ["claim", "notify", "delete", "release"]

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_claim(self, store, registry, notifier, mock_redis, now) -> None:
        alert = await registry.create("user@example.com", "ethereum", Decimal("900"))
        await _price(store, "ethereum", 1000.0, now)
        registry.delete_by_id = AsyncMock(side_effect=PersistenceError("locked"))
        evaluator = ThresholdAlertEvaluator(store, registry, notifier, claims=AlertClaims(mock_redis))

        with pytest.raises(CheckFailedError):
            await evaluator.check_alerts()

        mock_redis.delete.assert_not_awaited()
        assert await registry.get(alert.id) is not None

    @pytest.mark.asyncio
    async def test_claim_backend_outage_is_per_alert_error(
        self, store, registry, notifier, mock_redis, now
    ) -> None:
        alert = await registry.create("user@example.com", "ethereum", Decimal("900"))
        await registry.create("other@example.com", "ethereum", Decimal("5000"))
        await _price(store, "ethereum", 1000.0, now)
        mock_redis.set.side_effect = ConnectionError("redis unavailable")
        evaluator = ThresholdAlertEvaluator(store, registry, notifier, claims=AlertClaims(mock_redis))

        with pytest.raises(CheckFailedError):
            await evaluator.check_alerts()

        # No claim, no notification: the alert waits for the next cycle.
        notifier.send.assert_not_awaited()
        assert await registry.get(alert.id) is not None

    @pytest.mark.asyncio
    async def test_load_failure_raises_check_failed(self, store, registry, notifier) -> None:
        registry.list_all = AsyncMock(side_effect=PersistenceError("db down"))
        evaluator = ThresholdAlertEvaluator(store, registry, notifier)

        with pytest.raises(CheckFailedError, match="Failed to check price alerts"):
            await evaluator.check_alerts()

    @pytest.mark.asyncio
    async def test_non_finite_latest_price_counts_as_no_price(self, store, registry, notifier, now) -> None:
        alert = await registry.create("user@example.com", "ethereum", Decimal("900"))
        await _price(store, "ethereum", float("nan"), now)
        evaluator = ThresholdAlertEvaluator(store, registry, notifier)

        result = await evaluator.check_alerts()

        assert result.outcomes == {alert.id: AlertOutcome.NO_PRICE}
        notifier.send.assert_not_awaited()
        assert await registry.get(alert.id) is not None

    @pytest.mark.asyncio
    async def test_overlapping_cycle_with_stale_list_does_not_notify_twice(
        self, store, registry, notifier, now
    ) -> None:
        alert = await registry.create("user@example.com", "ethereum", Decimal("900"))
        await _price(store, "ethereum", 1000.0, now)
        redis = _DictRedis()
        claims = AlertClaims(redis)
        slow = ThresholdAlertEvaluator(store, registry, notifier, claims=claims)
        fast = ThresholdAlertEvaluator(store, registry, notifier, claims=claims)

        listed = asyncio.Event()
        resume = asyncio.Event()
        real_list_all = registry.list_all
        calls = 0

        async def list_all():
            nonlocal calls
            calls += 1
            alerts = await real_list_all()
            if calls == 1:
                listed.set()
                await resume.wait()
            return alerts

        registry.list_all = list_all

        slow_cycle = asyncio.create_task(slow.check_alerts())
        await listed.wait()
        fast_result = await fast.check_alerts()
        resume.set()
        slow_result = await slow_cycle

        assert notifier.send.await_count == 1
        assert fast_result.outcomes[alert.id] == AlertOutcome.NOTIFIED
        assert slow_result.outcomes[alert.id] == AlertOutcome.GONE
        assert redis.keys == {}

    @pytest.mark.asyncio
    async def test_failed_release_still_counts_as_notified(
        self, store, registry, notifier, mock_redis, now
    ) -> None:
        alert = await registry.create("user@example.com", "ethereum", Decimal("900"))
        await _price(store, "ethereum", 1000.0, now)
        mock_redis.delete.side_effect = ConnectionError("redis unavailable")
        evaluator = ThresholdAlertEvaluator(store, registry, notifier, claims=AlertClaims(mock_redis))

        result = await evaluator.check_alerts()

        assert result.outcomes[alert.id] == AlertOutcome.NOTIFIED
        assert result.notifications_sent == 1
        assert await registry.get(alert.id) is None

    @pytest.mark.asyncio
    async def test_reread_failure_releases_claim(self, store, registry, notifier, mock_redis, now) -> None:
        alert = await registry.create("user@example.com", "ethereum", Decimal("900"))
        await _price(store, "ethereum", 1000.0, now)
        registry.get = AsyncMock(side_effect=PersistenceError("db down"))
        evaluator = ThresholdAlertEvaluator(store, registry, notifier, claims=AlertClaims(mock_redis))

        with pytest.raises(CheckFailedError):
            await evaluator.check_alerts()

        notifier.send.assert_not_awaited()
        mock_redis.delete.assert_awaited_once()
        assert alert.id in registry.alerts
