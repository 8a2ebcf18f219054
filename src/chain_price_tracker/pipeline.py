"""Main orchestrator for the Chain Price Tracker.

This module provides the PriceMonitor class that wires together all
components and drives the two periodic cadences: fetching prices followed
by the threshold-alert check, and the independent price-increase check.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from chain_price_tracker.alerter.claims import AlertClaims
from chain_price_tracker.alerter.notifier import DryRunNotifier, Notifier, SmtpNotifier
from chain_price_tracker.config import Settings, get_settings
from chain_price_tracker.evaluator.threshold import ThresholdAlertEvaluator
from chain_price_tracker.evaluator.trend import TrendAlertEvaluator
from chain_price_tracker.ingestor.feed_client import MarketDataClient
from chain_price_tracker.ingestor.price_ingestor import PriceIngestor
from chain_price_tracker.reporting.hourly import HourlyAggregator
from chain_price_tracker.scheduler import PeriodicTimer
from chain_price_tracker.service import PriceAlertService
from chain_price_tracker.storage.database import DatabaseManager
from chain_price_tracker.storage.stores import SqlAlertRegistry, SqlTimeSeriesStore

logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    """Monitor lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class MonitorStats:
    """Statistics for the monitor."""

    started_at: datetime | None = None
    fetch_cycles: int = 0
    check_cycles: int = 0
    samples_saved: int = 0
    alerts_notified: int = 0
    trend_notifications: int = 0
    errors: int = 0
    last_error: str | None = None


class PriceMonitor:
    """Owns every component and the two periodic timers.

    Timer flow:
        fetch timer -> PriceIngestor.fetch_and_save -> ThresholdAlertEvaluator.check_alerts
        check timer -> TrendAlertEvaluator.check_price_increases

    Example:
        ```python
        from chain_price_tracker.pipeline import PriceMonitor

        async with PriceMonitor() as monitor:
            alert = await monitor.service.create_alert("me@example.com", "Ethereum", 2000)
            ...
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
    ) -> None:
        """Args:
            settings: Defaults to the cached `get_settings()`.
            dry_run: Log emails instead of sending them; `None` defers to `settings.dry_run`.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = MonitorState.STOPPED
        self._stats = MonitorStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._market_data_client: MarketDataClient | None = None
        self._notifier: Notifier | None = None
        self._ingestor: PriceIngestor | None = None
        self._threshold_evaluator: ThresholdAlertEvaluator | None = None
        self._trend_evaluator: TrendAlertEvaluator | None = None
        self._aggregator: HourlyAggregator | None = None
        self._service: PriceAlertService | None = None

        self._fetch_timer: PeriodicTimer | None = None
        self._check_timer: PeriodicTimer | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> MonitorState:
        """Current monitor state."""
        return self._state

    @property
    def stats(self) -> MonitorStats:
        """Current monitor statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if the monitor is running."""
        return self._state == MonitorState.RUNNING

    @property
    def service(self) -> PriceAlertService:
        """Management surface; available once the monitor is started."""
        if self._service is None:
            raise RuntimeError("Monitor is not started")
        return self._service

    async def start(self) -> None:
        """Build the components and start both timers.

        On a failed start everything already built is torn down and the
        error is re-raised with the monitor in ERROR state.

        Raises:
            RuntimeError: If the monitor is not stopped.
        """
        if self._state != MonitorState.STOPPED:
            raise RuntimeError(f"Cannot start monitor in state {self._state}")

        self._state = MonitorState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting price monitor...")

        try:
            self._initialize_components()
            await self._start_timers()
            self._stats.started_at = datetime.now(UTC)
            self._state = MonitorState.RUNNING
            logger.info("Price monitor started (dry_run=%s)", self._dry_run)
        except Exception as e:
            self._state = MonitorState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start price monitor: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop both timers and release all resources."""
        if self._state == MonitorState.STOPPED:
            return

        self._state = MonitorState.STOPPING
        logger.info("Stopping price monitor...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_timers()
        await self._cleanup()

        self._state = MonitorState.STOPPED
        logger.info("Price monitor stopped")

    def request_stop(self) -> None:
        """Ask run() to return; safe to call from a signal handler."""
        if self._stop_event:
            self._stop_event.set()

    def _build_notifier(self) -> Notifier:
        if self._dry_run:
            logger.info("Dry run: notifications will be logged, not sent")
            return DryRunNotifier()
        smtp = self._settings.smtp
        return SmtpNotifier(
            smtp.host,
            smtp.port,
            from_address=smtp.from_address,
            username=smtp.username,
            password=smtp.password.get_secret_value() if smtp.password else None,
            use_tls=smtp.use_tls,
            timeout=smtp.timeout_seconds,
        )

    def _initialize_components(self) -> None:
        """Initialize all monitor components."""
        settings = self._settings

        logger.debug("Initializing Redis connection...")
        self._redis = Redis.from_url(settings.redis.url)

        logger.debug("Initializing database manager...")
        self._db_manager = DatabaseManager(settings.database.url)

        logger.debug("Initializing market data client...")
        self._market_data_client = MarketDataClient(
            settings.market_data.url,
            api_key=(
                settings.market_data.api_key.get_secret_value()
                if settings.market_data.api_key
                else None
            ),
            timeout=settings.market_data.timeout_seconds,
        )

        self._notifier = self._build_notifier()

        store = SqlTimeSeriesStore(self._db_manager)
        registry = SqlAlertRegistry(self._db_manager)
        claims = AlertClaims(self._redis, ttl_seconds=settings.alerts.claim_ttl_seconds)

        self._ingestor = PriceIngestor(
            self._market_data_client,
            store,
            tracked_symbols=settings.market_data.tracked_symbols,
        )
        self._threshold_evaluator = ThresholdAlertEvaluator(
            store,
            registry,
            self._notifier,
            claims=claims,
        )
        self._trend_evaluator = TrendAlertEvaluator(
            store,
            self._notifier,
            operator_email=settings.alerts.operator_email,
            threshold_pct=settings.alerts.trend_threshold_pct,
            window=timedelta(minutes=settings.alerts.trend_window_minutes),
        )
        self._aggregator = HourlyAggregator(store)
        self._service = PriceAlertService(
            ingestor=self._ingestor,
            threshold_evaluator=self._threshold_evaluator,
            trend_evaluator=self._trend_evaluator,
            aggregator=self._aggregator,
            store=store,
            registry=registry,
        )

        self._fetch_timer = PeriodicTimer(
            "fetch",
            settings.scheduler.fetch_interval_seconds,
            self._fetch_cycle,
            run_immediately=settings.scheduler.run_immediately,
        )
        self._check_timer = PeriodicTimer(
            "price-increase",
            settings.scheduler.check_interval_seconds,
            self._check_cycle,
            run_immediately=settings.scheduler.run_immediately,
        )

    async def _start_timers(self) -> None:
        if self._fetch_timer:
            await self._fetch_timer.start()
        if self._check_timer:
            await self._check_timer.start()

    async def _stop_timers(self) -> None:
        if self._fetch_timer:
            logger.debug("Stopping fetch timer...")
            await self._fetch_timer.stop()
        if self._check_timer:
            logger.debug("Stopping price-increase timer...")
            await self._check_timer.stop()

    async def _fetch_cycle(self) -> None:
        """Fetch prices, then check threshold alerts against them.

        A failed fetch skips the alert check for this tick.
        """
        if not self._ingestor or not self._threshold_evaluator:
            return
        self._stats.fetch_cycles += 1
        try:
            samples = await self._ingestor.fetch_and_save()
            self._stats.samples_saved += len(samples)
            result = await self._threshold_evaluator.check_alerts()
            self._stats.alerts_notified += result.notifications_sent
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            raise

    async def _check_cycle(self) -> None:
        """Check every chain for a price increase."""
        if not self._trend_evaluator:
            return
        self._stats.check_cycles += 1
        try:
            result = await self._trend_evaluator.check_price_increases()
            self._stats.trend_notifications += result.notifications_sent
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            raise

    async def _cleanup(self) -> None:
        """Close the feed client, database pool and Redis connection."""
        if self._market_data_client:
            await self._market_data_client.close()
            self._market_data_client = None

        if self._db_manager:
            await self._db_manager.dispose()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        self._service = None
        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start, block until `request_stop()` or cancellation, then stop."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> PriceMonitor:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
