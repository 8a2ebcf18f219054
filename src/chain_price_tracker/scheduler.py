"""Periodic timer for scheduled jobs.

Each PeriodicTimer owns one background task that waits for its interval,
runs the job to completion and only then starts waiting again, so ticks
of the same timer never overlap. Separate timers run independently.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class TimerState(str, Enum):
    """State of a periodic timer."""

    STOPPED = "stopped"
    STARTING = "starting"
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class TimerStats:
    """Statistics for a periodic timer."""

    total_ticks: int = 0
    successful_ticks: int = 0
    failed_ticks: int = 0
    last_tick_time: datetime | None = None
    last_tick_duration_seconds: float = 0.0
    last_error: str | None = None


class PeriodicTimer:
    """Runs an async job every ``interval_seconds``.

    Job failures are logged and counted; they never stop the timer. The
    next tick is the retry.

    Example:
        ```python
        timer = PeriodicTimer("fetch", 300, ingest_and_check)
        await timer.start()
        ...
        await timer.stop()
        ```
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        job: Job,
        *,
        run_immediately: bool = False,
    ) -> None:
        """Initialize the timer.

        Args:
            name: Name used in logs.
            interval_seconds: Wait between the end of one tick and the next.
            job: Coroutine function invoked on every tick.
            run_immediately: Run the first tick right after start().
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._name = name
        self._interval = interval_seconds
        self._job = job
        self._run_immediately = run_immediately

        self._state = TimerState.STOPPED
        self._stats = TimerStats()
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> TimerState:
        """Current timer state."""
        return self._state

    @property
    def stats(self) -> TimerStats:
        """Current timer statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop."""
        if self._state != TimerState.STOPPED:
            logger.warning("Cannot start timer %s: already in state %s", self._name, self._state)
            return

        self._state = TimerState.STARTING
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name=f"timer:{self._name}")
        self._state = TimerState.IDLE
        logger.info("Timer %s started (interval=%ss)", self._name, self._interval)

    async def stop(self) -> None:
        """Stop the loop, cancelling a tick that is still in progress."""
        if self._state == TimerState.STOPPED:
            return

        self._state = TimerState.STOPPING
        self._stop_event.set()

        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        self._state = TimerState.STOPPED
        logger.info("Timer %s stopped", self._name)

    async def _loop(self) -> None:
        """Background loop: wait, tick, repeat."""
        first = True
        while not self._stop_event.is_set():
            try:
                if not (first and self._run_immediately):
                    try:
                        await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                        # Stop event was set
                        break
                    except TimeoutError:
                        pass
                first = False

                if self._stop_event.is_set():
                    break

                await self.tick()
            except asyncio.CancelledError:
                break

    async def tick(self) -> bool:
        """Run the job once.

        Returns:
            True if the job completed without raising.
        """
        previous_state = self._state
        self._state = TimerState.RUNNING
        started = datetime.now(UTC)
        self._stats.total_ticks += 1
        try:
            await self._job()
        except Exception as e:
            self._stats.failed_ticks += 1
            self._stats.last_error = str(e)
            logger.error("Timer %s tick failed: %s", self._name, e)
            return False
        else:
            self._stats.successful_ticks += 1
            self._stats.last_error = None
            return True
        finally:
            ended = datetime.now(UTC)
            self._stats.last_tick_time = ended
            self._stats.last_tick_duration_seconds = (ended - started).total_seconds()
            if self._state == TimerState.RUNNING:
                self._state = previous_state
