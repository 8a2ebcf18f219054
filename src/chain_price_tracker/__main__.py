"""Run the price monitor: ``python -m chain_price_tracker``."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from chain_price_tracker.config import get_settings
from chain_price_tracker.pipeline import PriceMonitor

logger = logging.getLogger(__name__)


async def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting with settings: %s", settings.redacted_summary())

    monitor = PriceMonitor(settings)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, monitor.request_stop)

    await monitor.run()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
