"""Single-flight claims on alert ids.

A claim is a Redis key written with ``SET NX EX``: only one evaluator can
hold it, and it expires on its own if the holder never releases it (for
example when the delete after a notification keeps failing).
"""

from __future__ import annotations

import logging
import uuid

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_CLAIM_TTL_SECONDS = 300
DEFAULT_KEY_PREFIX = "chain_price_tracker:alert_claim:"


class AlertClaims:
    """Exclusive, expiring claims keyed by alert id.

    Example:
        ```python
        claims = AlertClaims(Redis.from_url("redis://localhost:6379"))
        if await claims.acquire(alert.id):
            ...  # notify, delete
            await claims.release(alert.id)
        ```
    """

    def __init__(
        self,
        redis: Redis,
        *,
        ttl_seconds: int = DEFAULT_CLAIM_TTL_SECONDS,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        self._redis = redis
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix
        # Token identifies this process as the holder, for debugging stuck claims.
        self._token = uuid.uuid4().hex

    def _key(self, alert_id: int) -> str:
        return f"{self._key_prefix}{alert_id}"

    async def acquire(self, alert_id: int) -> bool:
        """Try to claim an alert.

        Returns:
            True if this caller now holds the claim, False if it is held elsewhere.
        """
        acquired = await self._redis.set(self._key(alert_id), self._token, nx=True, ex=self._ttl_seconds)
        if not acquired:
            logger.debug("Alert %s already claimed, skipping", alert_id)
            return False
        return True

    async def release(self, alert_id: int) -> None:
        await self._redis.delete(self._key(alert_id))
