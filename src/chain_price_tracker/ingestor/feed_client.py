"""HTTP client for the external market-data feed."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
DEFAULT_TIMEOUT_SECONDS = 30.0


class MarketDataError(Exception):
    """Base exception for market-data feed errors."""


class MarketDataNetworkError(MarketDataError):
    """Raised when the feed is unreachable or answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MarketDataParseError(MarketDataError):
    """Raised when the feed response is not a JSON array."""


class MarketDataClient:
    """Async client for the market-data feed.

    Requests carry the API key in the ``X-API-Key`` header and are bounded
    by a per-request timeout. There is no retry: the next scheduled fetch
    is the retry.

    Example:
        ```python
        client = MarketDataClient(url, api_key="...")
        entries = await client.get_market_data()
        await client.close()
        ```
    """

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the feed client.

        Args:
            url: Feed endpoint URL.
            api_key: API key for the ``X-API-Key`` header.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests use MockTransport).
        """
        self._url = url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._api_key:
                headers[API_KEY_HEADER] = self._api_key
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_market_data(self) -> list[Any]:
        """Fetch the raw feed entries.

        Returns:
            The decoded JSON array.

        Raises:
            MarketDataNetworkError: On transport errors or non-2xx status.
            MarketDataParseError: If the body is not a JSON array.
        """
        client = self._get_client()
        try:
            response = await client.get(self._url)
        except httpx.HTTPError as e:
            raise MarketDataNetworkError(f"Market data request failed: {e}") from e

        if not response.is_success:
            raise MarketDataNetworkError(
                f"Market data request returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MarketDataParseError(f"Market data response is not JSON: {e}") from e

        if not isinstance(data, list):
            raise MarketDataParseError(
                f"Market data response must be an array, got {type(data).__name__}"
            )

        logger.debug("Fetched %d market data entries", len(data))
        return data
