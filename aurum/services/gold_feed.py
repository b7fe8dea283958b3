"""HTTP clients for the upstream gold price and FX rate feeds."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping

import httpx

from ..errors import UpstreamUnavailable


logger = logging.getLogger(__name__)

DEFAULT_GOLD_API_URL = "https://data-asg.goldprice.org/dbXRates/USD"
DEFAULT_FX_API_URL = "https://open.er-api.com/v6/latest/USD"
DEFAULT_TIMEOUT = 5.0


def _positive_number(value: Any, source: str) -> float:
    # bool is an int subclass and must not pass as a price
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise UpstreamUnavailable(f"Unexpected {source} response format")
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        raise UpstreamUnavailable(f"{source} returned non-positive value: {value!r}")
    return number


class _JsonFeed:
    """Fetch a JSON document from a single upstream URL."""

    source = "upstream"

    def __init__(
        self,
        url: str,
        *,
        session: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._url = url
        self._client = session
        self._owns_client = session is None
        self._timeout = timeout

    async def _client_instance(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=self._timeout))
        return self._client

    async def _get_json(self) -> Any:
        client = await self._client_instance()
        try:
            response = await client.get(self._url)
        except Exception as exc:
            raise UpstreamUnavailable(f"{self.source} request failed: {exc}") from exc
        logger.debug("%s responded with HTTP %s", self.source, response.status_code)
        if response.status_code >= 400:
            raise UpstreamUnavailable(f"{self.source} error: {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"{self.source} returned invalid JSON") from exc

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class GoldPriceClient(_JsonFeed):
    """Spot gold in USD per troy ounce from goldprice.org."""

    source = "Gold API"

    def __init__(self, url: str = DEFAULT_GOLD_API_URL, **kwargs: Any) -> None:
        super().__init__(url, **kwargs)

    async def fetch_usd_per_ounce(self) -> float:
        payload = await self._get_json()
        try:
            price = payload["items"][0]["xauPrice"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamUnavailable("Unexpected Gold API response format") from exc
        return _positive_number(price, self.source)


class FxRateClient(_JsonFeed):
    """USD to local currency rate from open.er-api.com."""

    source = "FX API"

    def __init__(self, url: str = DEFAULT_FX_API_URL, *, currency: str = "JOD", **kwargs: Any) -> None:
        super().__init__(url, **kwargs)
        self._currency = currency.upper()

    async def fetch_usd_to_local(self) -> float:
        payload = await self._get_json()
        rates = payload.get("rates") if isinstance(payload, Mapping) else None
        if not isinstance(rates, Mapping) or self._currency not in rates:
            raise UpstreamUnavailable("Unexpected FX API response format")
        return _positive_number(rates[self._currency], self.source)
