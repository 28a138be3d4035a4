"""CoinGecko client: spot price for the reference venue plus the hourly market chart."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests
from cachetools import TTLCache
from tenacity import RetryError, retry, stop_after_attempt, wait_exponential

from ..analysis.history import to_price_points
from ..config.settings import DataSourceConfig, get_app_config
from ..datalake.schemas import HistoricalPricePoint, VenueId
from ..monitoring.logger import get_logger
from .base import VenuePriceReader

DEFAULT_HEADERS = {"User-Agent": "peg-reserve-monitor/1.0", "Accept": "application/json"}
QUOTE_CURRENCY = "usd"


class CoinGeckoClient:
    """Thin HTTP wrapper around the public CoinGecko v3 API."""

    def __init__(
        self,
        config: Optional[DataSourceConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().data_sources
        self._session = session or requests.Session()
        self._base_url = str(self._config.coingecko_base_url).rstrip("/")
        self._asset_id = self._config.coingecko_asset_id
        self._cache: TTLCache[str, Any] = TTLCache(
            maxsize=64, ttl=max(self._config.cache_ttl_seconds, 1)
        )
        self._cache_enabled = self._config.cache_ttl_seconds > 0
        self._logger = get_logger(__name__)

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        headers = dict(DEFAULT_HEADERS)
        if self._config.coingecko_api_key:
            headers["x-cg-demo-api-key"] = self._config.coingecko_api_key
        response = self._session.get(
            f"{self._base_url}{path}",
            params=params,
            headers=headers,
            timeout=self._config.http_timeout,
        )
        response.raise_for_status()
        return response.json()

    @retry(wait=wait_exponential(multiplier=1, min=1, max=10), stop=stop_after_attempt(3))
    def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._get(path, params)

    def spot_price(self) -> Optional[float]:
        """Single attempt; a failed read is retried by the next tick."""

        cache_key = "spot"
        if self._cache_enabled and cache_key in self._cache:
            return self._cache[cache_key]
        try:
            payload = self._get(
                "/simple/price",
                params={"ids": self._asset_id, "vs_currencies": QUOTE_CURRENCY},
            )
        except (requests.RequestException, ValueError) as exc:
            self._logger.warning("CoinGecko spot request failed: %s", exc)
            return None
        try:
            price = float(payload[self._asset_id][QUOTE_CURRENCY])
        except (KeyError, TypeError, ValueError):
            self._logger.warning("CoinGecko spot payload missing %s/%s", self._asset_id, QUOTE_CURRENCY)
            return None
        if self._cache_enabled:
            self._cache[cache_key] = price
        return price

    def market_chart(self, days: int = 30) -> List[HistoricalPricePoint]:
        """Hourly reference prices for the last ``days`` days; empty on failure."""

        cache_key = f"chart::{days}"
        if self._cache_enabled and cache_key in self._cache:
            return self._cache[cache_key]
        try:
            payload = self._request(
                f"/coins/{self._asset_id}/market_chart",
                params={"vs_currency": QUOTE_CURRENCY, "days": days, "interval": "hourly"},
            )
        except (RetryError, requests.RequestException, ValueError) as exc:
            self._logger.warning("CoinGecko market chart request failed: %s", exc)
            return []
        raw = payload.get("prices", []) if isinstance(payload, dict) else []
        points = to_price_points(raw)
        if self._cache_enabled:
            self._cache[cache_key] = points
        return points


class CoinGeckoPriceReader(VenuePriceReader):
    """Reference venue backed by the CoinGecko spot endpoint."""

    def __init__(self, client: CoinGeckoClient) -> None:
        super().__init__(VenueId.COINGECKO)
        self._client = client

    def _fetch_price(self) -> Optional[float]:
        return self._client.spot_price()


__all__ = ["CoinGeckoClient", "CoinGeckoPriceReader"]
