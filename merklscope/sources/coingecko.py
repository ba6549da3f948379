"""CoinGecko client: MON/USD spot price, historical price and 7-day TWAP."""
from __future__ import annotations

import logging

import httpx

from merklscope.analytics.metrics import DAY_SECONDS
from merklscope.config import settings
from merklscope.sources.base import ApiSource

logger = logging.getLogger(__name__)

COIN_ID = "monad"


class CoinGeckoSource(ApiSource):
    name = "coingecko"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.base_url = settings.coingecko_api_base

    async def fetch_mon_price(self) -> float:
        """Spot MON price; the configured default on any failure."""
        try:
            data = await self.get_json(
                "/simple/price",
                {"ids": COIN_ID, "vs_currencies": "usd"},
                timeout=settings.price_timeout_seconds,
            )
            price = float((data.get(COIN_ID) or {}).get("usd") or 0)
        except (httpx.HTTPError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("MON price lookup failed, using default: %s", exc)
            return settings.default_mon_price
        return price if price > 0 else settings.default_mon_price

    async def _prices(self, start_ts: int, end_ts: int) -> list[float]:
        try:
            data = await self.get_json(
                f"/coins/{COIN_ID}/market_chart/range",
                {"vs_currency": "usd", "from": start_ts, "to": end_ts},
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("CoinGecko price range %d..%d failed: %s", start_ts, end_ts, exc)
            return []
        return [float(p[1]) for p in data.get("prices") or [] if len(p) > 1]

    async def fetch_price_at(self, ts: int) -> float | None:
        """First price quoted in the day starting at ``ts``."""
        prices = await self._prices(ts, ts + DAY_SECONDS)
        return prices[0] if prices else None

    async def fetch_twap(self, end_ts: int, days: int = 7) -> float | None:
        """Simple average of the prices in the ``days`` before ``end_ts``."""
        prices = await self._prices(end_ts - days * DAY_SECONDS, end_ts)
        if not prices:
            return None
        return sum(prices) / len(prices)
