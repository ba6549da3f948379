"""Redis cache for Merkl campaigns, opportunities, TVL and volume data.

Values are JSON-serialised and stored with a fixed TTL per data category.
When Redis is not configured or cannot be reached every read is a miss
and every write is skipped, so callers never need to handle cache errors.
"""
from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis

from merklscope.config import settings

logger = logging.getLogger(__name__)


class CacheTTL:
    """TTLs in seconds."""

    MERKL_CAMPAIGNS = 21_600              # 6 hours; pages are the live listing, not per window
    MERKL_OPPORTUNITIES = 21_600
    DEFILLAMA_TVL_CURRENT = 21_600
    DEFILLAMA_TVL_HISTORICAL = 2_592_000
    DEX_VOLUME = 2_592_000
    DASHBOARD = 172_800                   # 2 days


class CacheKeys:
    @staticmethod
    def merkl_campaigns(protocol_id: str, page: int) -> str:
        return f"merkl:campaigns:monad:{protocol_id}:page:{page}"

    @staticmethod
    def merkl_opportunities(page: int) -> str:
        return f"merkl:opportunities:monad:page:{page}"

    @staticmethod
    def defillama_tvl(slug: str, date: str) -> str:
        return f"defillama:tvl:{slug}:{date}"

    @staticmethod
    def dex_volume(slug: str, start: str, end: str) -> str:
        return f"defillama:volume:{slug}:{start}:{end}"

    @staticmethod
    def dashboard(date: str) -> str:
        return f"dashboard:{date}"


def _resolve_url(url: str) -> str:
    # Redis Labs requires TLS; the rediss:// scheme turns it on.
    if "redislabs.com" in url and url.startswith("redis://"):
        return "rediss://" + url[len("redis://"):]
    return url


def _redact(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url


class RedisCache:
    """Lazy-connecting get/set wrapper. Never raises."""

    def __init__(self, redis_url: str | None = None) -> None:
        self.redis_url = settings.redis_url if redis_url is None else redis_url
        self.client: redis.Redis | None = None
        self._disabled = False

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def connect(self) -> bool:
        """Connect and ping. Returns False (and disables the cache) on failure."""
        if self.client is not None:
            return True
        if self._disabled:
            return False
        if not self.redis_url:
            logger.warning("REDIS_URL not set, caching disabled")
            self._disabled = True
            return False

        url = _resolve_url(self.redis_url)
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=10,
        )
        try:
            await client.ping()
        except Exception as exc:
            logger.error("Redis connection to %s failed, caching disabled: %s", _redact(url), exc)
            self._disabled = True
            return False

        self.client = client
        logger.info("Redis cache connected (%s)", _redact(url))
        return True

    async def close(self) -> None:
        if self.client is not None:
            try:
                await self.client.aclose()
            except Exception as exc:
                logger.debug("Redis close failed: %s", exc)
        self.client = None

    async def get(self, key: str) -> Any | None:
        if not await self.connect():
            return None
        try:
            raw = await self.client.get(key)
        except Exception as exc:
            logger.error("Cache get failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        if not await self.connect():
            return False
        try:
            serialized = value if isinstance(value, str) else json.dumps(value, default=str)
            await self.client.setex(key, ttl, serialized)
            return True
        except Exception as exc:
            logger.error("Cache set failed for %s: %s", key, exc)
            return False

    async def delete(self, key: str) -> bool:
        if not await self.connect():
            return False
        try:
            await self.client.delete(key)
            return True
        except Exception as exc:
            logger.error("Cache delete failed for %s: %s", key, exc)
            return False

    # ── category helpers ──────────────────────────────────────────────────────

    async def get_campaigns(self, protocol_id: str, page: int) -> list[dict] | None:
        return await self.get(CacheKeys.merkl_campaigns(protocol_id, page))

    async def set_campaigns(self, protocol_id: str, page: int, campaigns: list[dict]) -> bool:
        return await self.set(
            CacheKeys.merkl_campaigns(protocol_id, page), campaigns, CacheTTL.MERKL_CAMPAIGNS
        )

    async def get_opportunities(self, page: int) -> list[dict] | None:
        return await self.get(CacheKeys.merkl_opportunities(page))

    async def set_opportunities(self, page: int, opportunities: list[dict]) -> bool:
        return await self.set(
            CacheKeys.merkl_opportunities(page), opportunities, CacheTTL.MERKL_OPPORTUNITIES
        )

    async def get_tvl(self, slug: str, date: str) -> dict | None:
        return await self.get(CacheKeys.defillama_tvl(slug, date))

    async def set_tvl(self, slug: str, date: str, tvl: dict, historical: bool = False) -> bool:
        ttl = CacheTTL.DEFILLAMA_TVL_HISTORICAL if historical else CacheTTL.DEFILLAMA_TVL_CURRENT
        return await self.set(CacheKeys.defillama_tvl(slug, date), tvl, ttl)

    async def get_volume(self, slug: str, start: str, end: str) -> dict | None:
        return await self.get(CacheKeys.dex_volume(slug, start, end))

    async def set_volume(self, slug: str, start: str, end: str, volume: dict) -> bool:
        return await self.set(CacheKeys.dex_volume(slug, start, end), volume, CacheTTL.DEX_VOLUME)

    async def get_dashboard(self, date: str) -> dict | None:
        return await self.get(CacheKeys.dashboard(date))

    async def set_dashboard(self, date: str, snapshot: dict) -> bool:
        return await self.set(CacheKeys.dashboard(date), snapshot, CacheTTL.DASHBOARD)


# Process-wide cache; main.py closes it on shutdown.
cache = RedisCache()
