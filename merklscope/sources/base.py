"""Base class for the upstream REST API clients."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from merklscope.cache import RedisCache, cache as default_cache
from merklscope.config import settings

logger = logging.getLogger(__name__)


def extract_items(payload: Any, key: str) -> list[dict]:
    """Return the list of entities in a page.

    Merkl answers with a bare list, ``{"data": [...]}`` or ``{key: [...]}``
    depending on the endpoint and version.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for candidate in ("data", key):
            items = payload.get(candidate)
            if isinstance(items, list):
                return items
    return []


class ApiSource:
    """Shares one httpx client and the Redis cache between requests.

    Each implementation wraps one upstream API (Merkl, DeFiLlama, CoinGecko).
    A client passed in by the caller is borrowed and never closed here.
    """

    name: str = "base"
    base_url: str = ""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        cache: RedisCache | None = None,
    ) -> None:
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        self.cache = cache or default_cache

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """GET ``base_url + path`` and return the decoded body. Raises on non-2xx."""
        url = f"{self.base_url.rstrip('/')}{path}"
        kwargs: dict[str, Any] = {"params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout
        resp = await self.client.get(url, **kwargs)
        resp.raise_for_status()
        return resp.json()
