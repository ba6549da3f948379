"""Merkl API client for campaigns, opportunities and campaign metrics on Monad.

Campaign and opportunity listings are paginated (``items=100``). Each page
is looked up in the Redis cache first; only cache misses hit the API, and
each uncached page is followed by a short sleep to stay under Merkl's
rate limit.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import quote

import httpx

from merklscope.config import settings
from merklscope.sources.base import ApiSource, extract_items

logger = logging.getLogger(__name__)

MERKL_APP_URL = "https://app.merkl.xyz"
OPPORTUNITY_STATUSES = "LIVE,PAST,SOON"
EMPTY_METRICS = {"dailyRewardsRecords": [], "aprRecords": [], "tvlRecords": []}


def campaign_id(campaign: dict) -> str | None:
    cid = campaign.get("id") or campaign.get("campaignId")
    return str(cid) if cid else None


def merkl_search_url(opportunity: dict | None) -> str | None:
    """Link to the Merkl app search page for the opportunity's protocol.

    The search page is used instead of the opportunity page because Merkl
    opportunity URLs are case sensitive.
    """
    if not opportunity:
        return None
    chain_name = (opportunity.get("chain") or {}).get("name")
    protocol_id = (opportunity.get("protocol") or {}).get("id")
    if not chain_name or not protocol_id:
        return None
    return (
        f"{MERKL_APP_URL}/chains/{chain_name.lower()}"
        f"?search={quote(protocol_id, safe='')}&status=LIVE%2CSOON%2CPAST"
    )


class MerklSource(ApiSource):
    """Fetches Merkl campaigns and opportunities for one chain."""

    name = "merkl"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.base_url = settings.merkl_api_base
        self.chain_id = settings.chain_id
        self.page_size = settings.page_size
        self.rate_limit = settings.rate_limit_seconds

    async def _paginate(
        self,
        path: str,
        params: dict[str, Any],
        key: str,
        cache_get: Callable[[int], Awaitable[list[dict] | None]],
        cache_set: Callable[[int, list[dict]], Awaitable[bool]],
        label: str,
    ) -> list[dict]:
        items: list[dict] = []
        page = 0
        while True:
            cached = await cache_get(page)
            if cached:
                logger.debug("Cache hit for %s page %d", label, page)
                items.extend(cached)
                if len(cached) < self.page_size:
                    break
                page += 1
                continue

            try:
                payload = await self.get_json(
                    path, {**params, "page": page, "items": self.page_size}
                )
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Error fetching %s page %d: %s", label, page, exc)
                break

            page_items = extract_items(payload, key)
            if not page_items:
                break
            items.extend(page_items)
            await cache_set(page, page_items)

            # Rate limiting applies to API calls only, never to cache hits
            await asyncio.sleep(self.rate_limit)
            if len(page_items) < self.page_size:
                break
            page += 1

        logger.info("Fetched %d %s", len(items), label)
        return items

    async def fetch_campaigns(self, protocol_id: str) -> list[dict]:
        """All campaigns on the chain, or those of one main protocol.

        ``protocol_id="all"`` drops the protocol filter. The listing is not
        bounded by any date window, so pages always get the live TTL.
        """
        params: dict[str, Any] = {"chainId": self.chain_id}
        if protocol_id != "all":
            params["mainProtocolId"] = protocol_id

        return await self._paginate(
            "/v4/campaigns",
            params,
            "campaigns",
            cache_get=lambda page: self.cache.get_campaigns(protocol_id, page),
            cache_set=lambda page, items: self.cache.set_campaigns(protocol_id, page, items),
            label=f"campaigns for {protocol_id}",
        )

    async def fetch_opportunities(self) -> list[dict]:
        """Every opportunity (pool/market) on the chain, incentivised or not."""
        return await self._paginate(
            "/v4/opportunities",
            {"chainId": self.chain_id, "status": OPPORTUNITY_STATUSES},
            "opportunities",
            cache_get=self.cache.get_opportunities,
            cache_set=self.cache.set_opportunities,
            label="opportunities",
        )

    async def fetch_campaign(self, cid: str) -> dict | None:
        try:
            return await self.get_json(f"/v4/campaigns/{cid}")
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Campaign %s lookup failed: %s", cid, exc)
            return None

    async def fetch_opportunity(self, opportunity_id: str) -> dict | None:
        try:
            return await self.get_json(f"/v4/opportunities/{opportunity_id}")
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Opportunity %s lookup failed: %s", opportunity_id, exc)
            return None

    async def fetch_campaign_metrics(self, cid: str) -> dict:
        """Daily reward, APR and TVL records for one campaign."""
        try:
            data = await self.get_json(f"/v4/campaigns/{cid}/metrics")
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Metrics for campaign %s failed: %s", cid, exc)
            return {k: [] for k in EMPTY_METRICS}
        if not isinstance(data, dict):
            return {k: [] for k in EMPTY_METRICS}
        return data
