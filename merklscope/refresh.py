"""Daily refresh of the default dashboard.

Queries the last full week (ending yesterday, UTC) and the week before it,
runs the AI analysis and stores the result as the dashboard snapshot.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import date, timedelta

import httpx

from merklscope import dashboard_cache
from merklscope.analysis.llm import LLMClient
from merklscope.analysis.prompt import WeekData, build_analysis_prompt
from merklscope.analytics.metrics import attach_wow, flatten_pools, previous_period, utc_today
from merklscope.analytics.spend import SpendReport, query_mon_spent
from merklscope.cache import RedisCache
from merklscope.config import settings
from merklscope.errors import LLMError
from merklscope.sources.coingecko import CoinGeckoSource
from merklscope.sources.defillama import DefiLlamaSource, ProtocolMetrics
from merklscope.sources.merkl import MerklSource

logger = logging.getLogger(__name__)


@dataclass
class RefreshSummary:
    date: str
    duration_ms: int
    pools_count: int
    ai_included: bool

    def to_dict(self) -> dict:
        return asdict(self)


def refresh_window(today: date | None = None) -> tuple[date, date]:
    """``refresh_window_days`` days ending yesterday (UTC)."""
    end = (today or utc_today()) - timedelta(days=1)
    return end - timedelta(days=settings.refresh_window_days - 1), end


async def fetch_week(
    merkl: MerklSource,
    llama: DefiLlamaSource,
    protocols: list[str],
    start: date,
    end: date,
) -> tuple[SpendReport, ProtocolMetrics]:
    """Spend report and protocol TVL/volume for one window, fetched concurrently."""
    return await asyncio.gather(
        query_mon_spent(merkl, protocols, start, end),
        llama.fetch_protocols(protocols, start, end),
    )


async def competitive_landscape(merkl: MerklSource) -> tuple[list[dict], list[dict]]:
    """All Monad campaigns and opportunities; empty lists on failure."""
    campaigns, opportunities = await asyncio.gather(
        merkl.fetch_campaigns("all"),
        merkl.fetch_opportunities(),
    )
    logger.info(
        "Fetched %d campaigns and %d opportunities on %s",
        len(campaigns), len(opportunities), settings.chain_name,
    )
    return campaigns, opportunities


async def run_refresh(
    today: date | None = None,
    client: httpx.AsyncClient | None = None,
    llm: LLMClient | None = None,
    store: RedisCache | None = None,
) -> RefreshSummary:
    started = time.monotonic()
    start, end = refresh_window(today)
    prev_start, prev_end = previous_period(start, end)
    protocols = list(settings.protocols)
    logger.info(
        "Refreshing dashboard: %s..%s (previous %s..%s), %d protocols",
        start, end, prev_start, prev_end, len(protocols),
    )

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    try:
        merkl = MerklSource(client, cache=store)
        llama = DefiLlamaSource(client, cache=store)
        mon_price = await CoinGeckoSource(client, cache=store).fetch_mon_price()

        spend, metrics = await fetch_week(merkl, llama, protocols, start, end)
        prev_spend, prev_metrics = await fetch_week(merkl, llama, protocols, prev_start, prev_end)
        logger.info("Spend: %.2f MON this week, %.2f MON last week", spend.total_mon, prev_spend.total_mon)

        previous_pools = flatten_pools(prev_spend, mon_price)
        pools = attach_wow(flatten_pools(spend, mon_price), previous_pools)

        ai_analysis = None
        try:
            campaigns, opportunities = await competitive_landscape(merkl)
            prompt = build_analysis_prompt(
                WeekData(pools, start, end, mon_price),
                WeekData(previous_pools, prev_start, prev_end),
                campaigns,
                opportunities,
            )
            report = await (llm or LLMClient()).analyze(prompt)
            ai_analysis = report.model_dump()
        except LLMError as exc:
            logger.error("AI analysis failed, storing dashboard without it: %s", exc)
    finally:
        if owns_client:
            await client.aclose()

    snapshot = dashboard_cache.DashboardSnapshot(
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        mon_price=mon_price,
        protocols=protocols,
        results=spend.to_dict()["results"],
        previous_week_results=prev_spend.to_dict()["results"],
        protocol_tvl=metrics.tvl,
        protocol_tvl_metadata=metrics.tvl_metadata,
        protocol_dex_volume=metrics.to_dict()["dex_volume_data"],
        previous_week_protocol_tvl=prev_metrics.tvl,
        previous_week_protocol_dex_volume=prev_metrics.to_dict()["dex_volume_data"],
        pools=[p.to_dict() for p in pools],
        ai_analysis=ai_analysis,
    )
    await dashboard_cache.set_snapshot(snapshot, store)

    summary = RefreshSummary(
        date=end.isoformat(),
        duration_ms=int((time.monotonic() - started) * 1000),
        pools_count=len(pools),
        ai_included=ai_analysis is not None,
    )
    logger.info(
        "Dashboard refreshed for %s: %d pools, AI %s, %d ms",
        summary.date, summary.pools_count,
        "included" if summary.ai_included else "missing", summary.duration_ms,
    )
    return summary
