"""HTTP API: spend queries, protocol metrics, AI analysis, CSV and cron.

/api/query-mon-spent            → MON spent per platform / funder / market
/api/protocol-tvl               → DeFiLlama TVL and DEX volume per protocol
/api/ai-analysis                → efficiency report for a week of pools
/api/bulk-protocol-analysis     → protocol-level report for two weeks
/api/enhanced-csv               → CSV export with price-adjusted incentives
/api/mon-price                  → spot MON/USD
/api/dashboard-default          → cached snapshot for yesterday
/api/cron/refresh-dashboard     → bearer-checked daily refresh
"""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from merklscope import dashboard_cache
from merklscope.analysis.llm import LLMClient
from merklscope.analysis.prompt import WeekData, build_analysis_prompt, build_bulk_prompt
from merklscope.analysis.report import EfficiencyIssue
from merklscope.analytics.export import adjustment_factor, build_enhanced_csv, find_efficiency_issue
from merklscope.analytics.metrics import (
    PoolRow,
    ProtocolSummary,
    aggregate_protocol,
    attach_wow,
    flatten_pools,
    parse_day,
    previous_period,
    utc_today,
    window_bounds,
)
from merklscope.analytics.spend import query_mon_spent
from merklscope.config import settings
from merklscope.errors import LLMError, QueryError
from merklscope.refresh import competitive_landscape, run_refresh
from merklscope.sources.coingecko import CoinGeckoSource
from merklscope.sources.defillama import DefiLlamaSource, DexVolume, ProtocolMetrics
from merklscope.sources.merkl import MerklSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


# ── dependencies ──────────────────────────────────────────────────────────────


async def get_client():
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        yield client


def get_llm() -> LLMClient:
    return LLMClient()


# ── request bodies ────────────────────────────────────────────────────────────


class SpendQuery(BaseModel):
    protocols: list[str] = Field(default_factory=list)
    start_date: str
    end_date: str
    token: str = "WMON"


class MetricsQuery(BaseModel):
    protocols: list[str] = Field(default_factory=list)
    start_date: str
    end_date: str


class PoolInput(BaseModel):
    protocol: str
    funding_protocol: str
    market_name: str
    incentives_mon: float
    incentives_usd: float | None = None
    tvl: float | None = None
    volume: float | None = None
    apr: float | None = None
    period_days: int = 7
    merkl_url: str | None = None

    def to_row(self) -> PoolRow:
        return PoolRow(**self.model_dump())


class WeekInput(BaseModel):
    pools: list[PoolInput] = Field(default_factory=list)
    start_date: str
    end_date: str
    mon_price: float | None = None

    def to_week(self) -> WeekData:
        return WeekData(
            [p.to_row() for p in self.pools],
            parse_day(self.start_date),
            parse_day(self.end_date),
            self.mon_price,
        )


class AnalysisRequest(BaseModel):
    current_week: WeekInput
    previous_week: WeekInput | None = None
    include_all_data: bool = True


class BulkAnalysisRequest(BaseModel):
    protocols: list[str] = Field(default_factory=list)
    start_date: str
    end_date: str
    mon_price: float | None = None


class CsvRequest(BaseModel):
    pools: list[PoolInput] = Field(default_factory=list)
    start_date: str
    end_date: str
    mon_price: float | None = None
    protocol_tvl: dict[str, float | None] = Field(default_factory=dict)
    protocol_dex_volume: dict[str, dict[str, Any]] = Field(default_factory=dict)
    efficiency_issues: list[EfficiencyIssue] = Field(default_factory=list)
    # Ask the LLM about pools no efficiency issue covers; one call per pool
    ai_fallback: bool = False


def _bad_request(exc: QueryError) -> HTTPException:
    return HTTPException(status_code=400, detail=str(exc))


def _window(start: str, end: str):
    start_day, end_day = parse_day(start), parse_day(end)
    if start_day > end_day:
        raise QueryError("Start date must not be after end date")
    return start_day, end_day


# ── routes ────────────────────────────────────────────────────────────────────


@router.post("/query-mon-spent")
async def query_spent(body: SpendQuery, client: httpx.AsyncClient = Depends(get_client)) -> dict:
    try:
        report = await query_mon_spent(
            MerklSource(client), body.protocols, body.start_date, body.end_date, body.token
        )
    except QueryError as exc:
        raise _bad_request(exc) from exc
    return report.to_dict()


@router.post("/protocol-tvl")
async def protocol_tvl(body: MetricsQuery, client: httpx.AsyncClient = Depends(get_client)) -> dict:
    try:
        if not body.protocols:
            raise QueryError("Protocols are required")
        start, end = _window(body.start_date, body.end_date)
    except QueryError as exc:
        raise _bad_request(exc) from exc
    metrics = await DefiLlamaSource(client).fetch_protocols(body.protocols, start, end)
    return metrics.to_dict()


@router.post("/ai-analysis")
async def ai_analysis(
    body: AnalysisRequest,
    client: httpx.AsyncClient = Depends(get_client),
    llm: LLMClient = Depends(get_llm),
) -> dict:
    try:
        current = body.current_week.to_week()
        previous = body.previous_week.to_week() if body.previous_week else None
    except QueryError as exc:
        raise _bad_request(exc) from exc
    if previous is not None:
        attach_wow(current.pools, previous.pools)

    campaigns = opportunities = None
    if body.include_all_data:
        campaigns, opportunities = await competitive_landscape(MerklSource(client))

    prompt = build_analysis_prompt(current, previous, campaigns, opportunities)
    try:
        report = await llm.analyze(prompt)
    except LLMError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"success": True, "analysis": report.model_dump()}


@router.post("/bulk-protocol-analysis")
async def bulk_protocol_analysis(
    body: BulkAnalysisRequest,
    client: httpx.AsyncClient = Depends(get_client),
    llm: LLMClient = Depends(get_llm),
) -> dict:
    try:
        if not body.protocols:
            raise QueryError("No protocols selected")
        start, end = _window(body.start_date, body.end_date)
    except QueryError as exc:
        raise _bad_request(exc) from exc
    prev_start, prev_end = previous_period(start, end)
    merkl = MerklSource(client)
    mon_price = body.mon_price or await CoinGeckoSource(client).fetch_mon_price()

    summaries: list[ProtocolSummary] = []
    for protocol in body.protocols:
        current = await query_mon_spent(merkl, [protocol], start, end)
        previous = await query_mon_spent(merkl, [protocol], prev_start, prev_end)
        campaign_count = len(await merkl.fetch_campaigns(protocol))
        previous_pools = flatten_pools(previous, mon_price)
        pools = attach_wow(flatten_pools(current, mon_price), previous_pools)
        summaries.append(
            ProtocolSummary(
                protocol,
                aggregate_protocol(pools),
                aggregate_protocol(previous_pools) if previous_pools else None,
                campaigns=campaign_count,
            )
        )

    campaigns, opportunities = await competitive_landscape(merkl)
    prompt = build_bulk_prompt(
        summaries, (start, end), (prev_start, prev_end), mon_price, campaigns, opportunities
    )
    try:
        report = await llm.analyze(prompt)
    except LLMError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {
        "success": True,
        "analysis": report.model_dump(),
        "protocols": [s.to_dict() for s in summaries],
    }


@router.post("/enhanced-csv")
async def enhanced_csv(
    body: CsvRequest,
    client: httpx.AsyncClient = Depends(get_client),
    llm: LLMClient = Depends(get_llm),
) -> Response:
    try:
        start, end = _window(body.start_date, body.end_date)
    except QueryError as exc:
        raise _bad_request(exc) from exc
    pools = [p.to_row() for p in body.pools]

    advice: dict[str, tuple[str, str]] = {}
    if body.ai_fallback:
        for pool in pools:
            if find_efficiency_issue(pool.pool_id, body.efficiency_issues) is None:
                result = await llm.recommend_pool(pool)
                advice[pool.pool_id] = (result.action, result.notes)

    start_ts, _ = window_bounds(start, start)
    end_ts, _ = window_bounds(end, end)
    prices = CoinGeckoSource(client)
    price_at_start, twap = await asyncio.gather(
        prices.fetch_price_at(start_ts), prices.fetch_twap(end_ts)
    )

    metrics = ProtocolMetrics(
        tvl={k.lower(): v for k, v in body.protocol_tvl.items()},
        dex_volume={k.lower(): DexVolume.from_dict(v) for k, v in body.protocol_dex_volume.items()},
    )
    content = build_enhanced_csv(
        pools,
        start,
        end,
        body.mon_price,
        metrics,
        body.efficiency_issues,
        adjustment_factor(price_at_start, twap),
        advice,
    )
    filename = f"merkl-incentives-enhanced-{start}-{end}.csv"
    return Response(
        content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/mon-price")
async def mon_price(client: httpx.AsyncClient = Depends(get_client)) -> dict:
    return {"price": await CoinGeckoSource(client).fetch_mon_price()}


@router.get("/dashboard-default")
async def dashboard_default():
    yesterday = (utc_today() - timedelta(days=1)).isoformat()
    snapshot = await dashboard_cache.get_snapshot(yesterday)
    if snapshot is None:
        logger.info("Dashboard cache miss for %s", yesterday)
        return JSONResponse(
            {
                "success": False,
                "cached": False,
                "message": "No cached data available. Wait for the next refresh or trigger one manually.",
                "expected_date": yesterday,
            },
            status_code=404,
        )
    return {"success": True, "cached": True, "data": snapshot.to_dict()}


@router.get("/cron/refresh-dashboard")
async def cron_refresh(
    authorization: str | None = Header(default=None),
    client: httpx.AsyncClient = Depends(get_client),
    llm: LLMClient = Depends(get_llm),
) -> dict:
    if settings.cron_secret and authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")
    summary = await run_refresh(client=client, llm=llm)
    return {"success": True, **summary.to_dict()}
