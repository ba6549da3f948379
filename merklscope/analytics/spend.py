"""MON spent per market, the core aggregation behind the dashboard.

Campaigns paying out MON-family reward tokens are grouped

    platform protocol  (where the incentivised market lives)
      → funding protocol (who paid for the campaign)
        → market         (the Merkl opportunity)

and the MON each campaign distributed inside the query window is summed
bottom-up.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import date

from merklscope.analytics.metrics import parse_day, window_bounds
from merklscope.analytics.series import to_float, to_int, value_at
from merklscope.errors import QueryError
from merklscope.sources.merkl import MerklSource, campaign_id, merkl_search_url

logger = logging.getLogger(__name__)

MON_SYMBOLS = ("WMON", "MON", "cWMON")


@dataclass
class MarketSpend:
    market_name: str
    total_mon: float = 0.0
    apr: float | None = None
    tvl: float | None = None
    merkl_url: str | None = None

    def merge(self, apr: float | None, tvl: float | None, url: str | None) -> None:
        """Keep the highest APR, the highest positive TVL and the first URL."""
        if apr is not None and (self.apr is None or apr > self.apr):
            self.apr = apr
        if tvl is not None and tvl > 0 and (self.tvl is None or tvl > self.tvl):
            self.tvl = tvl
        if url and not self.merkl_url:
            self.merkl_url = url


@dataclass
class FundingSpend:
    funding_protocol: str
    total_mon: float = 0.0
    markets: list[MarketSpend] = field(default_factory=list)


@dataclass
class PlatformSpend:
    platform_protocol: str
    total_mon: float = 0.0
    funding_protocols: list[FundingSpend] = field(default_factory=list)


@dataclass
class SpendReport:
    results: list[PlatformSpend]
    start: date
    end: date

    @property
    def total_mon(self) -> float:
        return sum(p.total_mon for p in self.results)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "results": [asdict(p) for p in self.results],
            "date_range": {"start": self.start.isoformat(), "end": self.end.isoformat()},
        }


# ── campaign-level helpers ────────────────────────────────────────────────────


def reward_symbols(token: str) -> tuple[str, ...]:
    # MON, WMON and cWMON are the same asset for spend purposes
    if token.upper() in {s.upper() for s in MON_SYMBOLS}:
        return MON_SYMBOLS
    return (token,)


def overlaps_window(campaign: dict, start_ts: int, end_ts: int) -> bool:
    start = to_int(campaign.get("startTimestamp")) or 0
    end = to_int(campaign.get("endTimestamp"))
    if end is None:
        end = float("inf")
    return start <= end_ts and end >= start_ts


def select_campaigns(
    campaigns: list[dict], symbols: tuple[str, ...], start_ts: int, end_ts: int
) -> list[dict]:
    selected = []
    for campaign in campaigns:
        token = campaign.get("rewardToken") or {}
        if token.get("symbol") not in symbols:
            continue
        if overlaps_window(campaign, start_ts, end_ts):
            selected.append(campaign)
    return selected


def mon_spent(
    daily_rewards: list[dict], reward_token: dict | None, start_ts: int, end_ts: int
) -> float:
    """MON distributed inside the window, from daily USD reward records."""
    price = to_float((reward_token or {}).get("price"))
    if not price:
        return 0.0
    total = 0.0
    for record in daily_rewards or []:
        ts = to_int(record.get("timestamp"))
        if ts is None or not start_ts <= ts <= end_ts:
            continue
        usd = to_float(record.get("total")) or 0.0
        if usd > 0:
            total += usd / price
    return total


def funding_protocol_of(campaign: dict, details: dict | None) -> str:
    if details and (details.get("protocol") or {}).get("id"):
        return details["protocol"]["id"]
    if campaign.get("mainProtocolId"):
        return campaign["mainProtocolId"]
    tags = (campaign.get("creator") or {}).get("tags") or []
    if tags:
        return tags[0]
    return "unknown"


@dataclass
class _MarketInfo:
    platform: str
    name: str
    apr: float | None = None
    tvl: float | None = None
    url: str | None = None


async def _market_info(
    merkl: MerklSource, campaign: dict, single_protocol: str | None, funding: str
) -> _MarketInfo:
    info = _MarketInfo(platform=single_protocol or funding, name="Unknown Market")
    opportunity_id = campaign.get("opportunityId")
    if not opportunity_id:
        return info

    info.name = f"Market {opportunity_id}"
    opportunity = await merkl.fetch_opportunity(str(opportunity_id))
    if not opportunity:
        return info

    if single_protocol is None:
        info.platform = (opportunity.get("protocol") or {}).get("id") or funding
    info.name = opportunity.get("name") or info.name
    info.apr = to_float(opportunity.get("apr"))
    tvl = to_float(opportunity.get("tvl"))
    if tvl is not None and tvl > 0:
        info.tvl = tvl
    info.url = merkl_search_url(opportunity)
    return info


# ── query ─────────────────────────────────────────────────────────────────────


async def query_mon_spent(
    merkl: MerklSource,
    protocols: list[str],
    start: str | date,
    end: str | date,
    token: str = "WMON",
) -> SpendReport:
    """MON spent per platform → funding protocol → market in ``[start, end]``."""
    if not protocols:
        raise QueryError("Protocols are required")
    start_day, end_day = parse_day(start), parse_day(end)
    if start_day > end_day:
        raise QueryError("Start date must not be after end date")
    start_ts, end_ts = window_bounds(start_day, end_day)

    query_all = protocols == ["all"]
    campaigns: list[dict] = []
    if query_all:
        campaigns = await merkl.fetch_campaigns("all")
    else:
        for protocol in protocols:
            campaigns.extend(await merkl.fetch_campaigns(protocol))
            await asyncio.sleep(merkl.rate_limit)

    relevant = select_campaigns(campaigns, reward_symbols(token), start_ts, end_ts)
    logger.info(
        "%d of %d campaigns pay %s inside %s..%s",
        len(relevant), len(campaigns), token, start_day, end_day,
    )

    single_protocol = protocols[0] if len(protocols) == 1 and not query_all else None
    platforms: dict[str, PlatformSpend] = {}

    for campaign in relevant:
        cid = campaign_id(campaign)
        if not cid:
            continue

        details = await merkl.fetch_campaign(cid)
        funding = funding_protocol_of(campaign, details)
        info = await _market_info(merkl, campaign, single_protocol, funding)

        reward_token = (details or {}).get("rewardToken") or campaign.get("rewardToken")
        metrics = await merkl.fetch_campaign_metrics(cid)
        total = mon_spent(metrics.get("dailyRewardsRecords") or [], reward_token, start_ts, end_ts)

        # End-of-window metrics are more accurate than the live opportunity
        apr_at_end = value_at(metrics.get("aprRecords"), end_ts, "apr")
        if apr_at_end is not None:
            info.apr = apr_at_end
        tvl_at_end = value_at(metrics.get("tvlRecords"), end_ts, "total")
        if tvl_at_end is not None and tvl_at_end > 0:
            info.tvl = tvl_at_end

        if total <= 0:
            continue

        platform = platforms.setdefault(info.platform, PlatformSpend(info.platform))
        funding_spend = next(
            (f for f in platform.funding_protocols if f.funding_protocol == funding), None
        )
        if funding_spend is None:
            funding_spend = FundingSpend(funding)
            platform.funding_protocols.append(funding_spend)

        market = next((m for m in funding_spend.markets if m.market_name == info.name), None)
        if market is None:
            market = MarketSpend(info.name, apr=info.apr, tvl=info.tvl, merkl_url=info.url)
            funding_spend.markets.append(market)
        else:
            market.merge(info.apr, info.tvl, info.url)

        market.total_mon += total
        funding_spend.total_mon += total
        platform.total_mon += total

        await asyncio.sleep(merkl.rate_limit)

    return SpendReport(_finalize(platforms.values()), start_day, end_day)


def _finalize(platforms) -> list[PlatformSpend]:
    """Round to 2 dp and sort: markets and funders by MON, platforms by name."""
    results = []
    for platform in platforms:
        fundings = []
        for funding in platform.funding_protocols:
            markets = [
                MarketSpend(
                    market_name=m.market_name,
                    total_mon=round(m.total_mon, 2),
                    apr=round(m.apr, 2) if m.apr is not None else None,
                    tvl=round(m.tvl, 2) if m.tvl is not None else None,
                    merkl_url=m.merkl_url,
                )
                for m in funding.markets
            ]
            markets.sort(key=lambda m: m.total_mon, reverse=True)
            fundings.append(
                FundingSpend(funding.funding_protocol, round(funding.total_mon, 2), markets)
            )
        fundings.sort(key=lambda f: f.total_mon, reverse=True)
        results.append(
            PlatformSpend(platform.platform_protocol, round(platform.total_mon, 2), fundings)
        )
    results.sort(key=lambda p: p.platform_protocol)
    return results
