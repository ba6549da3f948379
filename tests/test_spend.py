"""Tests for the MON-spent aggregation."""
from __future__ import annotations

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest

from conftest import mock_client, route
from merklscope.cache import CacheKeys, CacheTTL, RedisCache
from merklscope.analytics.spend import mon_spent, query_mon_spent, reward_symbols, select_campaigns
from merklscope.errors import QueryError
from merklscope.sources.merkl import MerklSource

START, END = date(2025, 11, 1), date(2025, 11, 7)


def ts(day: int, hour: int = 0) -> int:
    return int(datetime(2025, 11, day, hour, tzinfo=timezone.utc).timestamp())


WMON = {"symbol": "WMON", "price": 0.5}

CAMPAIGNS = [
    {"id": "c1", "rewardToken": WMON, "startTimestamp": ts(1), "endTimestamp": ts(30), "opportunityId": "o1"},
    {"id": "c2", "rewardToken": {"symbol": "USDC", "price": 1}, "startTimestamp": ts(1), "endTimestamp": ts(30)},
    {"id": "c3", "rewardToken": WMON, "startTimestamp": ts(8), "endTimestamp": ts(20), "opportunityId": "o1"},
]

ROUTES = {
    "/v4/campaigns": CAMPAIGNS,
    "/v4/campaigns/c1": {"protocol": {"id": "monad-foundation"}, "rewardToken": WMON},
    "/v4/campaigns/c1/metrics": {
        "dailyRewardsRecords": [
            {"timestamp": ts(2), "total": 100},
            {"timestamp": ts(3), "total": 50},
            {"timestamp": ts(9), "total": 1000},
        ],
        "aprRecords": [{"timestamp": ts(6), "apr": 35}, {"timestamp": ts(9), "apr": 99}],
        "tvlRecords": [{"timestamp": ts(7), "total": 2_000_000}],
    },
    "/v4/opportunities/o1": {
        "name": "Uniswap MON-USDC 0.3%",
        "apr": 40,
        "tvl": 1_000_000,
        "protocol": {"id": "uniswap"},
        "chain": {"name": "Monad"},
    },
}


async def test_query_groups_platform_funding_market():
    async with mock_client(route(ROUTES)) as client:
        report = await query_mon_spent(MerklSource(client), ["uniswap"], START, END)

    assert len(report.results) == 1
    platform = report.results[0]
    assert platform.platform_protocol == "uniswap"
    assert platform.total_mon == 300.0

    funding = platform.funding_protocols[0]
    assert funding.funding_protocol == "monad-foundation"

    market = funding.markets[0]
    assert market.market_name == "Uniswap MON-USDC 0.3%"
    assert market.total_mon == 300.0
    # End-of-window metrics win over the live opportunity
    assert market.apr == 35.0
    assert market.tvl == 2_000_000.0
    assert "search=uniswap" in market.merkl_url


async def test_report_dict_shape():
    async with mock_client(route(ROUTES)) as client:
        report = await query_mon_spent(MerklSource(client), ["uniswap"], "2025-11-01", "2025-11-07")
    data = report.to_dict()
    assert data["success"] is True
    assert data["date_range"] == {"start": "2025-11-01", "end": "2025-11-07"}
    assert data["results"][0]["funding_protocols"][0]["markets"][0]["total_mon"] == 300.0


async def test_empty_protocols_rejected():
    async with mock_client(route({})) as client:
        with pytest.raises(QueryError):
            await query_mon_spent(MerklSource(client), [], START, END)


async def test_bad_dates_rejected():
    async with mock_client(route({})) as client:
        merkl = MerklSource(client)
        with pytest.raises(QueryError):
            await query_mon_spent(merkl, ["uniswap"], "11/01/2025", "2025-11-07")
        with pytest.raises(QueryError):
            await query_mon_spent(merkl, ["uniswap"], END, START)


def test_mon_family_symbols():
    assert reward_symbols("wmon") == ("WMON", "MON", "cWMON")
    assert reward_symbols("USDC") == ("USDC",)


def test_select_campaigns_filters_token_and_window():
    selected = select_campaigns(CAMPAIGNS, reward_symbols("WMON"), ts(1), ts(7, 23))
    assert [c["id"] for c in selected] == ["c1"]


def test_mon_spent_converts_usd_at_token_price():
    records = [{"timestamp": ts(2), "total": 10}, {"timestamp": ts(9), "total": 10}]
    assert mon_spent(records, {"price": 0.25}, ts(1), ts(7, 23)) == 40.0
    assert mon_spent(records, {"price": 0}, ts(1), ts(7, 23)) == 0.0


async def test_past_window_still_caches_campaign_pages_briefly():
    redis_client = AsyncMock()
    redis_client.get.return_value = None
    store = RedisCache(redis_url="redis://localhost:6379")
    store.client = redis_client

    async with mock_client(route(ROUTES)) as client:
        await query_mon_spent(MerklSource(client, cache=store), ["uniswap"], date(2025, 1, 1), date(2025, 1, 7))

    ttls = {call.args[0]: call.args[1] for call in redis_client.setex.await_args_list}
    assert ttls[CacheKeys.merkl_campaigns("uniswap", 0)] == CacheTTL.MERKL_CAMPAIGNS


# ── attribution, merging and ordering ─────────────────────────────────────────


def campaign(cid: str, main: str, opportunity: str | None = None) -> dict:
    data = {"id": cid, "mainProtocolId": main, "rewardToken": WMON, "startTimestamp": ts(1), "endTimestamp": ts(30)}
    if opportunity:
        data["opportunityId"] = opportunity
    return data


def rewards(usd: float) -> dict:
    return {"dailyRewardsRecords": [{"timestamp": ts(2), "total": usd}]}


def by_main_protocol(campaigns: list[dict]):
    def answer(request):
        wanted = request.url.params.get("mainProtocolId")
        return [c for c in campaigns if wanted is None or c["mainProtocolId"] == wanted]

    return answer


def opportunity(name: str, protocol: str | None, apr: float, tvl: float) -> dict:
    data = {"name": name, "apr": apr, "tvl": tvl, "chain": {"name": "Monad"}}
    if protocol:
        data["protocol"] = {"id": protocol}
    return data


MULTI_CAMPAIGNS = [
    campaign("a1", "uniswap", "o-uni"),
    campaign("a2", "kuru", "o-gone"),
    campaign("a3", "kuru"),
    campaign("a4", "kuru", "o-anon"),
]

MULTI_ROUTES = {
    "/v4/campaigns": by_main_protocol(MULTI_CAMPAIGNS),
    "/v4/campaigns/a4": {"protocol": {"id": "monad-foundation"}},
    "/v4/campaigns/a1/metrics": rewards(10),
    "/v4/campaigns/a2/metrics": rewards(20),
    "/v4/campaigns/a3/metrics": rewards(30),
    "/v4/campaigns/a4/metrics": rewards(40),
    "/v4/opportunities/o-uni": opportunity("Uniswap MON-USDC 0.3%", "uniswap", 40, 1_000_000),
    "/v4/opportunities/o-anon": opportunity("Anon MON-AUSD", None, 12, 50_000),
}


def spend_tree(report) -> dict:
    return {
        p.platform_protocol: {
            f.funding_protocol: {m.market_name: m.total_mon for m in f.markets}
            for f in p.funding_protocols
        }
        for p in report.results
    }


@pytest.mark.parametrize("protocols", [["uniswap", "kuru"], ["all"]])
async def test_multi_protocol_platform_is_the_opportunity_protocol(protocols):
    async with mock_client(route(MULTI_ROUTES)) as client:
        report = await query_mon_spent(MerklSource(client), protocols, START, END)

    assert spend_tree(report) == {
        "kuru": {"kuru": {"Market o-gone": 40.0, "Unknown Market": 60.0}},
        "monad-foundation": {"monad-foundation": {"Anon MON-AUSD": 80.0}},
        "uniswap": {"uniswap": {"Uniswap MON-USDC 0.3%": 20.0}},
    }


async def test_single_protocol_query_keeps_the_queried_platform():
    async with mock_client(route(MULTI_ROUTES)) as client:
        report = await query_mon_spent(MerklSource(client), ["kuru"], START, END)

    assert spend_tree(report) == {
        "kuru": {
            "monad-foundation": {"Anon MON-AUSD": 80.0},
            "kuru": {"Unknown Market": 60.0, "Market o-gone": 40.0},
        }
    }


SORT_CAMPAIGNS = [
    campaign("b1", "uniswap", "o1"),
    campaign("b2", "uniswap", "o1-copy"),
    campaign("b3", "uniswap", "o1-stale"),
    campaign("b4", "uniswap", "o2"),
    campaign("b5", "uniswap", "o2"),
    campaign("b6", "uniswap", "o2"),
]

SORT_ROUTES = {
    "/v4/campaigns": SORT_CAMPAIGNS,
    "/v4/campaigns/b1": {"protocol": {"id": "fund-x"}},
    "/v4/campaigns/b2": {"protocol": {"id": "fund-x"}},
    "/v4/campaigns/b3": {"protocol": {"id": "fund-x"}},
    "/v4/campaigns/b4": {"protocol": {"id": "fund-x"}},
    "/v4/campaigns/b5": {"protocol": {"id": "fund-y"}},
    "/v4/campaigns/b6": {"protocol": {"id": "fund-z"}},
    "/v4/campaigns/b1/metrics": rewards(10),
    "/v4/campaigns/b2/metrics": rewards(5),
    "/v4/campaigns/b3/metrics": rewards(1),
    "/v4/campaigns/b4/metrics": rewards(50),
    "/v4/campaigns/b5/metrics": rewards(100),
    "/v4/campaigns/b6/metrics": {"dailyRewardsRecords": [{"timestamp": ts(2), "total": 0}, {"timestamp": ts(3), "total": -5}]},
    "/v4/opportunities/o1": opportunity("Pool A", "uniswap", 10, 500),
    "/v4/opportunities/o1-copy": opportunity("Pool A", "other", 30, 800),
    "/v4/opportunities/o1-stale": opportunity("Pool A", "other", 5, 0),
    "/v4/opportunities/o2": opportunity("Pool B", "uniswap", 8, 2_000),
}


async def test_same_market_campaigns_merge():
    async with mock_client(route(SORT_ROUTES)) as client:
        report = await query_mon_spent(MerklSource(client), ["uniswap"], START, END)

    fund_x = next(f for f in report.results[0].funding_protocols if f.funding_protocol == "fund-x")
    pool_a = next(m for m in fund_x.markets if m.market_name == "Pool A")
    assert pool_a.total_mon == 32.0
    assert pool_a.apr == 30.0
    assert pool_a.tvl == 800.0
    assert "search=uniswap" in pool_a.merkl_url


async def test_zero_spend_campaigns_dropped_and_results_sorted():
    async with mock_client(route(SORT_ROUTES)) as client:
        report = await query_mon_spent(MerklSource(client), ["uniswap"], START, END)

    platform = report.results[0]
    assert platform.total_mon == 332.0
    assert [f.funding_protocol for f in platform.funding_protocols] == ["fund-y", "fund-x"]
    assert [m.market_name for m in platform.funding_protocols[1].markets] == ["Pool B", "Pool A"]
    assert "fund-z" not in spend_tree(report)["uniswap"]
