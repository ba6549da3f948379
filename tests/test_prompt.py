"""Tests for the analysis prompt builders."""
from __future__ import annotations

from datetime import date

from merklscope.analysis.prompt import WeekData, build_analysis_prompt, build_bulk_prompt, build_pool_prompt
from merklscope.analytics.metrics import PoolRow, ProtocolSummary, aggregate_protocol, attach_wow


def pool(protocol: str, market: str, usd: float, tvl: float, funding: str = "foundation") -> PoolRow:
    return PoolRow(protocol, funding, market, usd * 2, usd, tvl, 30.0, 7)


def current_pools() -> list[PoolRow]:
    return [
        pool("uniswap", "Uniswap MON-USDC 0.3%", 1400, 1_000_000),
        pool("kuru", "Kuru MON-USDC", 300, 200_000, funding="kuru"),
    ]


PREVIOUS = [pool("uniswap", "Uniswap MON-USDC 0.3%", 700, 1_000_000)]

CAMPAIGNS = [
    {"id": "c1", "mainProtocolId": "uniswap"},
    {"id": "c2", "mainProtocolId": "uniswap"},
    {"id": "c3", "mainProtocolId": "clober"},
]
OPPORTUNITIES = [
    {"name": "Uniswap MON-USDC 0.3%", "mainProtocolId": "uniswap"},
    {"name": "Clober MON-USDC", "mainProtocolId": "clober", "apr": 12, "tvl": 500_000},
    {"name": "Curve AUSD-USDC", "mainProtocolId": "curve"},
]


def make_prompt() -> str:
    current = WeekData(attach_wow(current_pools(), PREVIOUS), date(2025, 11, 1), date(2025, 11, 7), 0.5)
    previous = WeekData(PREVIOUS, date(2025, 10, 25), date(2025, 10, 31))
    return build_analysis_prompt(current, previous, CAMPAIGNS, OPPORTUNITIES)


def test_prompt_context_and_pools():
    prompt = make_prompt()
    assert "**Current Period**: 2025-11-01 to 2025-11-07" in prompt
    assert "**Previous Period**: 2025-10-25 to 2025-10-31" in prompt
    assert "### UNISWAP Protocol" in prompt
    assert "### KURU Protocol" in prompt
    assert "- **Kuru MON-USDC**" in prompt
    assert "WoW Change: +100.00%" in prompt
    assert "Cost driver: TVL cost moved +100.0% in line with incentives" in prompt


def test_prompt_similar_pools_and_previous_week():
    prompt = make_prompt()
    assert "### MON-USDC Pools (2 pools)" in prompt
    assert "Previous week had 1 pools; this week has 2." in prompt
    assert "New pools this week: kuru-kuru-Kuru MON-USDC" in prompt


def test_prompt_competitive_landscape():
    prompt = make_prompt()
    assert "There are 3 total campaigns on Monad" in prompt
    assert "- uniswap: 2 campaigns" in prompt
    assert "### Pools Without Incentives (2 pools):" in prompt
    assert "#### MON-USDC" in prompt
    assert "- clober: Clober MON-USDC (APR 12.00%, TVL $0.50M)" in prompt


def test_prompt_ends_with_schema():
    prompt = make_prompt()
    assert prompt.index("## Your Analysis Tasks") > prompt.index("## Current Week Pool Data")
    assert '"efficiency_issues"' in prompt
    assert '"likely_cause"' in prompt


def test_prompt_without_previous_week_or_landscape():
    prompt = build_analysis_prompt(WeekData(current_pools(), date(2025, 11, 1), date(2025, 11, 7)))
    assert "**Previous Period**: Not available" in prompt
    assert "Previous Week Comparison" not in prompt
    assert "All Active Campaigns" not in prompt


def test_bulk_prompt():
    summary = ProtocolSummary("uniswap", aggregate_protocol(current_pools()[:1]), aggregate_protocol(PREVIOUS), campaigns=2)
    prompt = build_bulk_prompt(
        [summary], (date(2025, 11, 1), date(2025, 11, 7)), (date(2025, 10, 25), date(2025, 10, 31)), 0.5
    )
    assert "### UNISWAP" in prompt
    assert "- Campaigns: 2" in prompt
    assert "WoW +100.00%" in prompt
    assert '"key_findings"' in prompt


def test_pool_prompt():
    prompt = build_pool_prompt(current_pools()[0])
    assert "Token Pair: MON-USDC" in prompt
    assert "Asset class: MON pairs" in prompt
    assert '"action"' in prompt


def test_pool_priority_follows_tvl_cost():
    costly = pool("kuru", "Kuru MON-USDC", 1000, 100_000)
    week = WeekData([costly, current_pools()[0]], date(2025, 11, 1), date(2025, 11, 7))
    prompt = build_analysis_prompt(week)
    kuru = prompt[prompt.index("- **Kuru MON-USDC**"):]
    assert kuru.index("  - Priority: high") < kuru.index("- **Uniswap MON-USDC 0.3%**")
    assert "  - Priority: low" in prompt


def test_pool_without_tvl_has_no_priority():
    bare = PoolRow("kuru", "kuru", "Kuru MON-USDC", 100, 50, None, None, 7)
    prompt = build_analysis_prompt(WeekData([bare], date(2025, 11, 1), date(2025, 11, 7)))
    assert "Priority:" not in prompt
