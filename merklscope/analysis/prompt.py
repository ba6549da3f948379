"""Prompt construction for the incentive-efficiency analysis.

The LLM sees the week's pools grouped by protocol, similar pools side by
side, the asset-classification targets and the competitive landscape (all
Monad campaigns and opportunities). It is asked to answer in a fixed JSON
shape that ``analysis.report.EfficiencyReport`` validates.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date

from merklscope.analytics.assets import (
    classification_table,
    classify_pool,
    extract_token_pair,
    group_similar_pools,
    rate_tvl_cost,
    rate_volume_cost,
    severity,
)
from merklscope.analytics.metrics import (
    SIGNIFICANT_WOW_PCT,
    PoolRow,
    ProtocolSummary,
    normalize_pool_id,
)

SYSTEM_PROMPT = (
    "You are an expert DeFi analyst specializing in incentive efficiency analysis. "
    "Always respond with valid JSON."
)
POOL_SYSTEM_PROMPT = (
    "You are a DeFi analyst providing concise recommendations for incentive optimization."
)
MAX_RIVALS_PER_PAIR = 8
MAX_UNINCENTIVISED_LISTED = 25

REPORT_SCHEMA = """{
  "key_findings": ["finding1", "finding2"],
  "efficiency_issues": [
    {
      "pool_id": "protocol-fundingProtocol-marketName",
      "issue": "description of issue",
      "severity": "high|medium|low",
      "recommendation": "specific recommendation"
    }
  ],
  "wow_explanations": [
    {
      "pool_id": "protocol-fundingProtocol-marketName",
      "change": 15.5,
      "explanation": "explanation of change",
      "likely_cause": "competitor pools|TVL shift|new pools|incentive change|other"
    }
  ],
  "recommendations": ["recommendation1", "recommendation2"]
}"""


@dataclass
class WeekData:
    pools: list[PoolRow]
    start: date
    end: date
    mon_price: float | None = None


# ── formatting ────────────────────────────────────────────────────────────────


def _millions(value: float | None) -> str:
    return f"${value / 1_000_000:.2f}M" if value else "N/A"


def _pct(value: float | None) -> str:
    return f"{value:.2f}%" if value is not None else "N/A"


def _signed(value: float | None) -> str:
    return f"{value:+.2f}%" if value is not None else "N/A"


def _protocol_of(entity: dict) -> str:
    return entity.get("mainProtocolId") or (entity.get("protocol") or {}).get("id") or "unknown"


def _count_by_protocol(entities: list[dict]) -> dict[str, int]:
    counts: dict[str, int] = defaultdict(int)
    for entity in entities:
        counts[_protocol_of(entity)] += 1
    return dict(sorted(counts.items(), key=lambda kv: kv[1], reverse=True))


# ── sections ──────────────────────────────────────────────────────────────────


def _context_section(current: WeekData, previous: WeekData | None) -> str:
    prev = f"{previous.start} to {previous.end}" if previous else "Not available"
    price = f"${current.mon_price}" if current.mon_price else "Not provided"
    return f"""You are analyzing DeFi incentive efficiency on Monad chain. Your goal is to identify areas for improvement and explain efficiency changes.

## Context
- **Current Period**: {current.start} to {current.end}
- **Previous Period**: {prev}
- **MON Price**: {price}

## Key Metrics Explained
- **TVL Cost**: (Incentives annualized / TVL) x 100. This is the APR being paid to attract TVL. Lower is better.
- **Volume Cost**: Incentives / trading volume x 100. Lower is better.
- **WoW Change**: Week-over-week percentage change in TVL Cost. Negative is better (cost decreased).
- **Cost driver**: whether the WoW change came from the incentive budget itself or from liquidity moving in or out.
- **APR**: Annual Percentage Rate from Merkl incentives.

## Analysis Guidelines
1. **Compare Similar Pools**: Pools with the same token pairs (e.g., MON-USDC, MON-AUSD) should have similar TVL Costs. Flag when APR differs by more than 20%.
2. **Baseline Comparison**: Use Uniswap pools as the baseline. Other pools should match or beat Uniswap's TVL Cost while maintaining utilization.
3. **WoW Change Analysis**: For each WoW change beyond {SIGNIFICANT_WOW_PCT:g}% either way, explain whether it came from competitor pools with higher incentives, TVL shifting to competitors, newly created pools, or other factors.

## Asset Classification Targets
{classification_table()}
"""


def _pool_lines(pool: PoolRow) -> list[str]:
    profile = classify_pool(pool.protocol, pool.token_pair)
    usd = f" (${pool.incentives_usd:.2f})" if pool.incentives_usd else ""
    lines = [
        f"- **{pool.market_name}**",
        f"  - Funding Protocol: {pool.funding_protocol}",
        f"  - Token Pair: {pool.token_pair} ({profile.asset_class}, target <{profile.target_max_cost:g}%)",
        f"  - Incentives: {pool.incentives_mon:.2f} MON{usd}",
        f"  - TVL: {_millions(pool.tvl)}",
        f"  - Volume: {_millions(pool.volume)}",
        f"  - APR: {_pct(pool.apr)}",
        f"  - TVL Cost: {_pct(pool.tvl_cost)} ({rate_tvl_cost(pool.tvl_cost)})",
    ]
    if pool.tvl_cost is not None:
        lines.append(f"  - Priority: {severity(pool.tvl_cost)}")
    if pool.volume_cost is not None:
        lines.append(
            f"  - Volume Cost: {_pct(pool.volume_cost)} ({rate_volume_cost(pool.volume_cost)})"
        )
    if pool.wow_change is not None:
        lines.append(f"  - WoW Change: {_signed(pool.wow_change)}")
    if pool.driver is not None and pool.driver.kind != "unknown":
        lines.append(f"  - Cost driver: {pool.driver.phrase}")
    return lines


def _pools_section(pools: list[PoolRow]) -> str:
    by_protocol: dict[str, list[PoolRow]] = defaultdict(list)
    for pool in pools:
        by_protocol[pool.protocol].append(pool)

    lines = ["## Current Week Pool Data"]
    for protocol, group in by_protocol.items():
        lines.append(f"\n### {protocol.upper()} Protocol")
        for pool in group:
            lines.extend(_pool_lines(pool))
    return "\n".join(lines)


def _similar_section(pools: list[PoolRow]) -> str:
    lines = ["## Similar Pools Comparison"]
    for pair, group in group_similar_pools(pools).items():
        if len(group) < 2:
            continue
        lines.append(f"\n### {pair.upper()} Pools ({len(group)} pools)")
        for pool in group:
            lines.append(
                f"- {pool.protocol} ({pool.funding_protocol}): "
                f"TVL Cost {_pct(pool.tvl_cost)}, APR {_pct(pool.apr)}"
            )
    return "\n".join(lines)


def _previous_section(current: WeekData, previous: WeekData) -> str:
    movers = [
        p for p in current.pools
        if p.wow_change is not None and abs(p.wow_change) > SIGNIFICANT_WOW_PCT
    ]
    new_pools = [p for p in current.pools if p.driver is not None and p.driver.kind == "new"]
    lines = [
        "## Previous Week Comparison",
        f"Previous week had {len(previous.pools)} pools; this week has {len(current.pools)}. "
        "Compare TVL Costs and identify significant changes.",
    ]
    if movers:
        lines.append(f"\nPools whose TVL Cost moved more than {SIGNIFICANT_WOW_PCT:g}%:")
        for pool in sorted(movers, key=lambda p: abs(p.wow_change), reverse=True):
            lines.append(f"- {pool.pool_id}: {_signed(pool.wow_change)}")
    if new_pools:
        lines.append(f"\nNew pools this week: {', '.join(p.pool_id for p in new_pools)}")

    current_ids = {normalize_pool_id(p.pool_id) for p in current.pools}
    ended = [p for p in previous.pools if normalize_pool_id(p.pool_id) not in current_ids]
    if ended:
        lines.append(f"Pools whose incentives ended: {', '.join(p.pool_id for p in ended)}")
    return "\n".join(lines)


def _campaigns_section(campaigns: list[dict]) -> str:
    lines = [
        "## All Active Campaigns on Monad (Competitive Context)",
        f"There are {len(campaigns)} total campaigns on Monad, including campaigns from "
        "protocols not in your selected list.",
        "Use this to identify:",
        "- Vampire campaigns (campaigns targeting the same assets/markets)",
        "- Competitive shifts (new campaigns that might affect TVL)",
        "- Campaigns that ended (explaining why TVL might have shifted)",
        "\n### Campaigns by Protocol:",
    ]
    for protocol, count in _count_by_protocol(campaigns).items():
        lines.append(f"- {protocol}: {count} campaigns")
    return "\n".join(lines)


def _opportunities_section(opportunities: list[dict], pools: list[PoolRow]) -> str:
    lines = [
        "## All Pools/Markets on Monad (Full Competitive Landscape)",
        f"There are {len(opportunities)} total opportunities (pools/markets) on Monad, "
        "including pools that DON'T have incentives. Use this to:",
        "- Identify the full competitive set for each token pair",
        "- Understand which pools are missing incentives (potential opportunities)",
        "- See the complete market landscape beyond just incentivized pools",
        "\n### Opportunities by Protocol:",
    ]
    for protocol, count in _count_by_protocol(opportunities).items():
        lines.append(f"- {protocol}: {count} pools/markets")

    incentivised = {f"{p.protocol}-{p.market_name}" for p in pools}
    without = [
        o for o in opportunities
        if f"{_protocol_of(o)}-{o.get('name') or o.get('explorerAddress') or ''}" not in incentivised
    ]
    if without:
        lines.append(f"\n### Pools Without Incentives ({len(without)} pools):")
        lines.append(
            "These pools exist but don't have incentives. Consider if they should be "
            "incentivized or if they're competing with incentivized pools."
        )
        for opp in without[:MAX_UNINCENTIVISED_LISTED]:
            lines.append(f"- {_protocol_of(opp)}: {opp.get('name', 'unnamed')}")

    rivals = _rival_pools(opportunities, pools)
    if rivals:
        lines.append("\n### Competitor Pools by Token Pair")
        for pair, entries in rivals.items():
            lines.append(f"\n#### {pair}")
            for opp in entries:
                lines.append(
                    f"- {_protocol_of(opp)}: {opp.get('name', 'unnamed')} "
                    f"(APR {_pct(_num(opp.get('apr')))}, TVL {_millions(_num(opp.get('tvl')))})"
                )
    return "\n".join(lines)


def _num(value) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _rival_pools(opportunities: list[dict], pools: list[PoolRow]) -> dict[str, list[dict]]:
    """Opportunities on other protocols that share a token pair with our pools."""
    ours: dict[str, set[str]] = defaultdict(set)
    for pool in pools:
        if pool.token_pair != pool.market_name:
            ours[pool.token_pair.upper()].add(pool.protocol)

    rivals: dict[str, list[dict]] = defaultdict(list)
    for opp in opportunities:
        pair = extract_token_pair(opp.get("name") or "").upper()
        if pair not in ours or _protocol_of(opp) in ours[pair]:
            continue
        if len(rivals[pair]) < MAX_RIVALS_PER_PAIR:
            rivals[pair].append(opp)
    return dict(rivals)


TASKS_SECTION = f"""## Your Analysis Tasks
1. **Key Findings**: List 3-5 most important findings about incentive efficiency.
2. **Efficiency Issues**: Identify pools with:
   - TVL Cost >50% (high priority)
   - TVL Cost >20% (medium priority)
   - TVL Cost above their asset-class target
   - Significant APR differences between similar pools (>20% difference)
3. **WoW Change Explanations**: For each pool with WoW change >{SIGNIFICANT_WOW_PCT:g}% or <-{SIGNIFICANT_WOW_PCT:g}%, explain the likely cause. Use the cost driver lines.
4. **Recommendations**: Provide actionable recommendations to improve efficiency.

Format your response as JSON with this structure:
{REPORT_SCHEMA}"""


# ── public builders ───────────────────────────────────────────────────────────


def build_analysis_prompt(
    current: WeekData,
    previous: WeekData | None = None,
    campaigns: list[dict] | None = None,
    opportunities: list[dict] | None = None,
) -> str:
    sections = [
        _context_section(current, previous),
        _pools_section(current.pools),
        _similar_section(current.pools),
    ]
    if previous is not None:
        sections.append(_previous_section(current, previous))
    if campaigns:
        sections.append(_campaigns_section(campaigns))
    if opportunities:
        sections.append(_opportunities_section(opportunities, current.pools))
    sections.append(TASKS_SECTION)
    return "\n\n".join(sections)


def build_bulk_prompt(
    summaries: list[ProtocolSummary],
    current: tuple[date, date],
    previous: tuple[date, date],
    mon_price: float | None,
    campaigns: list[dict] | None = None,
    opportunities: list[dict] | None = None,
) -> str:
    """Protocol-level variant: one block per protocol with WoW totals."""
    price = f"${mon_price}" if mon_price else "Not provided"
    lines = [
        "You are analyzing DeFi incentive efficiency on Monad chain across protocols. "
        "Compare protocols, identify the least efficient spend and explain week-over-week changes.",
        "",
        "## Context",
        f"- **Current Period**: {current[0]} to {current[1]}",
        f"- **Previous Period**: {previous[0]} to {previous[1]}",
        f"- **MON Price**: {price}",
        "",
        "## Asset Classification Targets",
        classification_table(),
        "",
        "## Protocol Summaries",
    ]
    all_pools: list[PoolRow] = []
    for summary in summaries:
        cur, wow = summary.current, summary.wow
        all_pools.extend(cur.pools)
        lines += [
            f"\n### {summary.protocol.upper()}",
            f"- Campaigns: {summary.campaigns}",
            f"- Pools: {cur.pool_count}",
            f"- Incentives: {cur.total_incentives_mon:.2f} MON (${cur.total_incentives_usd:.2f}), "
            f"WoW {_signed(wow['incentives'])}",
            f"- TVL: {_millions(cur.total_tvl)}, WoW {_signed(wow['tvl'])}",
            f"- Avg TVL Cost: {_pct(cur.avg_tvl_cost)} "
            f"(min {_pct(cur.min_tvl_cost)}, max {_pct(cur.max_tvl_cost)}), "
            f"WoW {_signed(wow['avg_tvl_cost'])}",
        ]
        for pool in sorted(cur.pools, key=lambda p: p.tvl_cost or 0, reverse=True)[:5]:
            lines.append(
                f"  - {pool.market_name}: TVL Cost {_pct(pool.tvl_cost)}, APR {_pct(pool.apr)}"
            )

    if campaigns:
        lines += ["", _campaigns_section(campaigns)]
    if opportunities:
        lines += ["", _opportunities_section(opportunities, all_pools)]
    lines += ["", TASKS_SECTION]
    return "\n".join(lines)


def build_pool_prompt(pool: PoolRow) -> str:
    """Single-pool prompt asking for an action and a short justification."""
    profile = classify_pool(pool.protocol, pool.token_pair)
    usd = f"${pool.incentives_usd:.2f}" if pool.incentives_usd else "N/A"
    tvl = f"${pool.tvl:,.0f}" if pool.tvl else "N/A"
    volume = f"${pool.volume:,.0f}" if pool.volume else "N/A"
    return f"""You are analyzing DeFi incentive campaigns on Monad. Provide specific, actionable recommendations.

Pool Details:
- Protocol: {pool.protocol}
- Market: {pool.market_name}
- Token Pair: {pool.token_pair}
- Asset class: {profile.label}
- Incentives: {pool.incentives_mon:.2f} MON ({usd})
- TVL: {tvl}
- Volume: {volume}
- APR: {_pct(pool.apr)}
- TVL Cost: {_pct(pool.tvl_cost)} ({rate_tvl_cost(pool.tvl_cost)})
- Volume Efficiency: {_pct(pool.volume_cost)} ({rate_volume_cost(pool.volume_cost)})
- WoW Change: {_pct(pool.wow_change)}

STRATEGIC GUIDELINES:
{classification_table()}

Provide:
1. Action: Specific recommendation with percentage if applicable (e.g., "Taper by 30%", "Maintain", "Increase 20%", "Reduce by 40%")
2. Notes: Brief reasoning (1-2 sentences) referencing TVL cost, volume efficiency, and strategic importance

Respond in JSON format:
{{
  "action": "specific action with percentage if applicable",
  "notes": "1-2 sentence explanation with metrics"
}}"""
