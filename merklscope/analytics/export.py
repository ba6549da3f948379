"""Enhanced CSV export with price-adjusted incentives and AI actions."""
from __future__ import annotations

import csv
import io
from collections import defaultdict
from datetime import date
from typing import Iterable

from merklscope.analysis.report import EfficiencyIssue
from merklscope.analytics.metrics import PoolRow, annualize, normalize_pool_id, period_days
from merklscope.sources.defillama import ProtocolMetrics


def adjustment_factor(price_at_start: float | None, twap: float | None) -> float:
    """``TWAP / price at distribution``; 1 when either price is unknown."""
    if not price_at_start or not twap or price_at_start <= 0:
        return 1.0
    return twap / price_at_start


def _split_pool_id(pool_id: str) -> tuple[str, str, str] | None:
    parts = normalize_pool_id(pool_id).split("-", 2)
    if len(parts) < 3 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1], parts[2]


def find_efficiency_issue(
    pool_id: str, issues: Iterable[EfficiencyIssue] | None
) -> tuple[str, str] | None:
    """Action and notes of the issue that matches ``pool_id``.

    Exact match on the normalised id first, then same protocol and funding
    protocol with one market name containing the other.
    """
    issues = list(issues or [])
    if not issues:
        return None

    wanted = normalize_pool_id(pool_id)
    issue = next((i for i in issues if normalize_pool_id(i.pool_id) == wanted), None)

    if issue is None and (ours := _split_pool_id(pool_id)) is not None:
        for candidate in issues:
            theirs = _split_pool_id(candidate.pool_id)
            if theirs is None or theirs[:2] != ours[:2]:
                continue
            if ours[2] in theirs[2] or theirs[2] in ours[2]:
                issue = candidate
                break

    if issue is None or not issue.recommendation:
        return None
    action = issue.recommendation.split(".", 1)[0].strip()
    return action, issue.issue or issue.recommendation


def _money(value: float | None) -> str:
    return f"{value:.2f}" if value else ""


def _cost(adjusted_usd: float, denominator: float | None, days: int, annual: bool) -> str:
    if not denominator or denominator <= 0:
        return ""
    spend = annualize(adjusted_usd, days) if annual else adjusted_usd
    return f"{spend / denominator * 100:.2f}"


def build_enhanced_csv(
    pools: list[PoolRow],
    start: date,
    end: date,
    mon_price: float | None,
    metrics: ProtocolMetrics | None = None,
    issues: list[EfficiencyIssue] | None = None,
    adjustment: float = 1.0,
    advice: dict[str, tuple[str, str]] | None = None,
) -> str:
    """CSV text with a grand total, then per protocol a subtotal, pools and DeFiLlama totals.

    ``advice`` maps pool ids to ``(action, notes)`` for pools that no
    efficiency issue matches.
    """
    days = period_days(start, end)
    price = mon_price or 0.0
    metrics = metrics or ProtocolMetrics()

    by_protocol: dict[str, list[PoolRow]] = defaultdict(list)
    for pool in pools:
        by_protocol[pool.protocol].append(pool)

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow([
        "Type", "Protocol", "", "Pool", "Incentive (MON)", "Adjusted Incentive (MON)",
        "Period (days)", f"TVL (as of {end:%m/%d})", f"Volume ({start:%m/%d} - {end:%m/%d})",
        "APR (%)", "TVL Cost (%)", "Adjusted Cost Efficiency (%)",
        "Adjusted TVL Cost WoW Change (%)", "Volume Efficiency (%)", "Action Needed", "Notes",
    ])

    def total_row(label: str, name: str, group: list[PoolRow]) -> list[str]:
        mon = sum(p.incentives_mon for p in group)
        adjusted_usd = mon * adjustment * price
        tvl = sum(p.tvl or 0.0 for p in group)
        volume = sum(p.volume or 0.0 for p in group)
        tvl_cost = _cost(adjusted_usd, tvl, days, annual=True)
        return [
            label, "", "", name, f"{mon:.2f}", f"{mon * adjustment:.2f}", str(days),
            _money(tvl), _money(volume), "", tvl_cost, tvl_cost, "",
            _cost(adjusted_usd, volume, days, annual=False), "", "",
        ]

    writer.writerow(total_row("GRAND TOTAL", "All Pools", pools))

    for protocol, group in by_protocol.items():
        writer.writerow(total_row(f"{protocol} SUBTOTAL", "ALL POOLS", group))

        for pool in group:
            adjusted_usd = pool.incentives_mon * adjustment * price
            tvl_cost = _cost(adjusted_usd, pool.tvl, days, annual=True)
            action, notes = (
                find_efficiency_issue(pool.pool_id, issues)
                or (advice or {}).get(pool.pool_id)
                or ("", "")
            )
            writer.writerow([
                "Pool", pool.protocol, pool.funding_protocol, pool.market_name,
                f"{pool.incentives_mon:.2f}", f"{pool.incentives_mon * adjustment:.2f}", str(days),
                _money(pool.tvl), _money(pool.volume),
                f"{pool.apr:.2f}" if pool.apr is not None else "",
                tvl_cost, tvl_cost,
                f"{pool.wow_change:.2f}" if pool.wow_change is not None else "",
                _cost(adjusted_usd, pool.volume, days, annual=False),
                action, notes,
            ])

        key = protocol.lower()
        writer.writerow([
            f"{protocol} PROTOCOL TOTAL", "", "", "", "", "", str(days),
            _money(metrics.tvl.get(key)), _money(metrics.volume_for(key)),
            "", "", "", "", "", "", "",
        ])

    return buf.getvalue()
