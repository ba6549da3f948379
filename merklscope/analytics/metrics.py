"""Incentive efficiency metrics.

TVL Cost   = (incentives USD / period days × 365) / TVL × 100
Volume Cost = incentives USD / volume × 100
WoW        = (current - previous) / previous × 100

Lower costs are better: a TVL cost is the APR an incentive program pays to
keep each dollar of liquidity in the pool.
"""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable

from merklscope.analytics.assets import extract_token_pair
from merklscope.errors import QueryError

if TYPE_CHECKING:
    from merklscope.analytics.spend import SpendReport

DAY_SECONDS = 86_400
DAYS_PER_YEAR = 365
# Points of disagreement between mechanical and actual cost change that
# still count as an incentive-driven move.
DRIVER_TOLERANCE_PTS = 5.0
SIGNIFICANT_WOW_PCT = 10.0
_ISO_DAY = re.compile(r"\d{4}-\d{2}-\d{2}")


# ── dates ─────────────────────────────────────────────────────────────────────


def parse_day(value: str | date) -> date:
    if isinstance(value, date):
        return value
    if not _ISO_DAY.fullmatch(str(value)):
        raise QueryError(f"Invalid date {value!r}. Use YYYY-MM-DD")
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise QueryError(f"Invalid date {value!r}. Use YYYY-MM-DD") from None


def window_bounds(start: date, end: date) -> tuple[int, int]:
    """Unix bounds from ``start 00:00:00Z`` through ``end 23:59:59Z``."""
    start_dt = datetime(start.year, start.month, start.day, tzinfo=timezone.utc)
    end_dt = datetime(end.year, end.month, end.day, 23, 59, 59, tzinfo=timezone.utc)
    return int(start_dt.timestamp()), int(end_dt.timestamp())


def period_days(start: date, end: date) -> int:
    """Inclusive number of days in the window."""
    return (end - start).days + 1


def previous_period(start: date, end: date) -> tuple[date, date]:
    """The window of equal length ending the day before ``start``."""
    prev_end = start - timedelta(days=1)
    prev_start = prev_end - timedelta(days=period_days(start, end) - 1)
    return prev_start, prev_end


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def is_historical(end: date, today: date | None = None) -> bool:
    """True when the whole window lies before today (UTC)."""
    return end < (today or utc_today())


# ── cost metrics ──────────────────────────────────────────────────────────────


def annualize(amount: float, days: int) -> float:
    return amount / days * DAYS_PER_YEAR


def tvl_cost(incentives_usd: float | None, tvl: float | None, days: int) -> float | None:
    if incentives_usd is None or not tvl or tvl <= 0 or days <= 0:
        return None
    return annualize(incentives_usd, days) / tvl * 100


def volume_cost(incentives_usd: float | None, volume: float | None) -> float | None:
    if incentives_usd is None or not volume or volume <= 0:
        return None
    return incentives_usd / volume * 100


def wow_change(previous: float | None, current: float | None) -> float | None:
    if previous is None or current is None or previous <= 0:
        return None
    return (current - previous) / previous * 100


def normalize_pool_id(pool_id: str) -> str:
    """Lower-case, collapse whitespace and hyphen runs into single hyphens."""
    return re.sub(r"[\s-]+", "-", pool_id.strip().lower())


# ── pool rows ─────────────────────────────────────────────────────────────────


@dataclass
class ChangeDriver:
    """Why a pool's TVL cost moved week over week."""

    kind: str  # incentives | tvl_inflow | tvl_outflow | new | unknown
    mechanical_change: float | None
    actual_change: float | None
    phrase: str


@dataclass
class PoolRow:
    """One incentivised market, flattened out of a spend report."""

    protocol: str
    funding_protocol: str
    market_name: str
    incentives_mon: float
    incentives_usd: float | None
    tvl: float | None
    apr: float | None
    period_days: int
    token_pair: str = ""
    volume: float | None = None
    tvl_cost: float | None = None
    volume_cost: float | None = None
    wow_change: float | None = None
    incentives_wow: float | None = None
    tvl_wow: float | None = None
    driver: ChangeDriver | None = None
    merkl_url: str | None = None

    def __post_init__(self) -> None:
        if not self.token_pair:
            self.token_pair = extract_token_pair(self.market_name)
        if self.tvl_cost is None:
            self.tvl_cost = tvl_cost(self.incentives_usd, self.tvl, self.period_days)
        if self.volume_cost is None:
            self.volume_cost = volume_cost(self.incentives_usd, self.volume)

    @property
    def pool_id(self) -> str:
        return f"{self.protocol}-{self.funding_protocol}-{self.market_name}"

    @property
    def daily_incentives_usd(self) -> float | None:
        if self.incentives_usd is None:
            return None
        return self.incentives_usd / self.period_days

    def to_dict(self) -> dict:
        data = asdict(self)
        data["pool_id"] = self.pool_id
        return data


def flatten_pools(report: "SpendReport", mon_price: float | None) -> list[PoolRow]:
    """One PoolRow per market of a spend report, priced at ``mon_price``."""
    days = period_days(report.start, report.end)
    rows: list[PoolRow] = []
    for platform in report.results:
        for funding in platform.funding_protocols:
            for market in funding.markets:
                usd = market.total_mon * mon_price if mon_price else None
                rows.append(
                    PoolRow(
                        protocol=platform.platform_protocol,
                        funding_protocol=funding.funding_protocol,
                        market_name=market.market_name,
                        incentives_mon=market.total_mon,
                        incentives_usd=usd,
                        tvl=market.tvl or None,
                        apr=market.apr,
                        period_days=days,
                        merkl_url=market.merkl_url,
                    )
                )
    return rows


def change_driver(previous: PoolRow | None, current: PoolRow) -> ChangeDriver:
    """Compare the mechanical cost change with the actual one.

    The mechanical change is what the TVL cost would have done had TVL stayed
    flat: the change in daily incentive spend. Whatever the actual change adds
    on top of that came from liquidity moving in or out.
    """
    if previous is None:
        return ChangeDriver(
            "new", None, None, "New pool this week with no previous-week baseline."
        )

    mechanical = wow_change(previous.daily_incentives_usd, current.daily_incentives_usd)
    actual = wow_change(previous.tvl_cost, current.tvl_cost)
    if mechanical is None or actual is None:
        return ChangeDriver(
            "unknown", mechanical, actual, "Not enough data to attribute the cost change."
        )

    if abs(actual - mechanical) <= DRIVER_TOLERANCE_PTS:
        phrase = (
            f"TVL cost moved {actual:+.1f}% in line with incentives ({mechanical:+.1f}%); "
            "liquidity was roughly flat."
        )
        return ChangeDriver("incentives", mechanical, actual, phrase)

    if actual < mechanical:
        phrase = (
            f"Incentives alone would have moved TVL cost {mechanical:+.1f}%, "
            f"but it moved {actual:+.1f}% because new liquidity diluted the spend."
        )
        return ChangeDriver("tvl_inflow", mechanical, actual, phrase)

    phrase = (
        f"Incentives alone would have moved TVL cost {mechanical:+.1f}%, "
        f"but it moved {actual:+.1f}% because liquidity left the pool."
    )
    return ChangeDriver("tvl_outflow", mechanical, actual, phrase)


def attach_wow(current: list[PoolRow], previous: Iterable[PoolRow]) -> list[PoolRow]:
    """Fill WoW fields on ``current`` from the matching previous-week pools."""
    by_id = {normalize_pool_id(p.pool_id): p for p in previous}
    for pool in current:
        prev = by_id.get(normalize_pool_id(pool.pool_id))
        if prev is not None:
            pool.wow_change = wow_change(prev.tvl_cost, pool.tvl_cost)
            pool.incentives_wow = wow_change(prev.incentives_mon, pool.incentives_mon)
            pool.tvl_wow = wow_change(prev.tvl, pool.tvl)
        pool.driver = change_driver(prev, pool)
    return current


# ── protocol aggregates ───────────────────────────────────────────────────────


@dataclass
class ProtocolAggregate:
    total_incentives_mon: float = 0.0
    total_incentives_usd: float = 0.0
    total_tvl: float = 0.0
    pool_count: int = 0
    avg_tvl_cost: float | None = None
    max_tvl_cost: float | None = None
    min_tvl_cost: float | None = None
    pools: list[PoolRow] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["pools"] = [p.to_dict() for p in self.pools]
        return data


def aggregate_protocol(pools: list[PoolRow]) -> ProtocolAggregate:
    agg = ProtocolAggregate(pools=list(pools))
    costs: list[float] = []
    for pool in pools:
        agg.pool_count += 1
        agg.total_incentives_mon += pool.incentives_mon
        agg.total_incentives_usd += pool.incentives_usd or 0.0
        agg.total_tvl += pool.tvl or 0.0
        if pool.tvl_cost is not None:
            costs.append(pool.tvl_cost)
    if costs:
        agg.avg_tvl_cost = sum(costs) / len(costs)
        agg.max_tvl_cost = max(costs)
        agg.min_tvl_cost = min(costs)
    return agg


def protocol_wow(current: ProtocolAggregate | None, previous: ProtocolAggregate | None) -> dict:
    if current is None or previous is None:
        return {"incentives": None, "tvl": None, "avg_tvl_cost": None}
    return {
        "incentives": wow_change(previous.total_incentives_mon, current.total_incentives_mon),
        "tvl": wow_change(previous.total_tvl, current.total_tvl),
        "avg_tvl_cost": wow_change(previous.avg_tvl_cost, current.avg_tvl_cost),
    }


@dataclass
class ProtocolSummary:
    """Current and previous week of one protocol, for the bulk analysis."""

    protocol: str
    current: ProtocolAggregate
    previous: ProtocolAggregate | None
    campaigns: int = 0

    @property
    def wow(self) -> dict:
        return protocol_wow(self.current, self.previous)

    def to_dict(self) -> dict:
        return {
            "protocol": self.protocol,
            "current_week": self.current.to_dict(),
            "previous_week": self.previous.to_dict() if self.previous else None,
            "wow_changes": self.wow,
            "campaigns": self.campaigns,
        }
