"""Asset classification and efficiency targets for Monad pools.

Every pool falls into one asset class, and each class has its own TVL cost
target. MON pairs are measured against the Uniswap MON-USDC pool (~50%
APR). Stables, LSTs and lending markets should run far cheaper.
"""
from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from merklscope.analytics.metrics import PoolRow

_PAIR_RE = re.compile(r"([A-Z0-9]+)-([A-Z0-9]+)")

MON_TOKENS = {"MON", "WMON", "CWMON", "SMON", "SHMON", "GMON", "APRMON"}
STABLE_TOKENS = {"USDC", "USDT", "AUSD", "USDT0", "DAI", "USDE", "FRAX", "USD1"}
LST_TOKENS = {"WSTETH", "STETH", "WEETH", "RETH", "CBETH", "EZETH"}
ETH_TOKENS = {"ETH", "WETH"}
BTC_TOKENS = {"BTC", "WBTC", "CBBTC", "LBTC", "SOLVBTC", "TBTC"}
NICHE_TOKENS = {"XAU", "XAUT", "PAXG"}

LENDING_PROTOCOLS = {"morpho", "euler", "curvance", "gearbox", "townsquare"}
PERPS_PROTOCOLS = {"monday-trade"}
DEX_PROTOCOLS = {"uniswap", "pancake-swap", "pancakeswap", "kuru", "clober", "curve"}


class AssetClass(StrEnum):
    MON_PAIR = "mon_pair"
    STABLE = "stable"
    LST = "lst"
    BTC = "btc"
    LENDING = "lending"
    DEX = "dex"
    PERPS = "perps"
    NICHE = "niche"
    OTHER = "other"


@dataclass(frozen=True)
class AssetProfile:
    asset_class: AssetClass
    label: str
    # TVL cost (%) above which the pool counts as inefficient
    target_max_cost: float
    guidance: str


PROFILES: dict[AssetClass, AssetProfile] = {
    AssetClass.MON_PAIR: AssetProfile(
        AssetClass.MON_PAIR, "MON pairs (MON/AUSD, MON/USDC, WBTC/MON, WETH/MON)", 50.0,
        "Above 50% is inefficient (Uniswap MON-USDC benchmark ~50% APR). "
        "MON is L1-native; reduce dependence if cost exceeds 50%.",
    ),
    AssetClass.STABLE: AssetProfile(
        AssetClass.STABLE, "Stablecoins (AUSD/USDC, AUSD/USDT)", 8.0,
        "Maintain if TVL cost <8%. Critical for liquidity depth.",
    ),
    AssetClass.LST: AssetProfile(
        AssetClass.LST, "LST pools (wstETH/WETH)", 10.0,
        "Maintain if TVL cost <10%. Strategic infrastructure.",
    ),
    AssetClass.BTC: AssetProfile(
        AssetClass.BTC, "BTC pools", 15.0,
        "Keep efficient BTC pools (~5%); reduce WBTC pools costing >15%.",
    ),
    AssetClass.LENDING: AssetProfile(
        AssetClass.LENDING, "Lending (Morpho, Euler, Curvance, Gearbox, Townsquare)", 7.0,
        "Maintain. Typically 3-7% TVL cost, critical DeFi infrastructure.",
    ),
    AssetClass.DEX: AssetProfile(
        AssetClass.DEX, "DEX competitors (PancakeSwap, Kuru)", 15.0,
        "Maintain if TVL cost <15% and volume is strong.",
    ),
    AssetClass.PERPS: AssetProfile(
        AssetClass.PERPS, "Perps (Monday Trade)", 10.0,
        "Maintain if TVL cost <10%. Strategic for derivatives.",
    ),
    AssetClass.NICHE: AssetProfile(
        AssetClass.NICHE, "Niche assets (XAU)", 20.0,
        "Reduce if TVL cost >20% unless volume is exceptional.",
    ),
    AssetClass.OTHER: AssetProfile(
        AssetClass.OTHER, "Other", 20.0,
        "Judge against the moderate band (10-20%).",
    ),
}


def extract_token_pair(market_name: str) -> str:
    """Pull the first ``ABC-XYZ`` pair out of a market name, e.g. ``MON-USDC``."""
    match = _PAIR_RE.search(market_name or "")
    if match:
        return f"{match.group(1)}-{match.group(2)}"
    return market_name


def _tokens(token_pair: str) -> list[str]:
    parts = [t.strip().upper() for t in re.split(r"[-/]", token_pair or "")]
    return [t for t in parts if t]


def classify_pool(protocol: str, token_pair: str) -> AssetProfile:
    protocol = (protocol or "").lower()
    if protocol in LENDING_PROTOCOLS:
        return PROFILES[AssetClass.LENDING]
    if protocol in PERPS_PROTOCOLS:
        return PROFILES[AssetClass.PERPS]

    tokens = _tokens(token_pair)
    token_set = set(tokens)
    if len(tokens) >= 2:
        if token_set & MON_TOKENS:
            return PROFILES[AssetClass.MON_PAIR]
        if token_set <= STABLE_TOKENS:
            return PROFILES[AssetClass.STABLE]
        if token_set & LST_TOKENS and token_set <= LST_TOKENS | ETH_TOKENS:
            return PROFILES[AssetClass.LST]
    if token_set & NICHE_TOKENS:
        return PROFILES[AssetClass.NICHE]
    if token_set & BTC_TOKENS:
        return PROFILES[AssetClass.BTC]
    if protocol in DEX_PROTOCOLS and protocol != "uniswap":
        return PROFILES[AssetClass.DEX]
    return PROFILES[AssetClass.OTHER]


def group_similar_pools(pools: Iterable["PoolRow"]) -> dict[str, list["PoolRow"]]:
    groups: dict[str, list] = defaultdict(list)
    for pool in pools:
        groups[pool.token_pair.lower()].append(pool)
    return dict(groups)


def rate_tvl_cost(cost: float | None) -> str:
    if cost is None:
        return "n/a"
    if cost < 5:
        return "excellent"
    if cost < 10:
        return "good"
    if cost < 20:
        return "moderate"
    if cost < 30:
        return "high"
    return "very high"


def rate_volume_cost(cost: float | None) -> str:
    if cost is None:
        return "n/a"
    if cost < 1:
        return "excellent"
    if cost < 5:
        return "good"
    if cost < 10:
        return "moderate"
    return "poor"


def severity(cost: float | None) -> str:
    if cost is None:
        return "low"
    if cost > 50:
        return "high"
    if cost > 20:
        return "medium"
    return "low"


def classification_table() -> str:
    """Markdown table of asset classes, targets and guidance."""
    lines = [
        "| Asset class | Target TVL cost | Guidance |",
        "|---|---|---|",
    ]
    for profile in PROFILES.values():
        lines.append(
            f"| {profile.label} | <{profile.target_max_cost:g}% | {profile.guidance} |"
        )
    lines += [
        "",
        "TVL cost bands: excellent <5%, good 5-10%, moderate 10-20%, high 20-30%, "
        "very high >30% (consider taper/reduce).",
        "Volume efficiency bands: excellent <1%, good 1-5%, moderate 5-10%, poor >10%.",
    ]
    return "\n".join(lines)
