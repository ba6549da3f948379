"""DeFiLlama client: protocol TVL on Monad and DEX volume.

TVL comes from the Monad series of ``/protocol/{slug}`` at the window end,
falling back to the current chain TVL when no history is available. DEX
volume is summed from the ``totalDataChart`` of ``/summary/dexs/{slug}``.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import date

import httpx

from merklscope.analytics.metrics import DAY_SECONDS, is_historical, window_bounds
from merklscope.analytics.series import sum_in_range, to_float, value_at
from merklscope.config import settings
from merklscope.sources.base import ApiSource

logger = logging.getLogger(__name__)

# Merkl protocol id -> DeFiLlama slug
PROTOCOL_SLUGS = {
    "clober": "clober",
    "curvance": "curvance",
    "gearbox": "gearbox",
    "kuru": "kuru",
    "morpho": "morpho",
    "euler": "euler",
    "pancake-swap": "pancakeswap-v3",
    "uniswap": "uniswap",
    "monday-trade": "monday-trade",
    "renzo": "renzo",
    "upshift": "upshift",
    "townsquare": "townsquare",
}


@dataclass
class TvlResult:
    tvl: float | None = None
    historical: bool = False


@dataclass
class DexVolume:
    volume_in_range: float | None = None
    volume_24h: float | None = None
    volume_7d: float | None = None
    volume_30d: float | None = None
    historical: bool = False

    @property
    def best(self) -> float | None:
        """Exact-window volume, else the 7d then 30d figures."""
        for value in (self.volume_in_range, self.volume_7d, self.volume_30d):
            if value is not None:
                return value
        return None

    @classmethod
    def from_dict(cls, data: dict | None) -> "DexVolume":
        """Build from a dict, ignoring keys this record does not have."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class ProtocolMetrics:
    tvl: dict[str, float | None] = field(default_factory=dict)
    tvl_metadata: dict[str, dict] = field(default_factory=dict)
    dex_volume: dict[str, DexVolume] = field(default_factory=dict)

    def volume_for(self, protocol: str) -> float | None:
        vol = self.dex_volume.get(protocol.lower())
        return vol.best if vol else None

    def to_dict(self) -> dict:
        return {
            "success": True,
            "tvl_data": self.tvl,
            "tvl_metadata": self.tvl_metadata,
            "dex_volume_data": {k: asdict(v) for k, v in self.dex_volume.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProtocolMetrics":
        return cls(
            tvl=dict(data.get("tvl_data") or {}),
            tvl_metadata=dict(data.get("tvl_metadata") or {}),
            dex_volume={
                k: DexVolume.from_dict(v) for k, v in (data.get("dex_volume_data") or {}).items()
            },
        )


def _chain_entry(mapping: dict | None, chain: str):
    if not isinstance(mapping, dict):
        return None
    for key, value in mapping.items():
        if key.lower() == chain.lower():
            return value
    return None


class DefiLlamaSource(ApiSource):
    """Reads protocol TVL and DEX volume from api.llama.fi."""

    name = "defillama"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.base_url = settings.defillama_api_base
        self.chain = settings.chain_name
        self.rate_limit = settings.defillama_rate_limit_seconds

    async def fetch_protocol_tvl(self, slug: str, end: date) -> TvlResult:
        cached = await self.cache.get_tvl(slug, end.isoformat())
        if cached:
            return TvlResult(**cached)

        _, end_ts = window_bounds(end, end)
        try:
            data = await self.get_json(f"/protocol/{slug}")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("DeFiLlama TVL for %s failed: %s", slug, exc)
            return TvlResult()

        result = self._tvl_from_protocol(data, end_ts)
        if result.tvl is not None:
            await self.cache.set_tvl(
                slug, end.isoformat(), asdict(result), historical=is_historical(end)
            )
        return result

    def _tvl_from_protocol(self, data: dict, end_ts: int) -> TvlResult:
        chain_series = _chain_entry(data.get("chainTvls"), self.chain)
        if isinstance(chain_series, dict):
            tvl = value_at(chain_series.get("tvl"), end_ts, "totalLiquidityUSD")
            if tvl is not None:
                return TvlResult(tvl, historical=True)

        current = data.get("currentChainTvls")
        if isinstance(current, dict):
            tvl = to_float(_chain_entry(current, self.chain))
            if tvl is not None:
                return TvlResult(tvl)
            # Single-chain protocols report their total under another key
            chains = data.get("chains") or []
            if len(chains) == 1:
                return TvlResult(to_float(data.get("tvl")))
        return TvlResult()

    async def fetch_dex_volume(self, slug: str, start: date, end: date) -> DexVolume:
        cached = await self.cache.get_volume(slug, start.isoformat(), end.isoformat())
        if cached:
            return DexVolume.from_dict(cached)

        start_ts, end_ts = window_bounds(start, end)
        try:
            data = await self.get_json(
                f"/summary/dexs/{slug}",
                {"excludeTotalDataChart": "false", "excludeTotalDataChartBreakdown": "true"},
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("DeFiLlama volume for %s failed: %s", slug, exc)
            return DexVolume()

        chart = data.get("totalDataChart") or []
        volume = DexVolume(volume_24h=to_float(data.get("total24h")))
        if chart:
            volume.volume_in_range = sum_in_range(chart, start_ts, end_ts, "volume")
            volume.volume_7d = sum_in_range(chart, end_ts - 7 * DAY_SECONDS, end_ts, "volume")
            volume.volume_30d = sum_in_range(chart, end_ts - 30 * DAY_SECONDS, end_ts, "volume")
            volume.historical = volume.best is not None

        if volume.historical and is_historical(end):
            await self.cache.set_volume(slug, start.isoformat(), end.isoformat(), asdict(volume))
        return volume

    async def fetch_protocols(self, protocols: list[str], start: date, end: date) -> ProtocolMetrics:
        """TVL and volume for each protocol; protocols DeFiLlama lacks get None."""
        metrics = ProtocolMetrics()
        for protocol in protocols:
            key = protocol.lower()
            slug = PROTOCOL_SLUGS.get(key)
            if slug is None:
                metrics.tvl[key] = None
                metrics.tvl_metadata[key] = {"historical": False}
                metrics.dex_volume[key] = DexVolume()
                continue

            tvl, volume = await asyncio.gather(
                self.fetch_protocol_tvl(slug, end),
                self.fetch_dex_volume(slug, start, end),
            )
            metrics.tvl[key] = tvl.tvl
            metrics.tvl_metadata[key] = {"historical": tvl.historical}
            metrics.dex_volume[key] = volume
            await asyncio.sleep(self.rate_limit)
        return metrics
