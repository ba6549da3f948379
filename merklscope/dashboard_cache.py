"""Default dashboard snapshot shared by the cron refresh and the public API.

The latest snapshot lives in process memory and is mirrored to Redis under
``dashboard:{date}`` so a restarted process can serve it without a refresh.
"""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from merklscope.cache import RedisCache, cache as default_cache

logger = logging.getLogger(__name__)


@dataclass
class DashboardSnapshot:
    start_date: str
    end_date: str
    mon_price: float
    protocols: list[str]
    results: list[dict]
    previous_week_results: list[dict]
    protocol_tvl: dict[str, Any] = field(default_factory=dict)
    protocol_tvl_metadata: dict[str, Any] = field(default_factory=dict)
    protocol_dex_volume: dict[str, Any] = field(default_factory=dict)
    previous_week_protocol_tvl: dict[str, Any] = field(default_factory=dict)
    previous_week_protocol_dex_volume: dict[str, Any] = field(default_factory=dict)
    pools: list[dict] = field(default_factory=list)
    ai_analysis: dict | None = None
    timestamp: float = field(default_factory=time.time)
    cache_date: str = ""

    def __post_init__(self) -> None:
        if not self.cache_date:
            self.cache_date = self.end_date

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "DashboardSnapshot":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


# In-memory snapshot for this process
_snapshot: DashboardSnapshot | None = None


def is_valid(target_date: str) -> bool:
    return _snapshot is not None and _snapshot.cache_date == target_date


async def get_snapshot(target_date: str, store: RedisCache | None = None) -> DashboardSnapshot | None:
    """Snapshot for ``target_date`` from memory, else from Redis."""
    global _snapshot
    if is_valid(target_date):
        return _snapshot

    data = await (store or default_cache).get_dashboard(target_date)
    if not isinstance(data, dict):
        return None
    try:
        snapshot = DashboardSnapshot.from_dict(data)
    except TypeError as exc:
        logger.warning("Discarding malformed dashboard snapshot for %s: %s", target_date, exc)
        return None
    logger.debug("Dashboard snapshot for %s restored from Redis", target_date)
    _snapshot = snapshot
    return snapshot


async def set_snapshot(snapshot: DashboardSnapshot, store: RedisCache | None = None) -> bool:
    """Replace the in-memory snapshot; returns whether Redis stored it too."""
    global _snapshot
    _snapshot = snapshot
    return await (store or default_cache).set_dashboard(snapshot.cache_date, snapshot.to_dict())


def clear() -> None:
    global _snapshot
    _snapshot = None
