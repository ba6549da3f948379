"""Tests for the MON price lookups."""
from __future__ import annotations

import httpx
import pytest

from conftest import mock_client, route
from merklscope.config import settings
from merklscope.sources.coingecko import CoinGeckoSource

PRICE_PATH = "/api/v3/simple/price"
RANGE_PATH = "/api/v3/coins/monad/market_chart/range"


async def test_spot_price():
    async with mock_client(route({PRICE_PATH: {"monad": {"usd": 0.031}}})) as client:
        assert await CoinGeckoSource(client).fetch_mon_price() == 0.031


@pytest.mark.parametrize(
    "answer",
    [httpx.Response(429), {"monad": {"usd": 0}}, {"bitcoin": {"usd": 1}}],
)
async def test_spot_price_falls_back_to_default(answer):
    async with mock_client(route({PRICE_PATH: answer})) as client:
        assert await CoinGeckoSource(client).fetch_mon_price() == settings.default_mon_price


async def test_twap_and_price_at():
    requests: list[httpx.Request] = []
    payload = {"prices": [[1, 0.02], [2, 0.03], [3, 0.04]]}
    async with mock_client(route({RANGE_PATH: payload}, requests)) as client:
        source = CoinGeckoSource(client)
        assert await source.fetch_twap(1_000_000) == pytest.approx(0.03)
        assert await source.fetch_price_at(1_000_000) == 0.02

    assert requests[0].url.params["from"] == str(1_000_000 - 7 * 86_400)
    assert requests[0].url.params["to"] == "1000000"


async def test_twap_unavailable():
    async with mock_client(route({})) as client:
        assert await CoinGeckoSource(client).fetch_twap(1_000_000) is None
