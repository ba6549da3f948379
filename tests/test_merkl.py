"""Tests for the Merkl paginated fetchers."""
from __future__ import annotations

from unittest.mock import AsyncMock

import httpx

from conftest import json_response, mock_client, route
from merklscope.config import settings
from merklscope.sources.base import extract_items
from merklscope.sources.merkl import MerklSource, merkl_search_url


def paged(pages: list[list[dict]], requests: list[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        page = int(request.url.params["page"])
        return json_response(pages[page] if page < len(pages) else [])
    return handler


async def test_campaigns_paginate_until_short_page(monkeypatch):
    monkeypatch.setattr(settings, "page_size", 2)
    requests: list[httpx.Request] = []
    pages = [[{"id": "c1"}, {"id": "c2"}], [{"id": "c3"}]]

    async with mock_client(paged(pages, requests)) as client:
        campaigns = await MerklSource(client).fetch_campaigns("uniswap")

    assert [c["id"] for c in campaigns] == ["c1", "c2", "c3"]
    assert len(requests) == 2
    params = requests[0].url.params
    assert params["chainId"] == "143"
    assert params["mainProtocolId"] == "uniswap"
    assert params["items"] == "2"


async def test_all_protocols_drops_filter():
    requests: list[httpx.Request] = []
    async with mock_client(paged([[{"id": "c1"}]], requests)) as client:
        await MerklSource(client).fetch_campaigns("all")
    assert "mainProtocolId" not in requests[0].url.params


async def test_http_error_keeps_collected_pages(monkeypatch):
    monkeypatch.setattr(settings, "page_size", 1)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["page"] == "0":
            return json_response([{"id": "o1"}])
        return httpx.Response(502)

    async with mock_client(handler) as client:
        opportunities = await MerklSource(client).fetch_opportunities()
    assert opportunities == [{"id": "o1"}]


async def test_cached_pages_skip_http(monkeypatch):
    monkeypatch.setattr(settings, "page_size", 1)
    store = AsyncMock()
    store.get_opportunities.side_effect = lambda page: [{"id": "cached"}] if page == 0 else None
    requests: list[httpx.Request] = []

    async with mock_client(paged([[], [{"id": "fresh"}]], requests)) as client:
        opportunities = await MerklSource(client, cache=store).fetch_opportunities()

    assert [o["id"] for o in opportunities] == ["cached", "fresh"]
    assert [r.url.params["page"] for r in requests] == ["1", "2"]
    store.set_opportunities.assert_awaited_once_with(1, [{"id": "fresh"}])


async def test_metrics_failure_returns_empty_records():
    async with mock_client(route({})) as client:
        metrics = await MerklSource(client).fetch_campaign_metrics("c1")
    assert metrics == {"dailyRewardsRecords": [], "aprRecords": [], "tvlRecords": []}


async def test_detail_lookup_failure_returns_none():
    async with mock_client(route({})) as client:
        assert await MerklSource(client).fetch_campaign("missing") is None


def test_extract_items_shapes():
    assert extract_items([{"a": 1}], "campaigns") == [{"a": 1}]
    assert extract_items({"data": [{"a": 1}]}, "campaigns") == [{"a": 1}]
    assert extract_items({"campaigns": [{"a": 1}]}, "campaigns") == [{"a": 1}]
    assert extract_items({"unexpected": 1}, "campaigns") == []


def test_search_url_uses_protocol_and_chain():
    url = merkl_search_url({"chain": {"name": "Monad"}, "protocol": {"id": "pancake-swap"}})
    assert url == "https://app.merkl.xyz/chains/monad?search=pancake-swap&status=LIVE%2CSOON%2CPAST"
    assert merkl_search_url({"protocol": {"id": "uniswap"}}) is None
