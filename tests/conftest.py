"""Shared fixtures: offline Redis, mocked HTTP and zero rate limits."""
from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from merklscope import dashboard_cache
from merklscope.cache import RedisCache
from merklscope.config import settings


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """No sleeping, no secrets and no Redis in tests."""
    monkeypatch.setattr(settings, "rate_limit_seconds", 0)
    monkeypatch.setattr(settings, "defillama_rate_limit_seconds", 0)
    monkeypatch.setattr(settings, "llm_backoff_seconds", 0)
    monkeypatch.setattr(settings, "cron_secret", "")
    monkeypatch.setattr(settings, "page_size", 100)


@pytest.fixture(autouse=True)
def offline_cache(monkeypatch) -> RedisCache:
    """A disabled cache wired in wherever the process-wide one is used."""
    store = RedisCache(redis_url="")
    monkeypatch.setattr("merklscope.sources.base.default_cache", store)
    monkeypatch.setattr("merklscope.dashboard_cache.default_cache", store)
    dashboard_cache.clear()
    yield store
    dashboard_cache.clear()


def json_response(data: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(data).encode(), headers={"content-type": "application/json"})


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def route(routes: dict[str, Any], requests: list[httpx.Request] | None = None):
    """Handler answering by URL path; unknown paths get a 404.

    A route value may be a payload, an ``httpx.Response`` or a callable
    taking the request.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        answer = routes.get(request.url.path)
        if answer is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(answer):
            answer = answer(request)
        if isinstance(answer, httpx.Response):
            return answer
        return json_response(answer)

    return handler
