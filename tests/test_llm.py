"""Tests for the LLM caller: JSON repair, providers and retry."""
from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import json_response, mock_client
from merklscope.analysis.llm import LLMClient, grok_output_text, parse_json, repair_json, strip_fences
from merklscope.analytics.metrics import PoolRow
from merklscope.config import settings
from merklscope.errors import LLMError

REPORT = {
    "key_findings": ["Uniswap MON-USDC costs 60%"],
    "efficiency_issues": [
        {"pool_id": "uniswap-foundation-MON-USDC", "issue": "Too expensive", "severity": "HIGH", "recommendation": "Taper by 30%."}
    ],
    "wow_explanations": [],
    "recommendations": ["Shift budget to stables"],
}


def grok_payload(text: str) -> dict:
    return {
        "output": [
            {"type": "reasoning", "content": []},
            {"type": "message", "content": [{"type": "output_text", "text": text}]},
        ]
    }


@pytest.fixture
def grok_key(monkeypatch):
    monkeypatch.setattr(settings, "xai_api_key", "test-key")


# ── JSON clean-up ─────────────────────────────────────────────────────────────


def test_strip_fences():
    assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_fences('{"a": 1}') == '{"a": 1}'


def test_repair_trailing_commas():
    assert json.loads(repair_json('{"key_findings": ["a", "b",], "recommendations": [],}')) == {
        "key_findings": ["a", "b"],
        "recommendations": [],
    }


def test_repair_bare_keys():
    assert json.loads(repair_json('{key_findings: ["a"], recommendations: ["b"]}')) == {
        "key_findings": ["a"],
        "recommendations": ["b"],
    }


def test_repair_leaves_colons_inside_strings_alone():
    text = '{"key_findings": ["Kuru pool is costly, action: taper by 30%",], "recommendations": []}'
    assert json.loads(repair_json(text)) == {
        "key_findings": ["Kuru pool is costly, action: taper by 30%"],
        "recommendations": [],
    }


def test_repair_bare_keys_next_to_strings_with_colons():
    text = '{key_findings: ["note, ratio: 2:1", "a,]"], recommendations: ["b"],}'
    assert json.loads(repair_json(text)) == {
        "key_findings": ["note, ratio: 2:1", "a,]"],
        "recommendations": ["b"],
    }


def test_repair_truncated_reply():
    assert json.loads(repair_json('{"key_findings": ["a", "b')) == {"key_findings": ["a", "b"]}


def test_repair_prose_comments_smart_quotes_and_missing_commas():
    text = (
        "Here you go:\n{\n"
        "  // findings\n"
        "  “key_findings”: [“a”]\n"
        "  “recommendations”: []\n"
        "}\nThanks"
    )
    assert parse_json(text) == {"key_findings": ["a"], "recommendations": []}


def test_parse_json_rejects_non_object():
    with pytest.raises(ValueError):
        parse_json("[1, 2]")


def test_grok_output_text_skips_reasoning_items():
    assert grok_output_text(grok_payload("hello")) == "hello"
    with pytest.raises(ValueError):
        grok_output_text({"output": []})


# ── providers and retry ───────────────────────────────────────────────────────


async def test_grok_analysis(grok_key):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return json_response(grok_payload("```json\n" + json.dumps(REPORT) + "\n```"))

    async with mock_client(handler) as client:
        report = await LLMClient(client=client, provider="grok").analyze("prompt")

    assert report.key_findings == REPORT["key_findings"]
    assert report.efficiency_issues[0].severity == "high"
    sent = json.loads(requests[0].content)
    assert requests[0].url.path.endswith("/responses")
    assert requests[0].headers["authorization"] == "Bearer test-key"
    assert sent["model"] == settings.grok_model
    assert [m["role"] for m in sent["input"]] == ["system", "user"]


async def test_retries_after_http_error(grok_key):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(500, text="overloaded")
        return json_response(grok_payload(json.dumps(REPORT)))

    async with mock_client(handler) as client:
        report = await LLMClient(client=client, provider="grok").analyze("prompt")
    assert len(calls) == 2
    assert report.recommendations == ["Shift budget to stables"]


async def test_gives_up_with_llm_error(grok_key, monkeypatch):
    monkeypatch.setattr(settings, "llm_max_retries", 2)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return json_response(grok_payload("not json at all"))

    async with mock_client(handler) as client:
        with pytest.raises(LLMError):
            await LLMClient(client=client, provider="grok").analyze("prompt")
    assert len(calls) == 2


async def test_missing_key_fails_fast(monkeypatch):
    monkeypatch.setattr(settings, "xai_api_key", "")
    async with mock_client(lambda r: json_response({})) as client:
        with pytest.raises(LLMError):
            await LLMClient(client=client, provider="grok").analyze("prompt")


async def test_claude_provider():
    anthropic_client = SimpleNamespace(messages=SimpleNamespace(create=AsyncMock()))
    anthropic_client.messages.create.return_value = SimpleNamespace(
        content=[SimpleNamespace(type="text", text=json.dumps(REPORT))]
    )

    report = await LLMClient(anthropic_client=anthropic_client, provider="claude").analyze("prompt")

    assert report.key_findings == REPORT["key_findings"]
    kwargs = anthropic_client.messages.create.await_args.kwargs
    assert kwargs["model"] == settings.llm_model
    assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]


async def test_recommend_pool_never_raises(grok_key):
    pool = PoolRow("uniswap", "foundation", "Uniswap MON-USDC", 100.0, 50.0, 10_000.0, 30.0, 7)

    async with mock_client(lambda r: json_response(grok_payload('{"action": "Maintain", "notes": "Fine."}'))) as client:
        advice = await LLMClient(client=client, provider="grok").recommend_pool(pool)
    assert advice.action == "Maintain"

    async with mock_client(lambda r: httpx.Response(503)) as client:
        advice = await LLMClient(client=client, provider="grok").recommend_pool(pool)
    assert advice.action == ""
    assert advice.notes.startswith("AI recommendation unavailable")
