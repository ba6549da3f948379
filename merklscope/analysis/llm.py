"""LLM caller: Grok (xAI ``/responses``) or Claude, with JSON repair and retry."""
from __future__ import annotations

import asyncio
import json
import logging
import re

import anthropic
import httpx
from anthropic import AsyncAnthropic

from merklscope.analysis.prompt import POOL_SYSTEM_PROMPT, SYSTEM_PROMPT, build_pool_prompt
from merklscope.analysis.report import EfficiencyReport, PoolAdvice
from merklscope.analytics.metrics import PoolRow
from merklscope.config import settings
from merklscope.errors import LLMError

logger = logging.getLogger(__name__)

POOL_MAX_TOKENS = 500
_SMART_QUOTES = {"\u201c": '"', "\u201d": '"', "\u2018": "'", "\u2019": "'"}
_CLOSERS = {"{": "}", "[": "]"}

_FENCE = re.compile(r"^\s*```[a-zA-Z]*\s*\n?|\n?\s*```\s*$")
_LINE_COMMENT = re.compile(r'(^|[^:"\\])//[^\n"]*$', re.MULTILINE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_MISSING_COMMA = re.compile(r'(["}\]\d]|true|false|null)(\s*\n\s*)(["{\[])')
_ADJACENT_OBJECTS = re.compile(r"}\s*{")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)(\s*:)")
_STRING = re.compile(r'("(?:[^"\\\n]|\\.)*")')


# ── JSON clean-up ─────────────────────────────────────────────────────────────


def strip_fences(text: str) -> str:
    """Drop a leading ```json fence and a trailing ``` fence."""
    return _FENCE.sub("", text.strip()).strip()


def _outside_strings(pattern: re.Pattern, repl: str, text: str) -> str:
    """``pattern.sub`` applied only between string literals."""
    # split() with a capturing group puts the literals at odd indexes
    parts = _STRING.split(text)
    return "".join(part if i % 2 else pattern.sub(repl, part) for i, part in enumerate(parts))


def _balance(text: str) -> str:
    """Close a string or brackets left open by a truncated reply."""
    stack: list[str] = []
    in_string = escaped = False
    for ch in text:
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = in_string
        elif ch == '"':
            in_string = not in_string
        elif not in_string and ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif not in_string and ch in "}]" and stack and stack[-1] == ch:
            stack.pop()

    if in_string:
        text += '"'
    text = text.rstrip().rstrip(",")
    if text.endswith(":"):
        text += " null"
    return text + "".join(reversed(stack))


def repair_json(text: str) -> str:
    start = text.find("{")
    if start >= 0:
        end = text.rfind("}")
        text = text[start:end + 1] if end > start else text[start:]

    for smart, plain in _SMART_QUOTES.items():
        text = text.replace(smart, plain)
    text = _LINE_COMMENT.sub(r"\1", text)
    text = _outside_strings(_BARE_KEY, r'\1"\2"\3', text)
    text = _MISSING_COMMA.sub(r"\1,\2\3", text)
    text = _outside_strings(_ADJACENT_OBJECTS, "},{", text)
    text = _outside_strings(_TRAILING_COMMA, r"\1", text)
    text = _balance(text)
    return _outside_strings(_TRAILING_COMMA, r"\1", text)


def parse_json(text: str) -> dict:
    """Parse an LLM reply as a JSON object, repairing it if needed.

    Raises ``ValueError`` when even the repaired text is not an object.
    """
    cleaned = strip_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.debug("Reply is not valid JSON, attempting repair")
        data = json.loads(repair_json(cleaned))
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def grok_output_text(data: dict) -> str:
    """Text of the first ``output_text`` item in an xAI ``/responses`` payload."""
    for output in data.get("output") or []:
        content = output.get("content")
        if isinstance(content, str):
            return content
        for item in content or []:
            if item.get("type") == "output_text" and item.get("text"):
                return item["text"]
    raise ValueError("No output_text content found in Grok response")


# ── client ────────────────────────────────────────────────────────────────────


class LLMClient:
    """Sends prompts to the configured provider and validates the replies."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        anthropic_client: AsyncAnthropic | None = None,
        provider: str | None = None,
    ) -> None:
        self.provider = provider or settings.resolved_provider
        self._client = client
        self._anthropic = anthropic_client

    async def _call_grok(self, prompt: str, system: str) -> str:
        if not settings.xai_api_key:
            raise LLMError("XAI_API_KEY or GROK_API_KEY is required for the Grok provider")
        payload = {
            "model": settings.grok_model,
            "input": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        }
        headers = {"Authorization": f"Bearer {settings.xai_api_key}"}
        url = f"{settings.xai_api_base}/responses"

        if self._client is not None:
            resp = await self._client.post(url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=None) as client:
                resp = await client.post(url, json=payload, headers=headers)
        resp.raise_for_status()
        return grok_output_text(resp.json())

    async def _call_claude(self, prompt: str, system: str, max_tokens: int) -> str:
        if self._anthropic is None:
            if not settings.anthropic_api_key:
                raise LLMError("ANTHROPIC_API_KEY is required for the Claude provider")
            self._anthropic = AsyncAnthropic(api_key=settings.anthropic_api_key)
        message = await self._anthropic.messages.create(
            model=settings.llm_model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(block.text for block in message.content if block.type == "text")

    async def complete(self, prompt: str, system: str = SYSTEM_PROMPT, max_tokens: int | None = None) -> str:
        if self.provider == "grok":
            return await self._call_grok(prompt, system)
        return await self._call_claude(prompt, system, max_tokens or settings.llm_max_tokens)

    async def analyze(self, prompt: str) -> EfficiencyReport:
        """Run the efficiency analysis, retrying with exponential backoff."""
        attempts = max(1, settings.llm_max_retries)
        last_exc: Exception | None = None
        for attempt in range(attempts):
            try:
                text = await self.complete(prompt)
                report = EfficiencyReport.model_validate(parse_json(text))
                logger.info(
                    "%s analysis: %d findings, %d issues",
                    self.provider, len(report.key_findings), len(report.efficiency_issues),
                )
                return report
            except (httpx.HTTPError, anthropic.APIError, ValueError) as exc:
                last_exc = exc
                logger.warning(
                    "%s analysis attempt %d/%d failed: %s", self.provider, attempt + 1, attempts, exc
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(settings.llm_backoff_seconds * 2 ** attempt)
        raise LLMError(f"AI analysis failed after {attempts} attempts: {last_exc}") from last_exc

    async def recommend_pool(self, pool: PoolRow) -> PoolAdvice:
        """Action and notes for one pool; never raises."""
        try:
            text = await self.complete(build_pool_prompt(pool), POOL_SYSTEM_PROMPT, POOL_MAX_TOKENS)
            return PoolAdvice.model_validate(parse_json(text))
        except (LLMError, httpx.HTTPError, anthropic.APIError, ValueError) as exc:
            logger.warning("Pool recommendation for %s failed: %s", pool.pool_id, exc)
            return PoolAdvice(notes=f"AI recommendation unavailable: {exc}")
