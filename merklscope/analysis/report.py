"""Schema for the LLM's efficiency report.

Validating the parsed JSON against these models keeps malformed or
off-schema replies out of the dashboard cache.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator


class EfficiencyIssue(BaseModel):
    pool_id: str
    issue: str = ""
    severity: Literal["high", "medium", "low"] = "low"
    recommendation: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def lower_severity(cls, v):
        v = str(v or "low").strip().lower()
        return v if v in ("high", "medium", "low") else "low"


class WowExplanation(BaseModel):
    pool_id: str
    change: float | None = None
    explanation: str = ""
    likely_cause: str = "other"


class EfficiencyReport(BaseModel):
    key_findings: list[str] = Field(default_factory=list)
    efficiency_issues: list[EfficiencyIssue] = Field(default_factory=list)
    wow_explanations: list[WowExplanation] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class PoolAdvice(BaseModel):
    """Single-pool recommendation used by the CSV export."""

    action: str = ""
    notes: str = ""
