"""Exceptions raised across merklscope."""
from __future__ import annotations


class QueryError(ValueError):
    """Raised for invalid query input (protocol list, dates)."""


class LLMError(Exception):
    """Raised when the LLM could not produce a usable analysis."""
