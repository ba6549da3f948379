"""Helpers for the timestamped record lists the upstream APIs return."""
from __future__ import annotations

from typing import Any, Callable, Iterable


def to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def point_time(record: Any) -> int | None:
    """Timestamp of a ``[ts, value]`` pair or a ``{timestamp|date: ...}`` record."""
    if isinstance(record, (list, tuple)):
        return to_int(record[0]) if record else None
    if isinstance(record, dict):
        return to_int(record.get("timestamp") or record.get("date"))
    return None


def point_value(record: Any, field: str) -> float | None:
    if isinstance(record, (list, tuple)):
        return to_float(record[1]) if len(record) > 1 else None
    if isinstance(record, dict):
        return to_float(record.get(field))
    return None


def value_at(
    records: Iterable[Any] | None,
    end_ts: int,
    field: str,
    time_of: Callable[[Any], int | None] = point_time,
) -> float | None:
    """Value of the record closest to, but not after, ``end_ts``."""
    best = None
    best_ts = None
    for record in records or []:
        ts = time_of(record)
        if ts is None or ts > end_ts:
            continue
        if best_ts is None or ts > best_ts:
            best, best_ts = record, ts
    if best is None:
        return None
    return point_value(best, field)


def sum_in_range(
    records: Iterable[Any] | None,
    start_ts: int,
    end_ts: int,
    field: str,
) -> float | None:
    """Sum of the values inside ``[start_ts, end_ts]``; None when no point falls inside."""
    total = 0.0
    found = False
    for record in records or []:
        ts = point_time(record)
        if ts is None or not start_ts <= ts <= end_ts:
            continue
        value = point_value(record, field)
        if value is None:
            continue
        total += value
        found = True
    return total if found else None
