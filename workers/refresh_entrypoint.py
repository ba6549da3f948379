"""Refresh entrypoint: one dashboard refresh for an external cron.

Optional REFRESH_DATE (YYYY-MM-DD) pretends "today" is that day. Prints a
JSON summary to stdout, then exits. Exit code 0 = success, 1 = failure.
"""
from __future__ import annotations

import asyncio
import json
import os
import sys


def get_today():
    raw = os.environ.get("REFRESH_DATE")
    if not raw:
        return None
    from merklscope.analytics.metrics import parse_day
    from merklscope.errors import QueryError

    try:
        return parse_day(raw)
    except QueryError as exc:
        print(json.dumps({"success": False, "error": str(exc)}))
        sys.exit(1)


async def main() -> None:
    from merklscope.cache import cache
    from merklscope.refresh import run_refresh

    try:
        summary = await run_refresh(today=get_today())
        result = {"success": True, **summary.to_dict()}
    except Exception as exc:
        result = {"success": False, "error": str(exc)}
    finally:
        await cache.close()

    print(json.dumps(result))
    sys.exit(0 if result.get("success") else 1)


if __name__ == "__main__":
    asyncio.run(main())
