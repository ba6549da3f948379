"""merklscope entrypoint.

Starts:
  1. The FastAPI server (JSON API + dashboard page)
  2. The daily dashboard refresh loop
"""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import uvicorn
from fastapi import FastAPI
from rich.logging import RichHandler

from merklscope.api import router as api_router
from merklscope.cache import cache
from merklscope.config import settings
from merklscope.dashboard import router as dashboard_router
from merklscope.refresh import run_refresh

# ── logging ───────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("merklscope")


# ── FastAPI app ───────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("merklscope server starting")
    yield
    await cache.close()
    logger.info("merklscope server stopping")


app = FastAPI(
    title="merklscope",
    description="Merkl incentive efficiency on Monad",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(api_router)
app.include_router(dashboard_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}


# ── scheduling ────────────────────────────────────────────────────────────────


def seconds_until_refresh(now: datetime | None = None) -> float:
    """Seconds until the next ``refresh_hour_utc`` o'clock."""
    now = now or datetime.now(timezone.utc)
    target = now.replace(hour=settings.refresh_hour_utc, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def run_scheduler() -> None:
    """Refresh the dashboard once a day, forever."""
    while True:
        delay = seconds_until_refresh()
        logger.info("Next dashboard refresh in %.0f min", delay / 60)
        await asyncio.sleep(delay)
        try:
            await run_refresh()
        except Exception as exc:
            logger.exception("Dashboard refresh failed: %s", exc)


async def run_server() -> None:
    config = uvicorn.Config(
        app,
        host=settings.server_host,
        port=settings.server_port,
        log_level="warning",
    )
    server = uvicorn.Server(config)
    await server.serve()


async def main() -> None:
    logger.info("=" * 60)
    logger.info("  merklscope v0.1.0")
    logger.info("  Chain:          %s (%d)", settings.chain_name, settings.chain_id)
    logger.info("  LLM provider:   %s", settings.resolved_provider)
    logger.info("  Refresh hour:   %02d:00 UTC", settings.refresh_hour_utc)
    logger.info("  Listening on:   %s:%d", settings.server_host, settings.server_port)
    logger.info("=" * 60)

    await cache.connect()

    tasks = [
        asyncio.create_task(run_server(), name="http-server"),
        asyncio.create_task(run_scheduler(), name="daily-refresh"),
    ]

    # Graceful shutdown on SIGINT/SIGTERM
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: [t.cancel() for t in tasks])

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Shutting down gracefully...")
    finally:
        for task in tasks:
            task.cancel()
        await cache.close()
        logger.info("Goodbye.")


def cli() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    cli()
