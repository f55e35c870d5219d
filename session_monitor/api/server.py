"""FastAPI server for the session monitor."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from session_monitor.api.routes import router
from session_monitor.usage.monitor import UsageMonitor

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the monitor and start cache refresh loops."""
    monitor = getattr(app.state, "monitor", None) or UsageMonitor()
    app.state.monitor = monitor
    logger.info("Monitoring %s", monitor.claude_dir)

    scheduler = monitor.scheduler()
    app.state.scheduler = scheduler
    try:
        await scheduler.start()
    except Exception:
        logger.exception("Refresh scheduler failed to start")

    yield

    # Shutdown
    await scheduler.stop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Claude Session Monitor",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    app.include_router(router, prefix="/api")

    return app


app = create_app()
