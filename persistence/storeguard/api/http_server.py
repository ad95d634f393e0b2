"""
FastAPI application factory for the health endpoints.

This module creates the app with:
- Liveness at /health
- The monitoring payload at /api/health/database
- Periodic snapshotter lifecycle management (lifespan)

Both endpoints answer 200 even when the boot ended DEGRADED; the payload
carries the status.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request

from .._version import __version__
from ..health.reporter import HealthReport
from ..runtime import GuardRuntime
from .config import Settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage periodic snapshotter and live handle lifecycle."""
    runtime: GuardRuntime = app.state.runtime
    snapshotter = None
    task = None

    if runtime.snapshots_scheduled:
        snapshotter = runtime.snapshotter()
        task = asyncio.create_task(snapshotter.start())
    else:
        logger.info(
            "Periodic snapshots not scheduled",
            extra={
                "boot_state": runtime.boot_result.state.value,
                "schedule_enabled": runtime.config.backup.schedule_enabled,
                "run_mode": runtime.config.run_mode.value,
            },
        )
    app.state.snapshotter = snapshotter

    yield

    if snapshotter is not None and task is not None:
        await snapshotter.stop()
        await asyncio.gather(task, return_exceptions=True)
    runtime.close()


def create_app(runtime: GuardRuntime, settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings()
    reporter = runtime.health_reporter(settings.backup_max_age_hours)

    app = FastAPI(
        title="storeguard",
        description="Health of the guarded SQLite database and its snapshots.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.state.settings = settings
    app.state.reporter = reporter

    @app.get("/health")
    async def health(request: Request):
        boot = request.app.state.runtime.boot_result
        return {"status": "ok", "service": "storeguard", "boot_state": boot.state.value}

    # Blocking file and SQLite I/O; runs in the threadpool.
    @app.get("/api/health/database", response_model=HealthReport)
    def database_health(request: Request) -> HealthReport:
        return request.app.state.reporter.report()

    return app
