"""FastAPI server — owns the checker and drives its schedule."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from meshprobe.api.routes import router
from meshprobe.config import settings
from meshprobe.servicecheck.checker import Checker

logger = logging.getLogger(__name__)


def _log_schedule_exit(scheduled: asyncio.Future[None]) -> None:
    """Surface a crashed schedule right away instead of at shutdown."""
    if scheduled.cancelled():
        return
    exc = scheduled.exception()
    if exc is not None:
        logger.error("Scheduled checks died; /alive keeps serving the last result", exc_info=exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start scheduled checks on startup, stop them on shutdown."""
    if settings.check_interval <= 0:
        raise ValueError(f"check_interval must be positive, got {settings.check_interval}")

    checker = Checker(settings)
    app.state.checker = checker

    loop = asyncio.get_running_loop()
    scheduled = loop.run_in_executor(None, checker.run_scheduled, settings.check_interval)
    scheduled.add_done_callback(_log_schedule_exit)
    logger.info(
        "meshprobe started — namespace=%s filter=%r limit=%d",
        settings.namespace, settings.neighbour_filter, settings.neighbour_limit,
    )

    try:
        yield
    finally:
        checker.stop_scheduled()
        await scheduled
        checker.close()
        logger.info("meshprobe stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="meshprobe",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
