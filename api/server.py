"""
HTTP status surface for the transform and load daemons.

Sets up the application with:
- Lifespan logging (startup/shutdown)
- Health, readiness and stats routes
- Error handling

The app is served by uvicorn next to the record listener, on the same
event loop, when a status port is configured.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.dependencies import set_stats
from api.routes import health_router, stats_router
from core.config import settings
from core.logging import get_logger
from core.stats import ServiceStats


logger = get_logger(__name__)


def create_app(stats: ServiceStats) -> FastAPI:
    """
    Application factory.

    Args:
        stats: Counters of the daemon this app reports on
    """
    set_stats(stats)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Status API started", service=stats.service)
        yield
        logger.info("Status API stopped", service=stats.service)

    app = FastAPI(
        title="dolysis status",
        description="Health, readiness and counters of a dolysis pipeline daemon.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url=None,
    )

    app.include_router(health_router)
    app.include_router(stats_router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "message": str(exc) if settings.is_development else "An error occurred",
            },
        )

    return app


def status_server(stats: ServiceStats, host: Optional[str] = None, port: Optional[int] = None) -> uvicorn.Server:
    """Build (but do not start) a uvicorn server for the status app."""
    config = uvicorn.Config(
        create_app(stats),
        host=host or settings.status_host,
        port=port or settings.status_port or 8080,
        log_level=settings.log_level.lower(),
        access_log=False,
    )
    return uvicorn.Server(config)


async def run_with_status(
    main: Awaitable[None],
    stats: ServiceStats,
    host: Optional[str] = None,
    port: Optional[int] = None,
) -> None:
    """
    Run a daemon coroutine with the status API beside it.

    Whichever finishes first stops the other.
    """
    server = status_server(stats, host, port)
    main_task = asyncio.ensure_future(main)
    status_task = asyncio.create_task(server.serve())

    done, _ = await asyncio.wait({main_task, status_task}, return_when=asyncio.FIRST_COMPLETED)

    if main_task in done:
        server.should_exit = True
        await status_task
    else:
        main_task.cancel()
        try:
            await main_task
        except asyncio.CancelledError:
            logger.info("Daemon stopped with status API", service=stats.service)

    # Surface the daemon's own failure, if any
    if main_task.done() and not main_task.cancelled():
        main_task.result()
