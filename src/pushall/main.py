"""FastAPI application factory.

Learn: create_app() returns a configured FastAPI instance. The lifespan
owns process-wide state: logging sinks, the channel registry and the
optional idle-channel sweeper. Routes: POST /push, GET /health and the
/ws WebSocket.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pushall import __version__
from pushall.api import api_router
from pushall.config import settings
from pushall.log import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup. configure_logging()
    opens the log file here, so an unwritable log path aborts startup
    instead of failing on the first push.
    """
    configure_logging(settings.log_file, settings.log_level)

    from pushall.realtime.registry import ChannelSweeper, close_registry, init_registry

    registry = init_registry(capacity=settings.channel_capacity)
    logger.info(
        "pushall.starting",
        version=__version__,
        environment=settings.environment,
        host=settings.host,
        port=settings.port,
    )

    sweeper = None
    sweeper_task = None
    if settings.channel_idle_ttl_seconds is not None:
        sweeper = ChannelSweeper(
            registry,
            ttl_seconds=settings.channel_idle_ttl_seconds,
            poll_interval=settings.channel_sweep_interval_seconds,
        )
        sweeper_task = asyncio.create_task(sweeper.run_loop())

    yield

    logger.info("pushall.shutdown")

    if sweeper is not None:
        sweeper.stop()
        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            pass

    # Wakes every open session so it can close its socket
    await close_registry()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="pushall",
        description="Token-keyed push notification relay",
        version=__version__,
        lifespan=lifespan,
    )

    from pushall.middleware.request_id import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from pushall.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: pushall.main:app)
app = create_app()
