"""FastAPI application factory"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from randomconnect import __version__
from randomconnect.api.core.config import Settings, get_settings
from randomconnect.api.core.dependencies import (
    get_identity_directory,
    init_random_connection_service,
    peek_random_connection_service,
)
from randomconnect.api.core.logging import setup_logging
from randomconnect.api.routers import random_connection_router
from randomconnect.api.services import RandomConnectionService
from randomconnect.shared.database import DatabaseManager, PoolConfig
from randomconnect.shared.events import LocalEventGateway, PgNotifyGateway
from randomconnect.shared.migrations.runner import MigrationRunner
from randomconnect.shared.repositories import (
    ConnectionQueueRepository,
    MemoryConnectionQueue,
    MemoryRandomConnectionStore,
    RandomConnectionRepository,
)

logger = logging.getLogger(__name__)


async def _queue_sweep_loop(service: RandomConnectionService, interval: int) -> None:
    """Periodically drop expired queue entries"""
    while True:
        await asyncio.sleep(interval)
        try:
            await service.sweep_expired()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Queue sweep failed: {type(e).__name__}: {e}")


def build_service(
    settings: Settings, db_manager: DatabaseManager | None
) -> RandomConnectionService:
    """Wire stores and gateway for the configured backend"""
    entry_ttl = timedelta(minutes=settings.queue_entry_ttl_minutes)
    if db_manager is not None:
        pool = db_manager.pool
        queue = ConnectionQueueRepository(pool, entry_ttl=entry_ttl)
        sessions = RandomConnectionRepository(pool, transcript_limit=settings.transcript_limit)
        gateway = PgNotifyGateway(pool, channel=settings.event_channel)
    else:
        queue = MemoryConnectionQueue(entry_ttl=entry_ttl)
        sessions = MemoryRandomConnectionStore(transcript_limit=settings.transcript_limit)
        gateway = LocalEventGateway()
    return RandomConnectionService(
        queue,
        sessions,
        gateway,
        identities=get_identity_directory(),
        requeue_delay=settings.requeue_delay_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle startup and shutdown"""
    settings: Settings = app.state.settings
    app.state.start_time = time.time()
    logger.info(f"Starting random connection API ({settings.store_backend} backend)")

    db_manager: DatabaseManager | None = None
    if settings.uses_postgres:
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for the postgres store backend")
        db_manager = DatabaseManager(settings.database_url, PoolConfig(ssl=settings.database_ssl))
        await asyncio.wait_for(db_manager.connect(), timeout=30)
        if settings.run_migrations:
            await MigrationRunner(db_manager.pool).run_pending()
    app.state.db_manager = db_manager

    service = build_service(settings, db_manager)
    init_random_connection_service(service)
    sweep_task = asyncio.create_task(_queue_sweep_loop(service, settings.queue_sweep_interval))

    yield

    logger.info("Shutting down random connection API")
    sweep_task.cancel()
    try:
        await service.shutdown()
        init_random_connection_service(None)
        if db_manager is not None:
            await db_manager.disconnect()
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application"""
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="Random Connection API",
        description="Random one-on-one matchmaking by game preference",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings
    app.state.start_time = time.time()
    app.state.db_manager = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(random_connection_router.router)

    @app.get("/")
    async def root():
        return {"service": "random-connect-api", "status": "running"}

    @app.get("/health")
    async def health():
        """Liveness check (no DB dependency)"""
        return {"status": "healthy", "uptime_seconds": int(time.time() - app.state.start_time)}

    @app.get("/status")
    async def status():
        """Readiness: DB health and queue depth"""
        db_manager: DatabaseManager | None = app.state.db_manager
        db_ok = db_manager is not None and await db_manager.check_health()
        service = peek_random_connection_service()
        waiting = await service.queue_size() if service is not None else None
        return {
            "service": "random-connect-api",
            "version": __version__,
            "store_backend": settings.store_backend,
            "db_connected": db_ok,
            "waiting": waiting,
            "uptime_seconds": int(time.time() - app.state.start_time),
        }

    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        return "pong"

    logger.info("FastAPI application configured")
    return app
