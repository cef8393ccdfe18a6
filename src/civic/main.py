"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from civic.achievements.router import router as achievements_router
from civic.config import get_settings
from civic.database import close_db, init_db
from civic.health.router import router as health_router
from civic.middleware import setup_middleware
from civic.quests.router import router as quests_router
from civic.redis_client import close_redis, init_redis
from civic.statistics.router import router as statistics_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings)
    if settings.events_enabled:
        await init_redis(settings.redis_url)
    logger.info("startup", environment=settings.environment, events_enabled=settings.events_enabled)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Civic Quest API",
        description="Admin API for charity quests, participation, and achievements",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(quests_router)
    app.include_router(achievements_router)
    app.include_router(statistics_router)

    return app


app = create_app()
