"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from loopeco.config import get_settings
from loopeco.database import close_db, get_session_factory, init_db
from loopeco.economy.router import router as economy_router
from loopeco.economy.seed import seed_gift_catalog
from loopeco.health.router import router as health_router
from loopeco.middleware import setup_middleware
from loopeco.progression.router import router as progression_router
from loopeco.progression.seed import seed_achievements
from loopeco.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Seed catalog and achievement definitions (idempotent)
    try:
        async with get_session_factory()() as db:
            await seed_gift_catalog(db)
            await seed_achievements(db)
    except Exception:
        logger.warning("Seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Loop Economy API",
        description="Coins, gifts, XP, achievements and daily challenges for the Loop platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(economy_router)
    app.include_router(progression_router)

    return app


app = create_app()
