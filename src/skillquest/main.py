"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from skillquest.config import get_settings
from skillquest.database import close_db, get_session, init_db
from skillquest.health.router import router as health_router
from skillquest.middleware import setup_middleware
from skillquest.progression.router import router as progression_router
from skillquest.progression.seed import seed_level_thresholds
from skillquest.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    if settings.seed_level_thresholds:
        try:
            async for db in get_session():
                await seed_level_thresholds(db)
                break
        except SQLAlchemyError:
            logger.warning("Level threshold seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="SkillQuest Progression API",
        description="XP, levels, skills, streaks and challenges for SkillQuest learners",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(progression_router)

    return app


app = create_app()
