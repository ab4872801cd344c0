"""Shared test fixtures.

Tests run against a throwaway SQLite file (aiosqlite) with the ORM metadata
created directly, so no Postgres or Redis is needed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from skillquest.config import Settings
from skillquest.db.base import Base
from skillquest.db.models import Challenge, Lesson, LevelThreshold, Profile, Skill, UserChallenge
from skillquest.dependencies import get_db, get_redis_dep
from skillquest.progression.context import ProgressionContext
from skillquest.progression.engine import ProgressionEngine
from skillquest.progression.events import EventPublisher

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
TODAY = FIXED_NOW.date()

# Scenario table: 0 -> L1 bronze, 100 -> L2 bronze, 250 -> L3 silver
THRESHOLDS = [
    {"level": 1, "min_xp": 0, "tier": "bronze"},
    {"level": 2, "min_xp": 100, "tier": "bronze"},
    {"level": 3, "min_xp": 250, "tier": "silver"},
]


def make_context(user_id: str = "user-1", now: datetime = FIXED_NOW) -> ProgressionContext:
    return ProgressionContext(user_id=user_id, session_id="session-test", clock=lambda: now)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="",
        conflict_max_attempts=3,
        conflict_backoff_seconds=0.0,
        seed_level_thresholds=False,
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis_mock() -> AsyncMock:
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest_asyncio.fixture
async def engine(db_session: AsyncSession, settings: Settings, redis_mock: AsyncMock) -> ProgressionEngine:
    """Engine over a seeded catalog: scenario thresholds, three skills, two lessons."""
    await seed_catalog(
        db_session,
        thresholds=THRESHOLDS,
        skills=[("basics", 1), ("grammar", 2), ("fluency", 3)],
        lessons=[("lesson-1", 20), ("lesson-2", 50)],
    )
    publisher = EventPublisher(redis_mock, settings.event_channel_prefix)
    return ProgressionEngine(db_session, publisher=publisher, settings=settings)


@pytest_asyncio.fixture
async def user(engine: ProgressionEngine) -> ProgressionContext:
    ctx = make_context()
    await engine.create_profile(ctx, "learner")
    return ctx


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


async def seed_catalog(
    db: AsyncSession,
    thresholds: list[dict] | None = None,
    skills: list[tuple[str, int]] | None = None,
    lessons: list[tuple[str, int]] | None = None,
) -> None:
    for row in thresholds or []:
        db.add(LevelThreshold(**row))
    for skill_id, required_level in skills or []:
        db.add(Skill(id=skill_id, name=skill_id.title(), required_level=required_level, created_at=FIXED_NOW))
    for lesson_id, xp_reward in lessons or []:
        db.add(Lesson(id=lesson_id, title=lesson_id, xp_reward=xp_reward, is_active=True, created_at=FIXED_NOW))
    await db.commit()


async def add_challenge(
    db: AsyncSession,
    challenge_id: str,
    type: str = "daily",
    target_value: int = 3,
    xp_reward: int = 30,
    start_date: date | None = None,
    end_date: date | None = None,
    is_active: bool = True,
) -> None:
    db.add(
        Challenge(
            id=challenge_id,
            title=challenge_id,
            type=type,
            target_value=target_value,
            xp_reward=xp_reward,
            start_date=start_date,
            end_date=end_date,
            is_active=is_active,
            created_at=FIXED_NOW,
        )
    )
    await db.commit()


async def set_challenge_progress(db: AsyncSession, user_id: str, challenge_id: str, progress: int) -> None:
    db.add(UserChallenge(user_id=user_id, challenge_id=challenge_id, current_progress=progress, created_at=FIXED_NOW))
    await db.commit()


async def set_profile(db: AsyncSession, user_id: str, **values: object) -> None:
    await db.execute(update(Profile).where(Profile.id == user_id).values(**values))
    await db.commit()


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(engine: ProgressionEngine, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the app with DB/Redis dependencies pointed at the test database."""
    from skillquest.main import create_app

    app = create_app()

    async def _test_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def _no_redis() -> AsyncGenerator[None, None]:
        yield None

    app.dependency_overrides[get_db] = _test_db
    app.dependency_overrides[get_redis_dep] = _no_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
