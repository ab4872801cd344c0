"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from skillquest.config import get_settings
from skillquest.database import get_session as _get_session
from skillquest.progression.context import ProgressionContext, new_session_id
from skillquest.progression.engine import ProgressionEngine
from skillquest.progression.events import EventPublisher
from skillquest.redis_client import get_redis_or_none as _get_redis_or_none

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object | None, None]:
    """Yield the Redis client, or None when pub/sub is disabled."""
    yield _get_redis_or_none()


async def get_context(
    x_user_id: str | None = Header(default=None, max_length=64),
    x_session_id: str | None = Header(default=None, max_length=128),
) -> ProgressionContext:
    """Build the caller's context from gateway-supplied identity headers."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return ProgressionContext(user_id=x_user_id, session_id=x_session_id or new_session_id())


async def get_progression_engine(
    db: AsyncSession = Depends(get_db),
    redis: object | None = Depends(get_redis_dep),
) -> ProgressionEngine:
    settings = get_settings()
    publisher = EventPublisher(redis, settings.event_channel_prefix)
    return ProgressionEngine(db, publisher=publisher, settings=settings)
