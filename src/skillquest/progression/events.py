"""Domain events emitted by the progression engine.

Each event kind is an explicit, versioned record. Unknown fields are rejected on
construction and on parsing, so consumers never see untyped payloads.

Events are buffered per operation and published after the operation's
transaction commits. Publishing is fire-and-forget over Redis pub/sub: a
failed publish is logged and never fails the operation that produced it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from skillquest.progression.context import ProgressionContext
from skillquest.progression.skins import SkinConfig

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    XP_AWARDED = "xp_awarded"
    LEVEL_UP = "level_up"
    SKILL_UNLOCKED = "skill_unlocked"
    SKILL_COMPLETE = "skill_complete"
    CHALLENGE_COMPLETE = "challenge_complete"
    STREAK_MILESTONE = "streak_milestone"
    DAILY_LOGIN = "daily_login"
    LESSON_COMPLETE = "lesson_complete"
    SKIN_CHANGE = "skin_change"


class _Event(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_version: Literal[1] = 1
    user_id: str
    session_id: str
    occurred_at: datetime


class XPAwarded(_Event):
    kind: Literal["xp_awarded"] = "xp_awarded"
    amount: int
    source: str
    source_id: str | None = None
    new_total: int


class LevelUp(_Event):
    kind: Literal["level_up"] = "level_up"
    old_level: int
    new_level: int
    tier: str
    total_xp: int


class SkillUnlocked(_Event):
    kind: Literal["skill_unlocked"] = "skill_unlocked"
    skill_id: str
    required_level: int
    unlocked_at_level: int


class SkillCompleted(_Event):
    kind: Literal["skill_complete"] = "skill_complete"
    skill_id: str


class ChallengeCompleted(_Event):
    kind: Literal["challenge_complete"] = "challenge_complete"
    challenge_id: str
    xp_earned: int


class StreakMilestone(_Event):
    kind: Literal["streak_milestone"] = "streak_milestone"
    streak: int


class DailyLogin(_Event):
    kind: Literal["daily_login"] = "daily_login"
    streak: int
    is_new_record: bool


class LessonCompleted(_Event):
    kind: Literal["lesson_complete"] = "lesson_complete"
    lesson_id: str
    xp_earned: int
    time_spent_seconds: int | None = None


class SkinChanged(_Event):
    kind: Literal["skin_change"] = "skin_change"
    config: SkinConfig


DomainEvent = Annotated[
    Union[
        XPAwarded,
        LevelUp,
        SkillUnlocked,
        SkillCompleted,
        ChallengeCompleted,
        StreakMilestone,
        DailyLogin,
        LessonCompleted,
        SkinChanged,
    ],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter[DomainEvent] = TypeAdapter(DomainEvent)


def parse_event(payload: str | bytes | dict[str, Any]) -> DomainEvent:
    """Parse a published event back into its record type."""
    if isinstance(payload, dict):
        return _event_adapter.validate_python(payload)
    return _event_adapter.validate_json(payload)


class EventRecorder:
    """Collects the events of one engine operation, stamped from its context."""

    def __init__(self, ctx: ProgressionContext) -> None:
        self.ctx = ctx
        self.events: list[DomainEvent] = []

    def emit(self, event_type: type[_Event], **fields: Any) -> DomainEvent:
        event = event_type(
            user_id=self.ctx.user_id,
            session_id=self.ctx.session_id,
            occurred_at=self.ctx.now(),
            **fields,
        )
        self.events.append(event)  # type: ignore[arg-type]
        return event  # type: ignore[return-value]

    def of_kind(self, kind: EventKind) -> list[DomainEvent]:
        return [e for e in self.events if e.kind == kind.value]


class EventPublisher:
    """Publishes domain events to Redis pub/sub channels ``{prefix}:{kind}``."""

    def __init__(self, redis: object | None, channel_prefix: str = "pubsub:progression") -> None:
        self.redis = redis
        self.channel_prefix = channel_prefix

    def channel_for(self, event: DomainEvent) -> str:
        return f"{self.channel_prefix}:{event.kind}"

    async def publish(self, events: Sequence[DomainEvent]) -> int:
        """Publish events in order. Returns how many were handed to Redis."""
        if self.redis is None or not events:
            return 0

        published = 0
        for event in events:
            try:
                await self.redis.publish(  # type: ignore[attr-defined]
                    self.channel_for(event),
                    event.model_dump_json(),
                )
                published += 1
            except Exception:
                logger.warning("Failed to publish %s event", event.kind, exc_info=True)
        return published
