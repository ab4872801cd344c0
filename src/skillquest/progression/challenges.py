"""Challenge progress tracking.

Learning events advance the user's open challenges. Which challenge types an
event may advance is fixed by ``CHALLENGE_ELIGIBILITY``; the table is checked
when a tracker is built so a missing or mistyped entry fails at startup
instead of silently skipping progress.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any

import structlog

from skillquest.db.models import Challenge
from skillquest.progression.context import ProgressionContext
from skillquest.progression.errors import ConflictError, ValidationError
from skillquest.progression.events import ChallengeCompleted, EventRecorder
from skillquest.progression.store import ProgressionStore

logger = structlog.get_logger()

CHALLENGE_XP_SOURCE = "challenge_completion"


class EventType(str, Enum):
    LESSON_COMPLETE = "lesson_complete"
    VIDEO_COMPLETE = "video_complete"
    SKILL_COMPLETE = "skill_complete"


class ChallengeType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    SPECIAL = "special"


CHALLENGE_ELIGIBILITY: Mapping[EventType, frozenset[ChallengeType]] = {
    EventType.LESSON_COMPLETE: frozenset({ChallengeType.DAILY, ChallengeType.WEEKLY, ChallengeType.SPECIAL}),
    EventType.VIDEO_COMPLETE: frozenset({ChallengeType.DAILY, ChallengeType.WEEKLY, ChallengeType.SPECIAL}),
    EventType.SKILL_COMPLETE: frozenset({ChallengeType.WEEKLY, ChallengeType.SPECIAL}),
}


@dataclass(frozen=True)
class ChallengeProgress:
    challenge_id: str
    new_progress: int
    target_value: int
    completed: bool
    xp_awarded: int = 0


# award(amount, source, source_id) inside the caller's transaction
AwardCallback = Callable[[int, str, str], Awaitable[Any]]


def validate_eligibility(table: Mapping[Any, Any]) -> dict[EventType, frozenset[ChallengeType]]:
    """Check the event -> challenge type table covers every event kind with known types."""
    checked: dict[EventType, frozenset[ChallengeType]] = {}
    for key, types in table.items():
        if not isinstance(key, EventType):
            raise ValidationError(f"eligibility key {key!r} is not an EventType")
        if not types:
            raise ValidationError(f"event {key.value} has no eligible challenge types")
        for t in types:
            if not isinstance(t, ChallengeType):
                raise ValidationError(f"event {key.value} maps to unknown challenge type {t!r}")
        checked[key] = frozenset(types)

    missing = set(EventType) - set(checked)
    if missing:
        names = ", ".join(sorted(m.value for m in missing))
        raise ValidationError(f"eligibility table missing event types: {names}")
    return checked


def coerce_event_type(event_type: EventType | str) -> EventType:
    try:
        return EventType(event_type)
    except ValueError:
        raise ValidationError(f"Unknown event type {event_type!r}") from None


def in_window(challenge: Challenge, today: date) -> bool:
    if not challenge.is_active:
        return False
    if challenge.start_date is not None and today < challenge.start_date:
        return False
    if challenge.end_date is not None and today > challenge.end_date:
        return False
    return True


class ChallengeTracker:
    def __init__(
        self,
        store: ProgressionStore,
        eligibility: Mapping[Any, Any] = CHALLENGE_ELIGIBILITY,
    ) -> None:
        self.store = store
        self.eligibility = validate_eligibility(eligibility)

    def eligible_types(self, event_type: EventType | str) -> frozenset[ChallengeType]:
        return self.eligibility[coerce_event_type(event_type)]

    async def apply_event(
        self,
        ctx: ProgressionContext,
        event_type: EventType | str,
        increment: int,
        recorder: EventRecorder,
        award: AwardCallback,
    ) -> list[ChallengeProgress]:
        """Advance every open, eligible challenge of the user by ``increment``.

        Progress is capped at the target. A challenge that reaches its target
        is completed in the same guarded write, then its XP reward is granted
        through ``award``. Losing the guard to a concurrent writer raises
        ConflictError so the caller can retry the whole operation.
        """
        kind = coerce_event_type(event_type)
        if isinstance(increment, bool) or not isinstance(increment, int) or increment <= 0:
            raise ValidationError("increment must be a positive integer")

        types = {t.value for t in self.eligibility[kind]}
        today = ctx.today()
        now = ctx.now()

        catalog = await self.store.open_challenges(types, today)
        await self.store.materialize_user_challenges(ctx.user_id, [c.id for c in catalog], now)

        results: list[ChallengeProgress] = []
        for user_challenge, challenge in await self.store.active_user_challenges(ctx.user_id):
            if challenge.type not in types or not in_window(challenge, today):
                continue

            seen = user_challenge.current_progress
            new_progress = min(seen + increment, challenge.target_value)
            completed = new_progress >= challenge.target_value

            ok = await self.store.update_challenge_progress(
                ctx.user_id,
                challenge.id,
                seen_progress=seen,
                new_progress=new_progress,
                completed_at=now if completed else None,
            )
            if not ok:
                raise ConflictError(f"Challenge {challenge.id} changed concurrently")

            xp_awarded = 0
            if completed:
                if challenge.xp_reward > 0:
                    granted = await award(challenge.xp_reward, CHALLENGE_XP_SOURCE, challenge.id)
                    xp_awarded = granted.amount if granted.granted else 0
                recorder.emit(ChallengeCompleted, challenge_id=challenge.id, xp_earned=xp_awarded)
                logger.info(
                    "challenge_completed",
                    user_id=ctx.user_id,
                    challenge_id=challenge.id,
                    xp_reward=xp_awarded,
                )

            results.append(
                ChallengeProgress(
                    challenge_id=challenge.id,
                    new_progress=new_progress,
                    target_value=challenge.target_value,
                    completed=completed,
                    xp_awarded=xp_awarded,
                )
            )
        return results
