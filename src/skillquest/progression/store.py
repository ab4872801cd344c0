"""Persistence collaborator for the progression engine.

Thin CRUD layer over an AsyncSession. Every read-modify-write the engine does
goes through one of the guarded writes here:

- conditional updates (``WHERE version = :seen`` and friends) that return
  False when another writer got there first, and
- insert-if-absent (``ON CONFLICT DO NOTHING``) keyed on the per-action
  uniqueness keys, returning whether this call created the row.

The store never commits. Transaction boundaries belong to the engine.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from skillquest.db.models import (
    Challenge,
    LessonCompletion,
    Lesson,
    LevelThreshold,
    Profile,
    Skill,
    UserChallenge,
    UserSkill,
    XPLedger,
)
from skillquest.progression.errors import NotFoundError
from skillquest.progression.levels import ThresholdRow
from skillquest.progression.streaks import StreakState


class ProgressionStore:
    """Reads and guarded writes for profiles, catalogs and per-user progress."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    def _insert(self, model: type) -> Any:  # noqa: ANN401
        """Dialect-specific INSERT supporting ON CONFLICT."""
        if self.db.get_bind().dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    # --- Profiles ---

    async def get_profile(self, user_id: str) -> Profile:
        result = await self.db.execute(
            select(Profile)
            .where(Profile.id == user_id)
            .execution_options(populate_existing=True)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            raise NotFoundError(f"Profile {user_id} not found")
        return profile

    async def create_profile(
        self,
        user_id: str,
        username: str | None,
        level: int,
        tier: str,
        now: datetime,
    ) -> bool:
        """Insert a fresh profile at xp 0 with the given starting level. False if it exists."""
        stmt = (
            self._insert(Profile)
            .values(
                id=user_id,
                username=username,
                role="user",
                xp=0,
                level=level,
                tier=tier,
                current_streak=0,
                longest_streak=0,
                version=1,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["id"])
            .returning(Profile.id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def update_profile_xp(
        self,
        user_id: str,
        seen_version: int,
        xp: int,
        level: int,
        tier: str,
        now: datetime,
    ) -> bool:
        """Write xp and cached level/tier if nobody wrote the profile since ``seen_version``."""
        result = await self.db.execute(
            update(Profile)
            .where(Profile.id == user_id, Profile.version == seen_version)
            .values(xp=xp, level=level, tier=tier, version=seen_version + 1, updated_at=now)
            .returning(Profile.version)
        )
        return result.scalar_one_or_none() is not None

    async def update_profile_streak(
        self,
        user_id: str,
        seen_version: int,
        state: StreakState,
        now: datetime,
    ) -> bool:
        result = await self.db.execute(
            update(Profile)
            .where(Profile.id == user_id, Profile.version == seen_version)
            .values(
                current_streak=state.current_streak,
                longest_streak=state.longest_streak,
                last_active_date=state.last_active_date,
                version=seen_version + 1,
                updated_at=now,
            )
            .returning(Profile.version)
        )
        return result.scalar_one_or_none() is not None

    async def update_profile_skin(
        self,
        user_id: str,
        seen_version: int,
        skin_config: dict[str, Any],
        now: datetime,
    ) -> bool:
        result = await self.db.execute(
            update(Profile)
            .where(Profile.id == user_id, Profile.version == seen_version)
            .values(skin_config=skin_config, version=seen_version + 1, updated_at=now)
            .returning(Profile.version)
        )
        return result.scalar_one_or_none() is not None

    # --- XP ledger ---

    async def record_xp(
        self,
        user_id: str,
        amount: int,
        source: str,
        source_id: str | None,
        now: datetime,
    ) -> bool:
        """Append a ledger row. Keyed awards (with source_id) are recorded at most once."""
        idempotency_key = f"{user_id}:{source}:{source_id}" if source_id is not None else None
        stmt = self._insert(XPLedger).values(
            user_id=user_id,
            amount=amount,
            source=source,
            source_id=source_id,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        if idempotency_key is not None:
            stmt = stmt.on_conflict_do_nothing(index_elements=["idempotency_key"])
        result = await self.db.execute(stmt.returning(XPLedger.id))
        return result.scalar_one_or_none() is not None

    # --- Level thresholds ---

    async def load_thresholds(self) -> list[ThresholdRow]:
        result = await self.db.execute(select(LevelThreshold).order_by(LevelThreshold.level))
        return [ThresholdRow(level=t.level, min_xp=t.min_xp, tier=t.tier) for t in result.scalars()]

    # --- Lessons ---

    async def get_lesson(self, lesson_id: str) -> Lesson | None:
        return await self.db.get(Lesson, lesson_id)

    async def insert_lesson_completion(
        self,
        user_id: str,
        lesson_id: str,
        xp_earned: int,
        time_spent_seconds: int | None,
        completed_at: datetime,
    ) -> bool:
        """Record a completion. False if this user already completed the lesson."""
        stmt = (
            self._insert(LessonCompletion)
            .values(
                user_id=user_id,
                lesson_id=lesson_id,
                xp_earned=xp_earned,
                time_spent_seconds=time_spent_seconds,
                completed_at=completed_at,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "lesson_id"])
            .returning(LessonCompletion.lesson_id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def count_lesson_completions(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(LessonCompletion).where(LessonCompletion.user_id == user_id)
        )
        return result.scalar_one()

    # --- Skills ---

    async def get_skill(self, skill_id: str) -> Skill | None:
        return await self.db.get(Skill, skill_id)

    async def skills_up_to_level(self, level: int) -> list[Skill]:
        result = await self.db.execute(
            select(Skill).where(Skill.required_level <= level).order_by(Skill.required_level, Skill.id)
        )
        return list(result.scalars())

    async def user_skill_ids(self, user_id: str) -> set[str]:
        result = await self.db.execute(select(UserSkill.skill_id).where(UserSkill.user_id == user_id))
        return set(result.scalars())

    async def get_user_skill(self, user_id: str, skill_id: str) -> UserSkill | None:
        result = await self.db.execute(
            select(UserSkill)
            .where(UserSkill.user_id == user_id, UserSkill.skill_id == skill_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def insert_available_skills(self, user_id: str, skill_ids: Iterable[str], now: datetime) -> list[str]:
        """Batch insert-if-absent as 'available'. Returns the ids this call inserted."""
        rows = [
            {"user_id": user_id, "skill_id": sid, "status": "available", "created_at": now}
            for sid in skill_ids
        ]
        if not rows:
            return []
        stmt = (
            self._insert(UserSkill)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["user_id", "skill_id"])
            .returning(UserSkill.skill_id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def mark_skill_completed(self, user_id: str, skill_id: str, now: datetime) -> bool:
        """available -> completed. False if the row is missing or already completed."""
        result = await self.db.execute(
            update(UserSkill)
            .where(
                UserSkill.user_id == user_id,
                UserSkill.skill_id == skill_id,
                UserSkill.status == "available",
            )
            .values(status="completed", completed_at=now)
            .returning(UserSkill.skill_id)
        )
        return result.scalar_one_or_none() is not None

    async def count_user_skills(self, user_id: str, status: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(UserSkill)
            .where(UserSkill.user_id == user_id, UserSkill.status == status)
        )
        return result.scalar_one()

    # --- Challenges ---

    async def open_challenges(self, types: Iterable[str], today: date) -> list[Challenge]:
        """Active catalog challenges of the given types whose window contains ``today``."""
        type_list = list(types)
        if not type_list:
            return []
        result = await self.db.execute(
            select(Challenge)
            .where(
                Challenge.is_active.is_(True),
                Challenge.type.in_(type_list),
                or_(Challenge.start_date.is_(None), Challenge.start_date <= today),
                or_(Challenge.end_date.is_(None), Challenge.end_date >= today),
            )
            .order_by(Challenge.id)
        )
        return list(result.scalars())

    async def materialize_user_challenges(self, user_id: str, challenge_ids: Sequence[str], now: datetime) -> int:
        """Create missing user_challenges rows at progress 0. Returns rows created."""
        if not challenge_ids:
            return 0
        rows = [
            {"user_id": user_id, "challenge_id": cid, "current_progress": 0, "created_at": now}
            for cid in challenge_ids
        ]
        stmt = (
            self._insert(UserChallenge)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["user_id", "challenge_id"])
            .returning(UserChallenge.challenge_id)
        )
        result = await self.db.execute(stmt)
        return len(result.scalars().all())

    async def active_user_challenges(self, user_id: str) -> list[tuple[UserChallenge, Challenge]]:
        result = await self.db.execute(
            select(UserChallenge, Challenge)
            .join(Challenge, UserChallenge.challenge_id == Challenge.id)
            .where(UserChallenge.user_id == user_id, UserChallenge.completed_at.is_(None))
            .order_by(UserChallenge.challenge_id)
            .execution_options(populate_existing=True)
        )
        return [(row.UserChallenge, row.Challenge) for row in result]

    async def update_challenge_progress(
        self,
        user_id: str,
        challenge_id: str,
        seen_progress: int,
        new_progress: int,
        completed_at: datetime | None,
    ) -> bool:
        """Guarded progress write; only one writer can move an active row past its read state."""
        values: dict[str, Any] = {"current_progress": new_progress}
        if completed_at is not None:
            values["completed_at"] = completed_at
        result = await self.db.execute(
            update(UserChallenge)
            .where(
                UserChallenge.user_id == user_id,
                UserChallenge.challenge_id == challenge_id,
                UserChallenge.completed_at.is_(None),
                UserChallenge.current_progress == seen_progress,
            )
            .values(**values)
            .returning(UserChallenge.challenge_id)
        )
        return result.scalar_one_or_none() is not None

    async def count_active_user_challenges(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(UserChallenge)
            .where(UserChallenge.user_id == user_id, UserChallenge.completed_at.is_(None))
        )
        return result.scalar_one()

    # --- Ranking ---

    async def rank_for_xp(self, xp: int) -> int:
        result = await self.db.execute(select(func.count()).select_from(Profile).where(Profile.xp > xp))
        return result.scalar_one() + 1

    async def top_profiles(self, limit: int) -> list[Profile]:
        result = await self.db.execute(
            select(Profile).order_by(Profile.xp.desc(), Profile.id).limit(limit)
        )
        return list(result.scalars())
