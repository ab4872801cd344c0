"""Progression engine: XP, levels, skills, streaks and challenges.

Each public operation is one database transaction on the caller's session.
Writes are optimistic: a lost version or progress guard raises ConflictError,
the transaction is rolled back and the whole operation re-runs after a short
jittered backoff. Domain events are buffered per attempt and published only
after a successful commit.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any, TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from skillquest.config import Settings, get_settings
from skillquest.progression.challenges import CHALLENGE_XP_SOURCE, ChallengeProgress, ChallengeTracker, EventType
from skillquest.progression.context import ProgressionContext
from skillquest.progression.errors import (
    AlreadyCompletedError,
    ConflictError,
    NotFoundError,
    ProgressionError,
    StoreError,
    ValidationError,
)
from skillquest.progression.events import (
    DailyLogin,
    DomainEvent,
    EventPublisher,
    EventRecorder,
    LessonCompleted,
    LevelUp,
    SkillCompleted,
    SkinChanged,
    StreakMilestone,
    XPAwarded,
)
from skillquest.progression.levels import LevelInfo, ThresholdTable
from skillquest.progression.skills import SkillUnlocker
from skillquest.progression.skins import SkinConfig, load_stored_skin, parse_skin
from skillquest.progression.store import ProgressionStore
from skillquest.progression.streaks import StreakState, next_streak

logger = structlog.get_logger()

T = TypeVar("T")

MAX_SOURCE_LENGTH = 32
LESSON_XP_SOURCE = "lesson_completion"
# Only granted from inside their own operations; keys are one per lesson or challenge.
RESERVED_SOURCES = frozenset({LESSON_XP_SOURCE, CHALLENGE_XP_SOURCE})
MAX_AMOUNT = 2**31 - 1
MAX_BACKOFF_SECONDS = 1.0


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class XPAwardResult:
    granted: bool
    amount: int
    source: str
    source_id: str | None
    old_xp: int
    new_xp: int
    old_level: int
    new_level: int
    old_tier: str
    new_tier: str
    unlocked_skills: list[str] = field(default_factory=list)
    events: list[DomainEvent] = field(default_factory=list)

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level


@dataclass
class LessonCompletionResult:
    lesson_id: str
    xp_earned: int
    time_spent_seconds: int | None
    xp: XPAwardResult
    challenges: list[ChallengeProgress] = field(default_factory=list)
    events: list[DomainEvent] = field(default_factory=list)


@dataclass
class SkillCompletionResult:
    skill_id: str
    challenges: list[ChallengeProgress] = field(default_factory=list)
    events: list[DomainEvent] = field(default_factory=list)


@dataclass
class StreakResult:
    current_streak: int
    longest_streak: int
    last_active_date: date | None
    changed: bool
    is_new_record: bool
    events: list[DomainEvent] = field(default_factory=list)


@dataclass
class SkinResult:
    config: SkinConfig
    changed: bool
    events: list[DomainEvent] = field(default_factory=list)


@dataclass
class ProfileResult:
    user_id: str
    username: str | None
    created: bool
    xp: int
    level: int
    tier: str
    unlocked_skills: list[str] = field(default_factory=list)
    events: list[DomainEvent] = field(default_factory=list)


@dataclass
class DashboardStats:
    user_id: str
    username: str | None
    total_xp: int
    level: int
    tier: str
    current_level_xp: int
    next_level_xp: int
    xp_to_next_level: int
    current_streak: int
    longest_streak: int
    completed_lessons: int
    available_skills: int
    completed_skills: int
    active_challenges: int
    rank: int
    skin_config: SkinConfig | None = None


@dataclass
class LeaderboardEntry:
    rank: int
    user_id: str
    username: str | None
    xp: int
    level: int
    tier: str


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ProgressionEngine:
    def __init__(
        self,
        db: AsyncSession,
        publisher: EventPublisher | None = None,
        settings: Settings | None = None,
        thresholds: ThresholdTable | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.publisher = publisher or EventPublisher(None, self.settings.event_channel_prefix)
        self.store = ProgressionStore(db)
        self.unlocker = SkillUnlocker(self.store)
        self.tracker = ChallengeTracker(self.store)
        self._thresholds = thresholds

    # --- plumbing ---

    async def thresholds(self) -> ThresholdTable:
        """Threshold table, loaded from the store on first use and kept for this engine."""
        if self._thresholds is None:
            rows = await self._read("load_thresholds", self.store.load_thresholds)
            try:
                table = ThresholdTable(rows, default_span=self.settings.default_level_span)
            except ValidationError as exc:
                logger.error("level_thresholds_invalid", error=exc.message, rows=len(rows))
                raise StoreError(f"Stored level thresholds are invalid: {exc.message}") from exc
            if table.is_empty:
                logger.warning("level_thresholds_empty", fallback_span=100)
            self._thresholds = table
        return self._thresholds

    def _backoff(self, attempt: int) -> float:
        delay = min(self.settings.conflict_backoff_seconds * (2 ** (attempt - 1)), MAX_BACKOFF_SECONDS)
        return max(delay + random.uniform(-0.5 * delay, 0.5 * delay), 0.0)

    async def _read(self, name: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        except SQLAlchemyError as exc:
            raise StoreError(f"{name} failed: {exc.__class__.__name__}") from exc

    async def _run(
        self,
        ctx: ProgressionContext,
        name: str,
        op: Callable[[EventRecorder], Awaitable[T]],
    ) -> T:
        """Run ``op`` in one transaction, retrying the whole thing on conflict."""
        max_attempts = max(self.settings.conflict_max_attempts, 1)
        attempt = 0
        while True:
            attempt += 1
            recorder = EventRecorder(ctx)
            try:
                result = await op(recorder)
                await self.db.commit()
            except ConflictError:
                await self._rollback()
                if attempt >= max_attempts:
                    logger.warning("conflict_retries_exhausted", op=name, user_id=ctx.user_id, attempts=attempt)
                    raise
                logger.info("conflict_retry", op=name, user_id=ctx.user_id, attempt=attempt)
                await asyncio.sleep(self._backoff(attempt))
                continue
            except ProgressionError:
                await self._rollback()
                raise
            except SQLAlchemyError as exc:
                await self._rollback()
                logger.error("store_failure", op=name, user_id=ctx.user_id, error=str(exc))
                raise StoreError(f"{name} failed: {exc.__class__.__name__}") from exc
            break

        result.events = list(recorder.events)  # type: ignore[attr-defined]
        await self.publisher.publish(recorder.events)
        return result

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as exc:
            raise StoreError("rollback failed") from exc

    # --- levels ---

    async def calculate_level(self, xp: int) -> LevelInfo:
        table = await self.thresholds()
        return table.resolve(xp)

    # --- profiles ---

    async def create_profile(self, ctx: ProgressionContext, username: str | None = None) -> ProfileResult:
        """Register a profile at xp 0. Calling it again returns the existing profile."""
        if not ctx.user_id:
            raise ValidationError("user_id is required")
        start = (await self.thresholds()).resolve(0)

        async def op(recorder: EventRecorder) -> ProfileResult:
            created = await self.store.create_profile(ctx.user_id, username, start.level, start.tier, ctx.now())
            unlocked: list[str] = []
            if created:
                unlocked = await self.unlocker.unlock_for_level(ctx.user_id, start.level, recorder, ctx.now())
                logger.info("profile_created", user_id=ctx.user_id)
            profile = await self.store.get_profile(ctx.user_id)
            return ProfileResult(
                user_id=profile.id,
                username=profile.username,
                created=created,
                xp=profile.xp,
                level=profile.level,
                tier=profile.tier,
                unlocked_skills=unlocked,
            )

        return await self._run(ctx, "create_profile", op)

    # --- xp ---

    async def award_xp(
        self,
        ctx: ProgressionContext,
        amount: int,
        source: str,
        source_id: str | None = None,
    ) -> XPAwardResult:
        """Add ``amount`` XP, recompute level and unlock skills on level-up.

        An award keyed by ``source_id`` is granted at most once per user; a
        repeat returns ``granted=False`` and changes nothing.
        """
        _check_amount(amount)
        _check_source(source)
        table = await self.thresholds()

        async def op(recorder: EventRecorder) -> XPAwardResult:
            return await self._award(ctx, table, recorder, amount, source, source_id)

        return await self._run(ctx, "award_xp", op)

    async def _award(
        self,
        ctx: ProgressionContext,
        table: ThresholdTable,
        recorder: EventRecorder,
        amount: int,
        source: str,
        source_id: str | None,
    ) -> XPAwardResult:
        profile = await self.store.get_profile(ctx.user_id)
        old_xp = profile.xp
        old = table.resolve(old_xp)

        def unchanged() -> XPAwardResult:
            return XPAwardResult(
                granted=False,
                amount=amount,
                source=source,
                source_id=source_id,
                old_xp=old_xp,
                new_xp=old_xp,
                old_level=old.level,
                new_level=old.level,
                old_tier=old.tier,
                new_tier=old.tier,
            )

        if amount == 0:
            return unchanged()

        now = ctx.now()
        if not await self.store.record_xp(ctx.user_id, amount, source, source_id, now):
            logger.info("xp_award_duplicate", user_id=ctx.user_id, source=source, source_id=source_id)
            return unchanged()

        new_xp = old_xp + amount
        new = table.resolve(new_xp)
        if not await self.store.update_profile_xp(ctx.user_id, profile.version, new_xp, new.level, new.tier, now):
            raise ConflictError(f"Profile {ctx.user_id} changed concurrently")

        recorder.emit(XPAwarded, amount=amount, source=source, source_id=source_id, new_total=new_xp)

        unlocked: list[str] = []
        if new.level > old.level:
            recorder.emit(LevelUp, old_level=old.level, new_level=new.level, tier=new.tier, total_xp=new_xp)
            unlocked = await self.unlocker.unlock_for_level(ctx.user_id, new.level, recorder, now)
            logger.info("level_up", user_id=ctx.user_id, old_level=old.level, new_level=new.level, tier=new.tier)

        logger.info("xp_awarded", user_id=ctx.user_id, amount=amount, source=source, new_total=new_xp)
        return XPAwardResult(
            granted=True,
            amount=amount,
            source=source,
            source_id=source_id,
            old_xp=old_xp,
            new_xp=new_xp,
            old_level=old.level,
            new_level=new.level,
            old_tier=old.tier,
            new_tier=new.tier,
            unlocked_skills=unlocked,
        )

    def _award_callback(
        self,
        ctx: ProgressionContext,
        table: ThresholdTable,
        recorder: EventRecorder,
    ) -> Callable[[int, str, str], Awaitable[Any]]:
        async def award(amount: int, source: str, source_id: str) -> XPAwardResult:
            return await self._award(ctx, table, recorder, amount, source, source_id)

        return award

    # --- lessons ---

    async def complete_lesson(
        self,
        ctx: ProgressionContext,
        lesson_id: str,
        time_spent_seconds: int | None = None,
    ) -> LessonCompletionResult:
        """Record a lesson completion, grant its XP and advance lesson challenges."""
        if time_spent_seconds is not None and (
            not isinstance(time_spent_seconds, int) or time_spent_seconds < 0
        ):
            raise ValidationError("time_spent_seconds must be a non-negative integer")
        table = await self.thresholds()

        async def op(recorder: EventRecorder) -> LessonCompletionResult:
            await self.store.get_profile(ctx.user_id)
            lesson = await self.store.get_lesson(lesson_id)
            if lesson is None or not lesson.is_active:
                raise NotFoundError(f"Lesson {lesson_id} not found")

            inserted = await self.store.insert_lesson_completion(
                ctx.user_id, lesson_id, lesson.xp_reward, time_spent_seconds, ctx.now()
            )
            if not inserted:
                raise AlreadyCompletedError(f"Lesson {lesson_id} already completed")

            xp = await self._award(ctx, table, recorder, lesson.xp_reward, LESSON_XP_SOURCE, lesson_id)
            if lesson.xp_reward > 0 and not xp.granted:
                # Ledger already holds this lesson's reward without a completion row.
                logger.error("lesson_reward_already_recorded", user_id=ctx.user_id, lesson_id=lesson_id)
                raise StoreError(f"Reward for lesson {lesson_id} is already in the ledger")
            challenges = await self.tracker.apply_event(
                ctx, EventType.LESSON_COMPLETE, 1, recorder, self._award_callback(ctx, table, recorder)
            )
            recorder.emit(
                LessonCompleted,
                lesson_id=lesson_id,
                xp_earned=lesson.xp_reward,
                time_spent_seconds=time_spent_seconds,
            )
            logger.info("lesson_completed", user_id=ctx.user_id, lesson_id=lesson_id, xp=lesson.xp_reward)
            return LessonCompletionResult(
                lesson_id=lesson_id,
                xp_earned=lesson.xp_reward,
                time_spent_seconds=time_spent_seconds,
                xp=xp,
                challenges=challenges,
            )

        return await self._run(ctx, "complete_lesson", op)

    # --- skills ---

    async def complete_skill(self, ctx: ProgressionContext, skill_id: str) -> SkillCompletionResult:
        """Move an available skill to completed and advance skill challenges."""
        table = await self.thresholds()

        async def op(recorder: EventRecorder) -> SkillCompletionResult:
            await self.store.get_profile(ctx.user_id)
            if await self.store.get_skill(skill_id) is None:
                raise NotFoundError(f"Skill {skill_id} not found")

            user_skill = await self.store.get_user_skill(ctx.user_id, skill_id)
            if user_skill is None:
                raise ValidationError(f"Skill {skill_id} is still locked")
            if user_skill.status == "completed":
                raise AlreadyCompletedError(f"Skill {skill_id} already completed")

            if not await self.store.mark_skill_completed(ctx.user_id, skill_id, ctx.now()):
                raise ConflictError(f"Skill {skill_id} changed concurrently")

            recorder.emit(SkillCompleted, skill_id=skill_id)
            challenges = await self.tracker.apply_event(
                ctx, EventType.SKILL_COMPLETE, 1, recorder, self._award_callback(ctx, table, recorder)
            )
            logger.info("skill_completed", user_id=ctx.user_id, skill_id=skill_id)
            return SkillCompletionResult(skill_id=skill_id, challenges=challenges)

        return await self._run(ctx, "complete_skill", op)

    # --- streaks ---

    async def update_streak(self, ctx: ProgressionContext, today: date | None = None) -> StreakResult:
        """Record activity for ``today`` (context clock's UTC date by default)."""
        day = today or ctx.today()

        async def op(recorder: EventRecorder) -> StreakResult:
            profile = await self.store.get_profile(ctx.user_id)
            previous = StreakState(
                current_streak=profile.current_streak,
                longest_streak=profile.longest_streak,
                last_active_date=profile.last_active_date,
            )
            update = next_streak(previous, day)
            if update.changed:
                ok = await self.store.update_profile_streak(ctx.user_id, profile.version, update.state, ctx.now())
                if not ok:
                    raise ConflictError(f"Profile {ctx.user_id} changed concurrently")
                recorder.emit(DailyLogin, streak=update.state.current_streak, is_new_record=update.is_new_record)
                if update.is_new_record:
                    recorder.emit(StreakMilestone, streak=update.state.current_streak)
                logger.info(
                    "streak_updated",
                    user_id=ctx.user_id,
                    streak=update.state.current_streak,
                    longest=update.state.longest_streak,
                )
            state = update.state
            return StreakResult(
                current_streak=state.current_streak,
                longest_streak=state.longest_streak,
                last_active_date=state.last_active_date,
                changed=update.changed,
                is_new_record=update.is_new_record,
            )

        return await self._run(ctx, "update_streak", op)

    # --- skin ---

    async def update_skin(self, ctx: ProgressionContext, config: SkinConfig | dict[str, Any]) -> SkinResult:
        """Replace the caller's skin. Saving the same skin again writes nothing."""
        skin = parse_skin(config)

        async def op(recorder: EventRecorder) -> SkinResult:
            profile = await self.store.get_profile(ctx.user_id)
            if load_stored_skin(profile.skin_config) == skin:
                return SkinResult(config=skin, changed=False)

            ok = await self.store.update_profile_skin(
                ctx.user_id, profile.version, skin.model_dump(mode="json"), ctx.now()
            )
            if not ok:
                raise ConflictError(f"Profile {ctx.user_id} changed concurrently")
            recorder.emit(SkinChanged, config=skin)
            logger.info("skin_updated", user_id=ctx.user_id)
            return SkinResult(config=skin, changed=True)

        return await self._run(ctx, "update_skin", op)

    # --- read models ---

    async def get_dashboard_stats(self, ctx: ProgressionContext) -> DashboardStats:
        table = await self.thresholds()

        async def load() -> DashboardStats:
            profile = await self.store.get_profile(ctx.user_id)
            info = table.resolve(profile.xp)
            return DashboardStats(
                user_id=profile.id,
                username=profile.username,
                total_xp=profile.xp,
                level=info.level,
                tier=info.tier,
                current_level_xp=info.current_level_floor,
                next_level_xp=info.next_level_ceiling,
                xp_to_next_level=info.xp_to_next_level,
                current_streak=profile.current_streak,
                longest_streak=profile.longest_streak,
                completed_lessons=await self.store.count_lesson_completions(ctx.user_id),
                available_skills=await self.store.count_user_skills(ctx.user_id, "available"),
                completed_skills=await self.store.count_user_skills(ctx.user_id, "completed"),
                active_challenges=await self.store.count_active_user_challenges(ctx.user_id),
                rank=await self.store.rank_for_xp(profile.xp),
                skin_config=load_stored_skin(profile.skin_config),
            )

        return await self._read("get_dashboard_stats", load)

    async def get_leaderboard(self, limit: int | None = None) -> list[LeaderboardEntry]:
        """Top profiles by xp. Ties share a rank (1, 2, 2, 4)."""
        limit = self.settings.leaderboard_limit if limit is None else limit
        if limit <= 0:
            raise ValidationError("limit must be positive")

        profiles = await self._read("get_leaderboard", lambda: self.store.top_profiles(limit))
        entries: list[LeaderboardEntry] = []
        rank = 0
        previous_xp: int | None = None
        for position, profile in enumerate(profiles, start=1):
            if profile.xp != previous_xp:
                rank = position
                previous_xp = profile.xp
            entries.append(
                LeaderboardEntry(
                    rank=rank,
                    user_id=profile.id,
                    username=profile.username,
                    xp=profile.xp,
                    level=profile.level,
                    tier=profile.tier,
                )
            )
        return entries


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("amount must be an integer")
    if amount < 0:
        raise ValidationError("amount must be non-negative")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"amount must be at most {MAX_AMOUNT}")


def _check_source(source: str) -> None:
    if not isinstance(source, str) or not source.strip():
        raise ValidationError("source is required")
    if len(source) > MAX_SOURCE_LENGTH:
        raise ValidationError(f"source must be at most {MAX_SOURCE_LENGTH} characters")
    if source in RESERVED_SOURCES:
        raise ValidationError(f"source {source!r} is reserved")
