"""XP award tests: level-up, skill cascade, idempotency and conflict retry."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from skillquest.db.models import Profile, UserSkill, XPLedger
from skillquest.progression.engine import ProgressionEngine
from skillquest.progression.errors import ConflictError, NotFoundError, ValidationError
from tests.conftest import FIXED_NOW, make_context, set_profile


class TestAwardXP:
    @pytest.mark.asyncio
    async def test_level_up_unlocks_skills(self, engine, user, db_session, redis_mock):
        await set_profile(db_session, user.user_id, xp=90)

        result = await engine.award_xp(user, 20, "bonus")

        assert result.granted
        assert result.new_xp == 110
        assert result.old_level == 1
        assert result.new_level == 2
        assert result.leveled_up
        assert result.unlocked_skills == ["grammar"]

        rows = (await db_session.execute(select(UserSkill).where(UserSkill.user_id == user.user_id))).scalars().all()
        assert {r.skill_id: r.status for r in rows} == {"basics": "available", "grammar": "available"}

        kinds = [e.kind for e in result.events]
        assert kinds == ["xp_awarded", "level_up", "skill_unlocked"]
        channels = [call.args[0] for call in redis_mock.publish.await_args_list]
        assert "pubsub:progression:level_up" in channels

    @pytest.mark.asyncio
    async def test_no_level_up(self, engine, user):
        result = await engine.award_xp(user, 30, "bonus")
        assert result.new_xp == 30
        assert not result.leveled_up
        assert result.unlocked_skills == []
        assert [e.kind for e in result.events] == ["xp_awarded"]

    @pytest.mark.asyncio
    async def test_multi_level_jump_unlocks_everything(self, engine, user):
        result = await engine.award_xp(user, 300, "bonus")
        assert result.new_level == 3
        assert result.new_tier == "silver"
        assert sorted(result.unlocked_skills) == ["fluency", "grammar"]
        assert len([e for e in result.events if e.kind == "level_up"]) == 1

    @pytest.mark.asyncio
    async def test_cached_level_written(self, engine, user, db_session):
        await engine.award_xp(user, 260, "bonus")
        profile = (
            await db_session.execute(
                select(Profile).where(Profile.id == user.user_id).execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert (profile.xp, profile.level, profile.tier) == (260, 3, "silver")

    @pytest.mark.asyncio
    async def test_zero_amount_is_noop(self, engine, user, db_session, redis_mock):
        redis_mock.publish.reset_mock()
        result = await engine.award_xp(user, 0, "bonus")

        assert not result.granted
        assert result.new_xp == 0
        assert result.events == []
        redis_mock.publish.assert_not_awaited()
        count = (await db_session.execute(select(func.count()).select_from(XPLedger))).scalar_one()
        assert count == 0

    @pytest.mark.asyncio
    async def test_awards_commute(self, engine, db_session):
        a, b = make_context("user-a"), make_context("user-b")
        await engine.create_profile(a)
        await engine.create_profile(b)

        await engine.award_xp(a, 70, "bonus")
        await engine.award_xp(a, 45, "bonus")
        await engine.award_xp(b, 45, "bonus")
        await engine.award_xp(b, 70, "bonus")

        stats_a = await engine.get_dashboard_stats(a)
        stats_b = await engine.get_dashboard_stats(b)
        assert stats_a.total_xp == stats_b.total_xp == 115
        assert stats_a.level == stats_b.level == 2

    @pytest.mark.asyncio
    async def test_duplicate_source_id_granted_once(self, engine, user):
        first = await engine.award_xp(user, 40, "quiz", "quiz-7")
        second = await engine.award_xp(user, 40, "quiz", "quiz-7")

        assert first.granted
        assert not second.granted
        assert second.new_xp == 40
        assert second.events == []

    @pytest.mark.asyncio
    async def test_same_source_id_other_user(self, engine, user):
        other = make_context("user-2")
        await engine.create_profile(other)
        await engine.award_xp(user, 40, "quiz", "quiz-7")
        result = await engine.award_xp(other, 40, "quiz", "quiz-7")
        assert result.granted

    @pytest.mark.asyncio
    async def test_unknown_user(self, engine):
        with pytest.raises(NotFoundError):
            await engine.award_xp(make_context("ghost"), 10, "bonus")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("amount", "source"),
        [(-5, "bonus"), (True, "bonus"), (2**31, "bonus"), (10, ""), (10, "x" * 33)],
    )
    async def test_invalid_input(self, engine, user, amount, source):
        with pytest.raises(ValidationError):
            await engine.award_xp(user, amount, source)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("source", ["lesson_completion", "challenge_completion"])
    async def test_completion_sources_are_reserved(self, engine, user, db_session, source):
        with pytest.raises(ValidationError, match="reserved"):
            await engine.award_xp(user, 1, source, "lesson-2")

        ledger = (await db_session.execute(select(func.count()).select_from(XPLedger))).scalar_one()
        assert ledger == 0


class TestConflictRetry:
    @pytest.mark.asyncio
    async def test_retries_whole_operation(self, engine, user, db_session, monkeypatch):
        real_update = engine.store.update_profile_xp
        calls = {"n": 0}

        async def flaky_update(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                return False
            return await real_update(*args, **kwargs)

        monkeypatch.setattr(engine.store, "update_profile_xp", flaky_update)

        result = await engine.award_xp(user, 120, "quiz", "quiz-1")

        assert calls["n"] == 2
        assert result.granted
        assert result.new_xp == 120
        # The rolled-back attempt left no ledger row and emitted nothing.
        ledger = (await db_session.execute(select(func.count()).select_from(XPLedger))).scalar_one()
        assert ledger == 1
        assert [e.kind for e in result.events].count("xp_awarded") == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, engine, user, db_session, monkeypatch, redis_mock):
        async def always_conflict(*args, **kwargs):
            return False

        monkeypatch.setattr(engine.store, "update_profile_xp", always_conflict)
        redis_mock.publish.reset_mock()

        with pytest.raises(ConflictError):
            await engine.award_xp(user, 50, "bonus")

        redis_mock.publish.assert_not_awaited()
        stats = await engine.get_dashboard_stats(user)
        assert stats.total_xp == 0


class TestGuardedProfileWrite:
    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, engine, user, session_factory, settings):
        seen = (await engine.store.get_profile(user.user_id)).version

        async with session_factory() as other_session:
            other = ProgressionEngine(other_session, settings=settings)
            await other.award_xp(user, 10, "bonus")

        ok = await engine.store.update_profile_xp(user.user_id, seen, 999, 5, "gold", FIXED_NOW)
        await engine.db.rollback()

        assert ok is False
        stats = await engine.get_dashboard_stats(user)
        assert stats.total_xp == 10

    @pytest.mark.asyncio
    async def test_current_version_accepted(self, engine, user, session_factory, settings):
        async with session_factory() as other_session:
            other = ProgressionEngine(other_session, settings=settings)
            await other.award_xp(user, 10, "bonus")

        seen = (await engine.store.get_profile(user.user_id)).version
        ok = await engine.store.update_profile_xp(user.user_id, seen, 15, 1, "bronze", FIXED_NOW)
        await engine.db.commit()

        assert ok is True
        assert (await engine.store.get_profile(user.user_id)).version == seen + 1
