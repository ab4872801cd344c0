"""Progression API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from skillquest.dependencies import get_context, get_progression_engine
from skillquest.progression.context import ProgressionContext
from skillquest.progression.engine import ProgressionEngine
from skillquest.progression.skins import SkinConfig
from skillquest.progression.schemas import (
    AllLevelsResponse,
    AwardXPRequest,
    ChallengeProgressResponse,
    CompleteLessonRequest,
    CreateProfileRequest,
    DashboardResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
    LessonCompletionResponse,
    LevelEntry,
    LevelInfoResponse,
    ProfileResponse,
    SkillCompletionResponse,
    SkinResponse,
    StreakResponse,
    UpdateStreakRequest,
    XPAwardResponse,
)

router = APIRouter(prefix="/api/v1/progression", tags=["Progression"])


# ── Public endpoints ──


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels(engine: ProgressionEngine = Depends(get_progression_engine)):
    """Get the level threshold table."""
    table = await engine.thresholds()
    return AllLevelsResponse(
        levels=[LevelEntry(level=r.level, min_xp=r.min_xp, tier=r.tier) for r in table.rows],
        is_fallback=table.is_empty,
    )


@router.get("/levels/resolve", response_model=LevelInfoResponse)
async def resolve_level(
    xp: int = Query(ge=0),
    engine: ProgressionEngine = Depends(get_progression_engine),
):
    """Resolve level and tier for an XP total."""
    return LevelInfoResponse.model_validate(await engine.calculate_level(xp))


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    limit: int | None = Query(default=None, ge=1, le=200),
    engine: ProgressionEngine = Depends(get_progression_engine),
):
    """Top learners by XP."""
    entries = await engine.get_leaderboard(limit)
    return LeaderboardResponse(entries=[LeaderboardEntryResponse.model_validate(e) for e in entries])


# ── Caller endpoints ──


@router.post("/profile", response_model=ProfileResponse)
async def create_profile(
    body: CreateProfileRequest,
    ctx: ProgressionContext = Depends(get_context),
    engine: ProgressionEngine = Depends(get_progression_engine),
):
    """Register the caller's progression profile. Idempotent."""
    return ProfileResponse.model_validate(await engine.create_profile(ctx, body.username))


@router.get("/me", response_model=DashboardResponse)
async def my_stats(
    ctx: ProgressionContext = Depends(get_context),
    engine: ProgressionEngine = Depends(get_progression_engine),
):
    """Dashboard stats for the caller."""
    return DashboardResponse.model_validate(await engine.get_dashboard_stats(ctx))


@router.post("/xp", response_model=XPAwardResponse)
async def award_xp(
    body: AwardXPRequest,
    ctx: ProgressionContext = Depends(get_context),
    engine: ProgressionEngine = Depends(get_progression_engine),
):
    """Grant XP to the caller."""
    result = await engine.award_xp(ctx, body.amount, body.source, body.source_id)
    return XPAwardResponse.model_validate(result)


@router.post("/lessons/{lesson_id}/complete", response_model=LessonCompletionResponse)
async def complete_lesson(
    lesson_id: str,
    body: CompleteLessonRequest | None = None,
    ctx: ProgressionContext = Depends(get_context),
    engine: ProgressionEngine = Depends(get_progression_engine),
):
    """Complete a lesson: records it, grants its XP and advances challenges."""
    time_spent = body.time_spent_seconds if body else None
    result = await engine.complete_lesson(ctx, lesson_id, time_spent)
    return LessonCompletionResponse(
        lesson_id=result.lesson_id,
        xp_earned=result.xp_earned,
        time_spent_seconds=result.time_spent_seconds,
        xp=XPAwardResponse.model_validate(result.xp),
        challenges=[ChallengeProgressResponse.model_validate(c) for c in result.challenges],
    )


@router.post("/skills/{skill_id}/complete", response_model=SkillCompletionResponse)
async def complete_skill(
    skill_id: str,
    ctx: ProgressionContext = Depends(get_context),
    engine: ProgressionEngine = Depends(get_progression_engine),
):
    """Mark an unlocked skill as completed."""
    result = await engine.complete_skill(ctx, skill_id)
    return SkillCompletionResponse(
        skill_id=result.skill_id,
        challenges=[ChallengeProgressResponse.model_validate(c) for c in result.challenges],
    )


@router.post("/streak", response_model=StreakResponse)
async def update_streak(
    body: UpdateStreakRequest | None = None,
    ctx: ProgressionContext = Depends(get_context),
    engine: ProgressionEngine = Depends(get_progression_engine),
):
    """Record today's activity for the caller's streak."""
    today = body.today if body else None
    return StreakResponse.model_validate(await engine.update_streak(ctx, today))


@router.post("/skin", response_model=SkinResponse)
async def update_skin(
    body: SkinConfig,
    ctx: ProgressionContext = Depends(get_context),
    engine: ProgressionEngine = Depends(get_progression_engine),
):
    """Replace the caller's avatar skin."""
    return SkinResponse.model_validate(await engine.update_skin(ctx, body))
