"""Pydantic request/response models for progression endpoints."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict, Field

from skillquest.progression.skins import SkinConfig


# --- Levels ---


class LevelEntry(BaseModel):
    level: int
    min_xp: int
    tier: str


class AllLevelsResponse(BaseModel):
    levels: list[LevelEntry]
    is_fallback: bool = False


class LevelInfoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: int
    tier: str
    current_level_floor: int
    next_level_ceiling: int
    xp_into_level: int
    xp_to_next_level: int
    is_fallback: bool = False


# --- Profile ---


class CreateProfileRequest(BaseModel):
    username: str | None = Field(default=None, max_length=64)


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    username: str | None
    created: bool
    xp: int
    level: int
    tier: str
    unlocked_skills: list[str] = []


class DashboardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


# --- XP ---


class AwardXPRequest(BaseModel):
    amount: int = Field(ge=0, le=2**31 - 1)
    source: str = Field(min_length=1, max_length=32)
    source_id: str | None = Field(default=None, max_length=128)


class XPAwardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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
    leveled_up: bool
    unlocked_skills: list[str] = []


# --- Lessons / skills / challenges ---


class CompleteLessonRequest(BaseModel):
    time_spent_seconds: int | None = Field(default=None, ge=0)


class ChallengeProgressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    challenge_id: str
    new_progress: int
    target_value: int
    completed: bool
    xp_awarded: int = 0


class LessonCompletionResponse(BaseModel):
    lesson_id: str
    xp_earned: int
    time_spent_seconds: int | None
    xp: XPAwardResponse
    challenges: list[ChallengeProgressResponse]


class SkillCompletionResponse(BaseModel):
    skill_id: str
    challenges: list[ChallengeProgressResponse]


# --- Streak ---


class UpdateStreakRequest(BaseModel):
    today: date | None = None


class StreakResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current_streak: int
    longest_streak: int
    last_active_date: date | None
    changed: bool
    is_new_record: bool


# --- Leaderboard ---


class LeaderboardEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    user_id: str
    username: str | None
    xp: int
    level: int
    tier: str


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntryResponse]


# --- Skin ---


class SkinResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    config: SkinConfig
    changed: bool
