"""ORM models for the progression tables.

These map to the tables created by alembic/versions/001_progression_tables.py.
Composite primary keys double as the per-action uniqueness keys the engine
relies on for insert-if-absent writes.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    func,
    true,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from skillquest.db.base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONColumn = JSON().with_variant(JSONB, "postgresql")


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(Base):
    """Maps to the 'profiles' table. One row per registered user."""

    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("xp >= 0", name="ck_profiles_xp_non_negative"),
        CheckConstraint("longest_streak >= current_streak", name="ck_profiles_longest_streak"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user", server_default="user")
    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default="bronze", server_default="bronze")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_active_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    skin_config: Mapped[dict[str, Any] | None] = mapped_column(JSONColumn, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Catalog: level thresholds, skills, challenges, lessons
# ---------------------------------------------------------------------------


class LevelThreshold(Base):
    """Maps to 'level_thresholds': minimum XP and tier per level."""

    __tablename__ = "level_thresholds"

    level: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    min_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)


class Skill(Base):
    """Skill tree node, unlocked once the user reaches required_level."""

    __tablename__ = "skills"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    required_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Challenge(Base):
    """Daily / weekly / special goal with a target value and XP reward."""

    __tablename__ = "challenges"
    __table_args__ = (
        CheckConstraint("type IN ('daily', 'weekly', 'special')", name="ck_challenges_type"),
        CheckConstraint("target_value > 0", name="ck_challenges_target_positive"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    target_value: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Lesson(Base):
    """Lesson catalog entry. xp_reward may be edited; completions keep a snapshot."""

    __tablename__ = "lessons"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Per-user progression state
# ---------------------------------------------------------------------------


class UserSkill(Base):
    """User skill state. A missing row means the skill is still locked."""

    __tablename__ = "user_skills"
    __table_args__ = (
        CheckConstraint("status IN ('available', 'completed')", name="ck_user_skills_status"),
    )

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    skill_id: Mapped[str] = mapped_column(String(64), ForeignKey("skills.id"), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="available", server_default="available")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UserChallenge(Base):
    """User challenge progress. completed_at is set once and never cleared."""

    __tablename__ = "user_challenges"
    __table_args__ = (
        CheckConstraint("current_progress >= 0", name="ck_user_challenges_progress"),
    )

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    challenge_id: Mapped[str] = mapped_column(String(64), ForeignKey("challenges.id"), primary_key=True)
    current_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LessonCompletion(Base):
    """Lesson completion. PK(user_id, lesson_id) allows one XP award per lesson."""

    __tablename__ = "lesson_completions"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    lesson_id: Mapped[str] = mapped_column(String(64), ForeignKey("lessons.id"), primary_key=True)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    time_spent_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class XPLedger(Base):
    """Immutable XP transaction log with idempotency key."""

    __tablename__ = "xp_ledger"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
