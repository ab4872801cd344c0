"""Progression tables: profiles, catalogs, per-user progress, XP ledger.

Creates profiles, level_thresholds, skills, challenges, lessons, user_skills,
user_challenges, lesson_completions and xp_ledger.

Revision ID: 001_progression_tables
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_progression_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Profiles ---
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("username", sa.String(64), nullable=True),
        sa.Column("role", sa.String(16), nullable=False, server_default="user"),
        sa.Column("xp", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("level", sa.Integer, nullable=False, server_default="1"),
        sa.Column("tier", sa.String(16), nullable=False, server_default="bronze"),
        sa.Column("current_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_active_date", sa.Date, nullable=True),
        sa.Column("skin_config", postgresql.JSONB(), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.CheckConstraint("xp >= 0", name="ck_profiles_xp_non_negative"),
        sa.CheckConstraint("longest_streak >= current_streak", name="ck_profiles_longest_streak"),
    )
    op.create_index("idx_profiles_xp", "profiles", [sa.text("xp DESC")])

    # --- Catalog ---
    op.create_table(
        "level_thresholds",
        sa.Column("level", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("min_xp", sa.BigInteger, nullable=False, unique=True),
        sa.Column("tier", sa.String(16), nullable=False),
    )

    op.create_table(
        "skills",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("required_level", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("idx_skills_required_level", "skills", ["required_level"])

    op.create_table(
        "challenges",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("target_value", sa.Integer, nullable=False, server_default="1"),
        sa.Column("xp_reward", sa.Integer, nullable=False, server_default="0"),
        sa.Column("start_date", sa.Date, nullable=True),
        sa.Column("end_date", sa.Date, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.CheckConstraint("type IN ('daily', 'weekly', 'special')", name="ck_challenges_type"),
        sa.CheckConstraint("target_value > 0", name="ck_challenges_target_positive"),
    )
    op.create_index("idx_challenges_active_type", "challenges", ["is_active", "type"])

    op.create_table(
        "lessons",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("xp_reward", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )

    # --- Per-user progress ---
    op.create_table(
        "user_skills",
        sa.Column("user_id", sa.String(64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("skill_id", sa.String(64), sa.ForeignKey("skills.id"), primary_key=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="available"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.CheckConstraint("status IN ('available', 'completed')", name="ck_user_skills_status"),
    )

    op.create_table(
        "user_challenges",
        sa.Column("user_id", sa.String(64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("challenge_id", sa.String(64), sa.ForeignKey("challenges.id"), primary_key=True),
        sa.Column("current_progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.CheckConstraint("current_progress >= 0", name="ck_user_challenges_progress"),
    )
    op.create_index(
        "idx_user_challenges_open",
        "user_challenges",
        ["user_id"],
        postgresql_where=sa.text("completed_at IS NULL"),
    )

    op.create_table(
        "lesson_completions",
        sa.Column("user_id", sa.String(64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("lesson_id", sa.String(64), sa.ForeignKey("lessons.id"), primary_key=True),
        sa.Column("xp_earned", sa.Integer, nullable=False),
        sa.Column("time_spent_seconds", sa.Integer, nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
    )

    # --- XP Ledger ---
    op.create_table(
        "xp_ledger",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("source_id", sa.String(128), nullable=True),
        sa.Column("idempotency_key", sa.String(256), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("ix_xp_ledger_user_id", "xp_ledger", ["user_id"])


def downgrade() -> None:
    op.drop_table("xp_ledger")
    op.drop_table("lesson_completions")
    op.drop_table("user_challenges")
    op.drop_table("user_skills")
    op.drop_table("lessons")
    op.drop_table("challenges")
    op.drop_table("skills")
    op.drop_table("level_thresholds")
    op.drop_table("profiles")
