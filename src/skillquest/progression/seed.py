"""Default level threshold table.

Tiers advance every two levels; the min_xp gaps widen so later levels take
longer. Seeding is an upsert keyed on level, so editing a row here and
restarting updates the stored table.
"""

from __future__ import annotations

import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from skillquest.db.models import LevelThreshold
from skillquest.progression.levels import ThresholdTable

logger = logging.getLogger(__name__)

DEFAULT_LEVEL_THRESHOLDS: list[dict] = [
    {"level": 1, "min_xp": 0, "tier": "bronze"},
    {"level": 2, "min_xp": 100, "tier": "bronze"},
    {"level": 3, "min_xp": 250, "tier": "silver"},
    {"level": 4, "min_xp": 500, "tier": "silver"},
    {"level": 5, "min_xp": 1000, "tier": "gold"},
    {"level": 6, "min_xp": 1750, "tier": "gold"},
    {"level": 7, "min_xp": 2750, "tier": "platinum"},
    {"level": 8, "min_xp": 4000, "tier": "platinum"},
    {"level": 9, "min_xp": 6000, "tier": "diamond"},
    {"level": 10, "min_xp": 9000, "tier": "diamond"},
]


async def seed_level_thresholds(db: AsyncSession, rows: list[dict] | None = None) -> int:
    """Upsert the threshold table. Returns number of rows seeded."""
    rows = DEFAULT_LEVEL_THRESHOLDS if rows is None else rows
    # Reject a malformed table before touching the database.
    ThresholdTable.from_mappings(rows)

    insert = pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
    seeded = 0
    for row in rows:
        stmt = insert(LevelThreshold).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=["level"],
            set_={"min_xp": stmt.excluded.min_xp, "tier": stmt.excluded.tier},
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d level thresholds", seeded)
    return seeded
