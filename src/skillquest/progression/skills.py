"""Skill unlock cascade.

Reaching a level makes every catalog skill with ``required_level <= level``
available to the user. Rows are inserted once; re-running the cascade for the
same (or a lower) level changes nothing.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

import structlog

from skillquest.db.models import Skill
from skillquest.progression.events import EventRecorder, SkillUnlocked
from skillquest.progression.store import ProgressionStore

logger = structlog.get_logger()


def compute_unlockable(catalog: Iterable[Skill], existing: set[str], level: int) -> list[Skill]:
    """Catalog skills reachable at ``level`` that the user does not hold yet."""
    return [s for s in catalog if s.required_level <= level and s.id not in existing]


class SkillUnlocker:
    def __init__(self, store: ProgressionStore) -> None:
        self.store = store

    async def unlock_for_level(
        self,
        user_id: str,
        new_level: int,
        recorder: EventRecorder,
        now: datetime,
    ) -> list[str]:
        """Make skills up to ``new_level`` available. Returns the ids this call unlocked.

        One ``skill_unlocked`` event is emitted per row actually inserted, so a
        concurrent cascade that inserted the row first wins the event.
        """
        catalog = await self.store.skills_up_to_level(new_level)
        existing = await self.store.user_skill_ids(user_id)
        candidates = compute_unlockable(catalog, existing, new_level)
        if not candidates:
            return []

        inserted = set(await self.store.insert_available_skills(user_id, [s.id for s in candidates], now))
        unlocked: list[str] = []
        for skill in candidates:
            if skill.id not in inserted:
                continue
            recorder.emit(
                SkillUnlocked,
                skill_id=skill.id,
                required_level=skill.required_level,
                unlocked_at_level=new_level,
            )
            unlocked.append(skill.id)

        if unlocked:
            logger.info("skills_unlocked", user_id=user_id, level=new_level, skill_ids=unlocked)
        return unlocked
