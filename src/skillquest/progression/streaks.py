"""Daily streak computation.

Pure day arithmetic. The caller decides what "today" is; nothing here reads a
clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta


@dataclass(frozen=True)
class StreakState:
    current_streak: int
    longest_streak: int
    last_active_date: date | None


@dataclass(frozen=True)
class StreakUpdate:
    state: StreakState
    changed: bool
    is_new_record: bool


def next_streak(previous: StreakState, today: date) -> StreakUpdate:
    """Compute the streak after activity on ``today``.

    Same day (or a ``today`` that lies before the last recorded day) leaves the
    state untouched. The day after continues the streak; any larger gap, or no
    prior activity, restarts it at 1.
    """
    last = previous.last_active_date
    if last is not None and today <= last:
        return StreakUpdate(state=previous, changed=False, is_new_record=False)

    if last is not None and last == today - timedelta(days=1):
        current = previous.current_streak + 1
    else:
        current = 1

    longest = max(previous.longest_streak, current)
    return StreakUpdate(
        state=StreakState(current_streak=current, longest_streak=longest, last_active_date=today),
        changed=True,
        is_new_record=current > previous.longest_streak,
    )
