"""Per-call context passed explicitly into every engine operation."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class ProgressionContext:
    """Who the engine acts for and which client session the action came from.

    ``clock`` is injectable so that day-boundary logic (streaks, challenge
    windows) can be pinned in tests.
    """

    user_id: str
    session_id: str = field(default_factory=new_session_id)
    clock: Callable[[], datetime] = utc_now

    def now(self) -> datetime:
        return self.clock()

    def today(self) -> date:
        return self.clock().astimezone(timezone.utc).date()
