"""Level thresholds and level resolution.

A threshold table is a gapless, ascending list of (level, min_xp, tier) rows
starting at (1, 0). Resolution picks the row with the greatest min_xp that
does not exceed the user's XP.

When no thresholds are configured the resolver falls back to a linear curve
of ``FALLBACK_SPAN`` XP per level, all in the bronze tier, and flags the result
with ``is_fallback=True`` so callers can tell it apart from a real table.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from skillquest.progression.errors import ValidationError

DEFAULT_SPAN = 100
FALLBACK_SPAN = 100
FALLBACK_TIER = "bronze"


@dataclass(frozen=True)
class ThresholdRow:
    level: int
    min_xp: int
    tier: str


@dataclass(frozen=True)
class LevelInfo:
    level: int
    tier: str
    current_level_floor: int
    next_level_ceiling: int
    xp_into_level: int
    xp_to_next_level: int
    is_fallback: bool = False


class ThresholdTable:
    """Read-only, validated threshold table. Load once, resolve many times."""

    def __init__(self, rows: Iterable[ThresholdRow], default_span: int = DEFAULT_SPAN) -> None:
        ordered = sorted(rows, key=lambda r: r.level)
        _validate(ordered)
        if default_span <= 0:
            raise ValidationError("default_span must be positive")
        self._rows: tuple[ThresholdRow, ...] = tuple(ordered)
        self._floors: tuple[int, ...] = tuple(r.min_xp for r in ordered)
        self.default_span = default_span

    @classmethod
    def from_mappings(cls, rows: Iterable[dict], default_span: int = DEFAULT_SPAN) -> ThresholdTable:
        """Build from dicts with level/min_xp/tier keys (seed data, API payloads)."""
        return cls(
            (ThresholdRow(level=r["level"], min_xp=r["min_xp"], tier=r["tier"]) for r in rows),
            default_span=default_span,
        )

    @property
    def rows(self) -> tuple[ThresholdRow, ...]:
        return self._rows

    @property
    def is_empty(self) -> bool:
        return not self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def resolve(self, xp: int) -> LevelInfo:
        return resolve(xp, self)


def _validate(rows: Sequence[ThresholdRow]) -> None:
    if not rows:
        return
    if rows[0].level != 1 or rows[0].min_xp != 0:
        raise ValidationError("threshold table must start at level 1 with min_xp 0")
    for prev, row in zip(rows, rows[1:]):
        if row.level != prev.level + 1:
            raise ValidationError(f"threshold levels must be gapless: {prev.level} -> {row.level}")
        if row.min_xp <= prev.min_xp:
            raise ValidationError(
                f"min_xp must strictly increase with level (level {row.level}: {row.min_xp} <= {prev.min_xp})"
            )


def _fallback(xp: int) -> LevelInfo:
    level = xp // FALLBACK_SPAN + 1
    floor = (level - 1) * FALLBACK_SPAN
    return LevelInfo(
        level=level,
        tier=FALLBACK_TIER,
        current_level_floor=floor,
        next_level_ceiling=floor + FALLBACK_SPAN,
        xp_into_level=xp - floor,
        xp_to_next_level=floor + FALLBACK_SPAN - xp,
        is_fallback=True,
    )


def resolve(xp: int, table: ThresholdTable) -> LevelInfo:
    """Resolve level, tier and level bounds for a total XP value."""
    if xp < 0:
        raise ValidationError("xp must be non-negative")
    if table.is_empty:
        return _fallback(xp)

    # Index of the last threshold whose min_xp <= xp; row 0 has min_xp 0.
    idx = bisect_right(table._floors, xp) - 1
    current = table.rows[idx]
    if idx + 1 < len(table):
        ceiling = table.rows[idx + 1].min_xp
    else:
        ceiling = current.min_xp + table.default_span

    return LevelInfo(
        level=current.level,
        tier=current.tier,
        current_level_floor=current.min_xp,
        next_level_ceiling=ceiling,
        xp_into_level=xp - current.min_xp,
        xp_to_next_level=max(ceiling - xp, 0),
    )
