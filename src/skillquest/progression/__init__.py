"""Progression engine: XP, levels, streaks, skill unlocks and challenges."""
