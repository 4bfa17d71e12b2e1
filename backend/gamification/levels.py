"""
Level math for the XP system.

Levels grow quadratically: reaching level `n + 1` requires `n² × 100` XP in
total. The functions are pure so both the service and the dashboard cards can
use them without touching storage.
"""
from __future__ import annotations

import math

XP_REWARDS = {
    "SIGNUP": 10,
    "FIRST_UPLOAD": 50,
    "EVALUATION_COMPLETE": 20,
    "PERFECT_SCORE": 100,
    "DAILY_LOGIN": 5,
    "TEACHER_REVIEW": 15,
    "BADGE_EARNED": 30,
}


def calculate_level(xp: int) -> int:
    """Return the level for a total XP amount (level 1 at 0 XP)."""
    xp = max(0, int(xp or 0))
    return int(math.floor(math.sqrt(xp / 100))) + 1


def xp_for_next_level(level: int) -> int:
    """Total XP needed to leave `level`."""
    return int(level) ** 2 * 100


def level_progress(xp: int) -> float:
    """Percent progress within the current level, clamped to 0..100."""
    xp = max(0, int(xp or 0))
    level = calculate_level(xp)
    floor_xp = xp_for_next_level(level - 1)
    ceiling_xp = xp_for_next_level(level)
    span = ceiling_xp - floor_xp
    if span <= 0:
        return 0.0
    pct = (xp - floor_xp) * 100.0 / span
    return max(0.0, min(100.0, pct))
