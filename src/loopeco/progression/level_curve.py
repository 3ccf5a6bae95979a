"""Level computation.

Flat curve: every level takes 1000 XP.

    level    = xp_total // 1000 + 1
    progress = xp_total %  1000   (out of 1000)

Pure and total for every non-negative ``xp_total``. Award results and level
lookups both go through ``compute_level`` so they always agree.
"""

from __future__ import annotations

XP_PER_LEVEL = 1000


def compute_level(total_xp: int) -> dict:
    """Compute level info from total XP."""
    if total_xp < 0:
        raise ValueError("total_xp must be non-negative")

    level = total_xp // XP_PER_LEVEL + 1
    xp_into_level = total_xp % XP_PER_LEVEL

    return {
        "level": level,
        "xp_into_level": xp_into_level,
        "xp_for_level": XP_PER_LEVEL,
        "next_level": level + 1,
        "xp_to_next_level": XP_PER_LEVEL - xp_into_level,
    }


def xp_for_level(level: int) -> int:
    """Cumulative XP at which ``level`` is reached."""
    if level < 1:
        raise ValueError("level must be >= 1")
    return (level - 1) * XP_PER_LEVEL
