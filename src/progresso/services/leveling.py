"""XP to level conversion on a triangular growth curve."""
from math import isqrt

from progresso.config import LEVEL_BASE_XP
from progresso.models.progress_models import LevelInfo


def xp_required_for_level(level: int, base_xp: int = LEVEL_BASE_XP) -> int:
    """Cumulative XP needed to reach ``level``: base * L * (L + 1) / 2."""
    if level < 0:
        raise ValueError(f"Level cannot be negative, got {level}")
    return base_xp * level * (level + 1) // 2


def level_for_xp(xp_total: int, base_xp: int = LEVEL_BASE_XP) -> LevelInfo:
    """Get the highest level whose requirement is covered by ``xp_total``."""
    if xp_total < 0:
        raise ValueError(f"XP cannot be negative, got {xp_total}")

    # base * T(L) <= xp  <=>  T(L) <= xp // base, T(L) being the L-th triangular number
    triangular = xp_total // base_xp
    level = (isqrt(8 * triangular + 1) - 1) // 2

    floor_xp = xp_required_for_level(level, base_xp)
    next_xp = xp_required_for_level(level + 1, base_xp)
    return LevelInfo(
        level=level,
        xp_into_level=xp_total - floor_xp,
        xp_for_next_level=next_xp - xp_total,
    )
