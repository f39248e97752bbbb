"""Level curve: total XP <-> level <-> tier.

Curve: advancing from level n to n+1 costs ``50 * n * (n + 1)`` XP
(100, 300, 600, 1000, ...). The cumulative XP to reach level n is the
closed form ``50 * (n - 1) * n * (n + 1) / 3``. The curve is uncapped.

Tiers are stepped on level:
  beginner      1-9
  practitioner  10-24
  expert        25-49
  master        50+
"""

from __future__ import annotations

from enum import Enum

from wellup.progress.schemas import LevelInfo

XP_CURVE_FACTOR = 50


class Tier(str, Enum):
    BEGINNER = "beginner"
    PRACTITIONER = "practitioner"
    EXPERT = "expert"
    MASTER = "master"


# Ordered (minimum level, tier), ascending.
TIER_THRESHOLDS: list[tuple[int, Tier]] = [
    (1, Tier.BEGINNER),
    (10, Tier.PRACTITIONER),
    (25, Tier.EXPERT),
    (50, Tier.MASTER),
]


def _check_level(n: int) -> None:
    if n < 1:
        raise ValueError(f"Level must be >= 1, got {n}")


def xp_for_level(n: int) -> int:
    """XP required to advance from level n to n + 1."""
    _check_level(n)
    return XP_CURVE_FACTOR * n * (n + 1)


def total_xp_for_level(n: int) -> int:
    """Cumulative XP at which level n is reached (sum of xp_for_level(1..n-1))."""
    _check_level(n)
    return XP_CURVE_FACTOR * (n - 1) * n * (n + 1) // 3


def level_from_total_xp(xp: int) -> int:
    """Largest n with total_xp_for_level(n) <= xp."""
    if xp < 0:
        raise ValueError(f"XP must be >= 0, got {xp}")

    # Double until past xp, then binary search.
    hi = 2
    while total_xp_for_level(hi) <= xp:
        hi *= 2
    lo = hi // 2 if hi > 2 else 1
    while lo < hi - 1:
        mid = (lo + hi) // 2
        if total_xp_for_level(mid) <= xp:
            lo = mid
        else:
            hi = mid
    return lo


def tier_for_level(n: int) -> Tier:
    """Stepped lookup into TIER_THRESHOLDS."""
    _check_level(n)
    tier = TIER_THRESHOLDS[0][1]
    for min_level, candidate in TIER_THRESHOLDS:
        if n >= min_level:
            tier = candidate
    return tier


def calculate_level_info(xp: int) -> LevelInfo:
    """Bundle level, XP within level, XP to next level, tier and progress."""
    level = level_from_total_xp(xp)
    current_xp = xp - total_xp_for_level(level)
    needed = xp_for_level(level)
    return LevelInfo(
        level=level,
        total_xp=xp,
        current_xp=current_xp,
        xp_for_next_level=needed,
        xp_to_next_level=needed - current_xp,
        tier=tier_for_level(level).value,
        progress_fraction=current_xp / needed,
    )


def level_table(max_level: int = 50) -> list[dict]:
    """Level definitions 1..max_level for display."""
    return [
        {
            "level": n,
            "xp_required": xp_for_level(n),
            "cumulative": total_xp_for_level(n),
            "tier": tier_for_level(n).value,
        }
        for n in range(1, max_level + 1)
    ]
