"""Activity domains and the per-domain XP defaults."""

from __future__ import annotations

from enum import Enum


class Domain(str, Enum):
    WORKOUT = "workout"
    NUTRITION = "nutrition"
    WATER = "water"
    ANALYSIS = "analysis"
    CHECKIN = "checkin"


# XP granted for one activity when the event does not carry its own amount.
DEFAULT_ACTIVITY_XP: dict[Domain, int] = {
    Domain.WORKOUT: 10,
    Domain.NUTRITION: 5,
    Domain.WATER: 2,
    Domain.ANALYSIS: 20,
    Domain.CHECKIN: 3,
}
