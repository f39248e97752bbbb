"""Static badge catalog and streak milestone tables.

The catalog is process-wide immutable configuration: it is built once at
import time into ``BADGE_CATALOG`` and mirrored into ``badge_definitions``
by ``seed_badges``. Requirements are a tagged union so ``requirement_met``
is an exhaustive match over kinds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Literal, Union, assert_never

from pydantic import BaseModel, ConfigDict, Field

from wellup.progress.domains import Domain

STREAK_MILESTONES: tuple[int, ...] = (3, 7, 14, 30, 60, 100)


class BadgeCategory(str, Enum):
    STREAK = "streak"
    ACTIVITY = "activity"
    ANALYSIS = "analysis"
    CHALLENGE = "challenge"
    LEVEL = "level"


class BadgeRarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


# ---------------------------------------------------------------------------
# Requirements
# ---------------------------------------------------------------------------


class StreakRequirement(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["streak"] = "streak"
    domain: Domain
    days: int = Field(gt=0)


class TotalRequirement(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["total"] = "total"
    domain: Domain
    count: int = Field(gt=0)


class ChallengeRequirement(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["challenge"] = "challenge"
    challenge_code: str


class LevelRequirement(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["level"] = "level"
    level: int = Field(gt=1)


Requirement = Annotated[
    Union[StreakRequirement, TotalRequirement, ChallengeRequirement, LevelRequirement],
    Field(discriminator="kind"),
]


@dataclass(frozen=True)
class BadgeFacts:
    """What is known about a user when requirements are evaluated."""

    streaks: dict[str, int] = field(default_factory=dict)
    totals: dict[str, int] = field(default_factory=dict)
    completed_challenges: frozenset[str] = frozenset()
    level: int = 1


def requirement_met(requirement: Requirement, facts: BadgeFacts) -> bool:
    if isinstance(requirement, StreakRequirement):
        return facts.streaks.get(requirement.domain.value, 0) >= requirement.days
    if isinstance(requirement, TotalRequirement):
        return facts.totals.get(requirement.domain.value, 0) >= requirement.count
    if isinstance(requirement, ChallengeRequirement):
        return requirement.challenge_code in facts.completed_challenges
    if isinstance(requirement, LevelRequirement):
        return facts.level >= requirement.level
    assert_never(requirement)


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BadgeDef:
    code: str
    name: str
    description: str
    category: BadgeCategory
    rarity: BadgeRarity
    xp_reward: int
    requirement: Requirement
    sort_order: int = 0


_MILESTONE_RARITY = {
    3: (BadgeRarity.COMMON, 20),
    7: (BadgeRarity.COMMON, 50),
    14: (BadgeRarity.RARE, 100),
    30: (BadgeRarity.RARE, 200),
    60: (BadgeRarity.EPIC, 400),
    100: (BadgeRarity.LEGENDARY, 1000),
}

_DOMAIN_LABELS = {
    Domain.WORKOUT: "Workout",
    Domain.NUTRITION: "Meal Logging",
    Domain.WATER: "Hydration",
    Domain.ANALYSIS: "Analysis",
    Domain.CHECKIN: "Check-in",
}


def streak_badge_code(domain: Domain, days: int) -> str:
    return f"{domain.value}_streak_{days}"


def _streak_badges() -> list[BadgeDef]:
    badges = []
    for d_index, domain in enumerate(Domain):
        label = _DOMAIN_LABELS[domain]
        for m_index, days in enumerate(STREAK_MILESTONES):
            rarity, xp = _MILESTONE_RARITY[days]
            badges.append(BadgeDef(
                code=streak_badge_code(domain, days),
                name=f"{label} Streak {days}",
                description=f"{days} consecutive days of {label.lower()}",
                category=BadgeCategory.STREAK,
                rarity=rarity,
                xp_reward=xp,
                requirement=StreakRequirement(domain=domain, days=days),
                sort_order=d_index * 10 + m_index,
            ))
    return badges


_OTHER_BADGES: list[BadgeDef] = [
    # Activity totals
    BadgeDef("first_workout", "First Sweat", "Complete your first workout",
             BadgeCategory.ACTIVITY, BadgeRarity.COMMON, 20,
             TotalRequirement(domain=Domain.WORKOUT, count=1), 100),
    BadgeDef("workouts_50", "Iron Habit", "Complete 50 workouts",
             BadgeCategory.ACTIVITY, BadgeRarity.RARE, 150,
             TotalRequirement(domain=Domain.WORKOUT, count=50), 101),
    BadgeDef("first_meal_log", "First Bite", "Log your first meal",
             BadgeCategory.ACTIVITY, BadgeRarity.COMMON, 20,
             TotalRequirement(domain=Domain.NUTRITION, count=1), 102),
    BadgeDef("meals_100", "Mindful Eater", "Log 100 meals",
             BadgeCategory.ACTIVITY, BadgeRarity.RARE, 150,
             TotalRequirement(domain=Domain.NUTRITION, count=100), 103),
    BadgeDef("water_goal_30", "Well Watered", "Hit your water goal 30 times",
             BadgeCategory.ACTIVITY, BadgeRarity.RARE, 100,
             TotalRequirement(domain=Domain.WATER, count=30), 104),
    # Analysis completions
    BadgeDef("first_analysis", "Know Thyself", "Complete your first analysis",
             BadgeCategory.ANALYSIS, BadgeRarity.COMMON, 30,
             TotalRequirement(domain=Domain.ANALYSIS, count=1), 110),
    BadgeDef("analysis_10", "Self Scholar", "Complete 10 analyses",
             BadgeCategory.ANALYSIS, BadgeRarity.EPIC, 200,
             TotalRequirement(domain=Domain.ANALYSIS, count=10), 111),
    # Challenge rewards
    BadgeDef("week_warrior", "Week Warrior", "Finish the 7-day workout streak challenge",
             BadgeCategory.CHALLENGE, BadgeRarity.RARE, 50,
             ChallengeRequirement(challenge_code="workout_streak_7"), 120),
    BadgeDef("balanced_plate", "Balanced Plate", "Finish the balanced week challenge",
             BadgeCategory.CHALLENGE, BadgeRarity.EPIC, 100,
             ChallengeRequirement(challenge_code="nutrition_balanced_week"), 121),
    BadgeDef("marathon_month", "Marathon Month", "Finish the 30-day workout challenge",
             BadgeCategory.CHALLENGE, BadgeRarity.LEGENDARY, 300,
             ChallengeRequirement(challenge_code="workout_streak_30"), 122),
    # Levels
    BadgeDef("level_10", "Practitioner", "Reach level 10",
             BadgeCategory.LEVEL, BadgeRarity.RARE, 0,
             LevelRequirement(level=10), 130),
    BadgeDef("level_25", "Expert", "Reach level 25",
             BadgeCategory.LEVEL, BadgeRarity.EPIC, 0,
             LevelRequirement(level=25), 131),
]

BADGE_CATALOG: MappingProxyType[str, BadgeDef] = MappingProxyType(
    {b.code: b for b in _streak_badges() + _OTHER_BADGES}
)


def get_badge_def(code: str) -> BadgeDef | None:
    return BADGE_CATALOG.get(code)


def badges_satisfied(facts: BadgeFacts) -> list[str]:
    """Codes of every catalog badge whose requirement holds for facts."""
    return [code for code, badge in BADGE_CATALOG.items() if requirement_met(badge.requirement, facts)]


# ---------------------------------------------------------------------------
# Streak milestones
# ---------------------------------------------------------------------------


def check_streak_milestones(previous_streak: int, new_streak: int) -> list[int]:
    """Milestones crossed going from previous_streak to new_streak.

    Pure: replaying the same pair always yields the same list, so a
    retried award call lands on the same badge codes.
    """
    return [m for m in STREAK_MILESTONES if previous_streak < m <= new_streak]


def achieved_milestones(streak: int) -> list[int]:
    return [m for m in STREAK_MILESTONES if m <= streak]


def next_milestone(streak: int) -> int | None:
    for m in STREAK_MILESTONES:
        if m > streak:
            return m
    return None


def badges_for_milestones(domain: Domain, milestones: list[int]) -> list[str]:
    return [streak_badge_code(domain, m) for m in milestones]
