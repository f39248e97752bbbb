"""Challenge templates and target shapes.

Targets are a discriminated union on ``kind``; the progress calculator
matches on the concrete class. The registry is built once at import.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from wellup.progress.domains import Domain


class ChallengeStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    FAILED = "failed"


class ChallengeDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class StreakTarget(BaseModel):
    """Succeeds once the current streak reaches ``days``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["streak"] = "streak"
    days: int = Field(gt=0)


class CountTarget(BaseModel):
    """Succeeds once the cumulative counter for ``domain`` reaches ``count``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["count"] = "count"
    count: int = Field(gt=0)
    domain: Domain


class DailyTarget(BaseModel):
    """Succeeds on ``count`` distinct activity days inside the window.

    ``fixed`` windows start on the join date; ``rolling`` windows are the
    ``window_days`` ending on the snapshot date.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["daily"] = "daily"
    count: int = Field(gt=0)
    window_days: int = Field(gt=0)
    window: Literal["fixed", "rolling"] = "fixed"


class CombinedTarget(BaseModel):
    """Succeeds when every sub-target succeeds."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["combined"] = "combined"
    sub_targets: list[Target] = Field(min_length=1)


Target = Annotated[
    Union[StreakTarget, CountTarget, DailyTarget, CombinedTarget],
    Field(discriminator="kind"),
]

CombinedTarget.model_rebuild()


class ChallengeTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    description: str
    domain: Domain
    difficulty: ChallengeDifficulty
    target: Target
    duration_days: int | None = Field(default=None, gt=0)
    xp_reward: int = Field(default=0, ge=0)
    badge_code: str | None = None


_TEMPLATES: list[ChallengeTemplate] = [
    # Workout
    ChallengeTemplate(
        code="workout_streak_7",
        name="7-Day Workout Streak",
        description="Work out seven days in a row",
        domain=Domain.WORKOUT,
        difficulty=ChallengeDifficulty.EASY,
        target=StreakTarget(days=7),
        duration_days=10,
        xp_reward=100,
        badge_code="week_warrior",
    ),
    ChallengeTemplate(
        code="workout_streak_30",
        name="30-Day Workout Streak",
        description="Work out every day for a month",
        domain=Domain.WORKOUT,
        difficulty=ChallengeDifficulty.HARD,
        target=StreakTarget(days=30),
        duration_days=35,
        xp_reward=500,
        badge_code="marathon_month",
    ),
    ChallengeTemplate(
        code="workout_count_20",
        name="20 Workouts",
        description="Log twenty workouts in a month",
        domain=Domain.WORKOUT,
        difficulty=ChallengeDifficulty.MEDIUM,
        target=CountTarget(count=20, domain=Domain.WORKOUT),
        duration_days=30,
        xp_reward=200,
    ),
    ChallengeTemplate(
        code="workout_3_per_week",
        name="Three a Week",
        description="Work out on three different days this week",
        domain=Domain.WORKOUT,
        difficulty=ChallengeDifficulty.EASY,
        target=DailyTarget(count=3, window_days=7),
        duration_days=7,
        xp_reward=50,
    ),
    # Nutrition
    ChallengeTemplate(
        code="nutrition_balanced_week",
        name="Balanced Week",
        description="Log meals every day for a week and reach 21 meals",
        domain=Domain.NUTRITION,
        difficulty=ChallengeDifficulty.MEDIUM,
        target=CombinedTarget(sub_targets=[
            StreakTarget(days=7),
            CountTarget(count=21, domain=Domain.NUTRITION),
        ]),
        duration_days=10,
        xp_reward=150,
        badge_code="balanced_plate",
    ),
    ChallengeTemplate(
        code="nutrition_log_5_days",
        name="Mindful Meals",
        description="Log meals on five of the last seven days",
        domain=Domain.NUTRITION,
        difficulty=ChallengeDifficulty.EASY,
        target=DailyTarget(count=5, window_days=7, window="rolling"),
        xp_reward=40,
    ),
    # Water
    ChallengeTemplate(
        code="water_streak_14",
        name="Hydration Fortnight",
        description="Hit your water goal fourteen days running",
        domain=Domain.WATER,
        difficulty=ChallengeDifficulty.MEDIUM,
        target=StreakTarget(days=14),
        duration_days=20,
        xp_reward=120,
    ),
    # Analysis
    ChallengeTemplate(
        code="analysis_explorer",
        name="Analysis Explorer",
        description="Complete five analyses",
        domain=Domain.ANALYSIS,
        difficulty=ChallengeDifficulty.MEDIUM,
        target=CountTarget(count=5, domain=Domain.ANALYSIS),
        xp_reward=150,
    ),
    # Check-in
    ChallengeTemplate(
        code="checkin_month",
        name="Showing Up",
        description="Check in on twenty days this month",
        domain=Domain.CHECKIN,
        difficulty=ChallengeDifficulty.HARD,
        target=DailyTarget(count=20, window_days=30),
        duration_days=30,
        xp_reward=250,
    ),
]

CHALLENGE_REGISTRY: MappingProxyType[str, ChallengeTemplate] = MappingProxyType(
    {t.code: t for t in _TEMPLATES}
)


def get_challenge(code: str) -> ChallengeTemplate | None:
    return CHALLENGE_REGISTRY.get(code)


def list_challenges(
    domain: Domain | None = None,
    difficulty: ChallengeDifficulty | None = None,
) -> list[ChallengeTemplate]:
    return [
        t for t in CHALLENGE_REGISTRY.values()
        if (domain is None or t.domain == domain)
        and (difficulty is None or t.difficulty == difficulty)
    ]
