"""Pydantic models exchanged with calling code."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict, Field

from wellup.progress.domains import DEFAULT_ACTIVITY_XP, Domain


# --- Levels / XP ---


class LevelInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int
    total_xp: int
    current_xp: int
    xp_for_next_level: int
    xp_to_next_level: int
    tier: str
    progress_fraction: float


class LevelUp(BaseModel):
    old_level: int
    new_level: int


class TierChange(BaseModel):
    old_tier: str
    new_tier: str


class XPGrant(BaseModel):
    """Outcome of one grant_xp call. granted=False means a replayed idempotency key."""

    granted: bool
    amount: int
    total_xp: int
    old_level: int
    new_level: int
    old_tier: str
    new_tier: str

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level

    @property
    def tier_changed(self) -> bool:
        return self.new_tier != self.old_tier


class XPHistoryEntry(BaseModel):
    amount: int
    source: str
    source_id: str | None = None
    description: str | None = None


# --- Streaks ---


class StreakUpdate(BaseModel):
    domain: Domain
    previous_streak: int
    current_streak: int
    longest_streak: int
    last_activity_date: date | None
    changed: bool
    milestones_crossed: list[int] = []


class StreakSummary(BaseModel):
    domain: Domain
    current_streak: int
    longest_streak: int
    is_active: bool
    last_activity_date: date | None = None
    streak_start_date: date | None = None
    next_milestone: int | None
    days_to_next_milestone: int | None
    achieved_milestones: list[int]
    badges: list[str]


# --- Challenges ---


class ProgressSnapshot(BaseModel):
    """Caller-supplied state a challenge's progress is computed from.

    counts maps counter name to cumulative value; a domain's own total is
    keyed by the domain value (e.g. ``{"workout": 12}``).
    """

    current_streak: int = 0
    counts: dict[str, int] = {}
    activity_dates: frozenset[date] = frozenset()
    as_of: date | None = None


class ChallengeCompletion(BaseModel):
    user_challenge_id: int
    challenge_code: str
    xp_reward: int
    badge_code: str | None = None
    badge_awarded: bool = False


class ChallengeProgressUpdate(BaseModel):
    user_challenge_id: int
    challenge_code: str
    progress: int
    completion: ChallengeCompletion | None = None

    @property
    def completed(self) -> bool:
        return self.completion is not None


# --- Dispatcher ---


class DomainEvent(BaseModel):
    """A typed activity completion handed to the dispatcher."""

    domain: Domain
    activity_date: date
    xp_amount: int | None = Field(default=None, ge=0)
    counters: dict[str, int] = {}
    event_id: str | None = None

    @property
    def effective_xp(self) -> int:
        if self.xp_amount is None:
            return DEFAULT_ACTIVITY_XP[self.domain]
        return self.xp_amount


class ProgressResult(BaseModel):
    """Consolidated outcome of one domain event, for the caller to render."""

    xp_awarded: int = 0
    level: LevelInfo | None = None
    level_up: LevelUp | None = None
    tier_change: TierChange | None = None
    streak: StreakUpdate | None = None
    new_badges: list[str] = []
    completed_challenges: list[ChallengeCompletion] = []
