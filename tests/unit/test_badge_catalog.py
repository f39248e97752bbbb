"""Badge catalog and streak milestone tests."""

import pytest

from wellup.progress.badge_catalog import (
    BADGE_CATALOG,
    STREAK_MILESTONES,
    BadgeCategory,
    BadgeFacts,
    ChallengeRequirement,
    LevelRequirement,
    StreakRequirement,
    TotalRequirement,
    achieved_milestones,
    badges_for_milestones,
    badges_satisfied,
    check_streak_milestones,
    get_badge_def,
    next_milestone,
    requirement_met,
    streak_badge_code,
)
from wellup.progress.challenges import CHALLENGE_REGISTRY
from wellup.progress.domains import Domain


class TestCatalog:
    def test_every_domain_has_every_milestone_badge(self):
        for domain in Domain:
            for days in STREAK_MILESTONES:
                badge = get_badge_def(streak_badge_code(domain, days))
                assert badge is not None
                assert badge.category == BadgeCategory.STREAK
                assert badge.requirement == StreakRequirement(domain=domain, days=days)

    def test_catalog_is_read_only(self):
        with pytest.raises(TypeError):
            BADGE_CATALOG["new"] = BADGE_CATALOG["first_workout"]  # type: ignore[index]

    def test_unknown_code(self):
        assert get_badge_def("nope") is None

    def test_challenge_badges_point_at_registered_challenges(self):
        for badge in BADGE_CATALOG.values():
            if isinstance(badge.requirement, ChallengeRequirement):
                assert badge.requirement.challenge_code in CHALLENGE_REGISTRY

    def test_challenge_reward_badges_exist(self):
        for template in CHALLENGE_REGISTRY.values():
            if template.badge_code:
                assert template.badge_code in BADGE_CATALOG


class TestCheckStreakMilestones:
    def test_crossing_one(self):
        assert check_streak_milestones(6, 7) == [7]

    def test_crossing_several(self):
        assert check_streak_milestones(0, 30) == [3, 7, 14, 30]

    def test_no_crossing(self):
        assert check_streak_milestones(7, 8) == []

    def test_same_value(self):
        assert check_streak_milestones(7, 7) == []

    def test_replay_is_stable(self):
        assert check_streak_milestones(13, 14) == check_streak_milestones(13, 14)

    def test_beyond_last(self):
        assert check_streak_milestones(100, 250) == []


class TestMilestoneHelpers:
    def test_achieved(self):
        assert achieved_milestones(15) == [3, 7, 14]
        assert achieved_milestones(0) == []

    def test_next(self):
        assert next_milestone(0) == 3
        assert next_milestone(7) == 14
        assert next_milestone(100) is None

    def test_badges_for_milestones(self):
        assert badges_for_milestones(Domain.WATER, [3, 7]) == ["water_streak_3", "water_streak_7"]


class TestRequirementMet:
    def test_streak(self):
        req = StreakRequirement(domain=Domain.WORKOUT, days=7)
        assert requirement_met(req, BadgeFacts(streaks={"workout": 7}))
        assert not requirement_met(req, BadgeFacts(streaks={"workout": 6}))
        assert not requirement_met(req, BadgeFacts(streaks={"nutrition": 30}))

    def test_total(self):
        req = TotalRequirement(domain=Domain.ANALYSIS, count=10)
        assert requirement_met(req, BadgeFacts(totals={"analysis": 10}))
        assert not requirement_met(req, BadgeFacts(totals={"analysis": 9}))

    def test_challenge(self):
        req = ChallengeRequirement(challenge_code="workout_streak_7")
        assert requirement_met(req, BadgeFacts(completed_challenges=frozenset({"workout_streak_7"})))
        assert not requirement_met(req, BadgeFacts())

    def test_level(self):
        req = LevelRequirement(level=10)
        assert requirement_met(req, BadgeFacts(level=12))
        assert not requirement_met(req, BadgeFacts(level=9))


class TestBadgesSatisfied:
    def test_empty_facts(self):
        assert badges_satisfied(BadgeFacts()) == []

    def test_first_workout_and_streaks(self):
        codes = badges_satisfied(BadgeFacts(streaks={"workout": 7}, totals={"workout": 1}))
        assert set(codes) == {"workout_streak_3", "workout_streak_7", "first_workout"}
