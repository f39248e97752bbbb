"""Event and result model tests."""

from datetime import date

import pytest
from pydantic import ValidationError

from wellup.progress.domains import DEFAULT_ACTIVITY_XP, Domain
from wellup.progress.schemas import ChallengeCompletion, ChallengeProgressUpdate, DomainEvent, XPGrant


class TestDomainEvent:
    def test_default_xp_per_domain(self):
        for domain in Domain:
            event = DomainEvent(domain=domain, activity_date=date(2026, 3, 1))
            assert event.effective_xp == DEFAULT_ACTIVITY_XP[domain]

    def test_explicit_xp_wins(self):
        event = DomainEvent(domain=Domain.WORKOUT, activity_date=date(2026, 3, 1), xp_amount=0)
        assert event.effective_xp == 0

    def test_negative_xp_rejected(self):
        with pytest.raises(ValidationError):
            DomainEvent(domain=Domain.WORKOUT, activity_date=date(2026, 3, 1), xp_amount=-5)

    def test_domain_from_string(self):
        event = DomainEvent(domain="water", activity_date="2026-03-01", counters={"water": 3})
        assert event.domain is Domain.WATER
        assert event.activity_date == date(2026, 3, 1)


class TestXPGrant:
    def test_flags(self):
        grant = XPGrant(
            granted=True, amount=150, total_xp=150,
            old_level=1, new_level=2, old_tier="beginner", new_tier="beginner",
        )
        assert grant.leveled_up
        assert not grant.tier_changed


class TestChallengeProgressUpdate:
    def test_completed_follows_completion(self):
        update = ChallengeProgressUpdate(user_challenge_id=1, challenge_code="c", progress=50)
        assert not update.completed
        done = ChallengeProgressUpdate(
            user_challenge_id=1, challenge_code="c", progress=100,
            completion=ChallengeCompletion(user_challenge_id=1, challenge_code="c", xp_reward=10),
        )
        assert done.completed
