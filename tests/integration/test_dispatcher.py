"""End-to-end event dispatch tests."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from wellup.db.models import UserBadge, XPLedger
from wellup.exceptions import InvalidStateError, PersistenceError
from wellup.progress.challenge_service import get_user_challenge, join_challenge
from wellup.progress.dispatcher import handle_domain_event
from wellup.progress.domains import Domain
from wellup.progress.level_curve import total_xp_for_level
from wellup.progress.schemas import DomainEvent
from wellup.progress.streak_service import get_streak
from wellup.progress.xp_service import get_user_level, grant_xp

USER = "user-dispatch"
DAY0 = date(2026, 3, 2)
JOINED_AT = datetime(2026, 3, 2, 7, 30, tzinfo=timezone.utc)


def _workout(day: int, total: int | None = None, **kwargs) -> DomainEvent:
    return DomainEvent(
        domain=Domain.WORKOUT,
        activity_date=DAY0 + timedelta(days=day),
        counters={"workout": total if total is not None else day + 1},
        event_id=f"workout-{day}",
        **kwargs,
    )


class TestSingleEvent:
    @pytest.mark.asyncio
    async def test_first_workout(self, db_session, mock_redis):
        result = await handle_domain_event(db_session, mock_redis, USER, _workout(0))

        assert result.xp_awarded == 10
        assert result.streak.current_streak == 1
        assert result.new_badges == ["first_workout"]
        assert result.level.total_xp == 30  # 10 activity + 20 badge
        assert result.level_up is None
        assert result.completed_challenges == []

    @pytest.mark.asyncio
    async def test_replayed_event_is_noop(self, db_session, mock_redis):
        await handle_domain_event(db_session, mock_redis, USER, _workout(0))
        replay = await handle_domain_event(db_session, mock_redis, USER, _workout(0))

        assert replay.xp_awarded == 0
        assert replay.new_badges == []
        assert not replay.streak.changed
        assert replay.level.total_xp == 30

    @pytest.mark.asyncio
    async def test_event_without_id_is_not_deduplicated(self, db_session, mock_redis):
        event = DomainEvent(domain=Domain.WATER, activity_date=DAY0, xp_amount=5)
        await handle_domain_event(db_session, mock_redis, USER, event)
        result = await handle_domain_event(db_session, mock_redis, USER, event)

        assert result.xp_awarded == 5
        assert result.level.total_xp == 10

    @pytest.mark.asyncio
    async def test_zero_xp_event_still_counts_for_streak(self, db_session, mock_redis):
        event = DomainEvent(domain=Domain.CHECKIN, activity_date=DAY0, xp_amount=0)
        result = await handle_domain_event(db_session, mock_redis, USER, event)

        assert result.xp_awarded == 0
        assert result.streak.current_streak == 1
        count = await db_session.execute(select(func.count()).select_from(XPLedger))
        assert count.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_level_up_reported(self, db_session, mock_redis):
        result = await handle_domain_event(db_session, mock_redis, USER, _workout(0, xp_amount=500))

        # 500 + 20 for first_workout
        assert result.level.total_xp == 520
        assert result.level_up is not None
        assert (result.level_up.old_level, result.level_up.new_level) == (1, 3)
        assert result.tier_change is None

    @pytest.mark.asyncio
    async def test_tier_change_and_level_badge(self, db_session, mock_redis):
        event = DomainEvent(
            domain=Domain.ANALYSIS,
            activity_date=DAY0,
            xp_amount=total_xp_for_level(10),
        )
        result = await handle_domain_event(db_session, mock_redis, USER, event)

        assert result.tier_change is not None
        assert (result.tier_change.old_tier, result.tier_change.new_tier) == ("beginner", "practitioner")
        assert "level_10" in result.new_badges


class TestConcurrentEvents:
    @pytest.mark.asyncio
    async def test_one_level_up_across_concurrent_events(self, db_session, session_factory, mock_redis):
        await grant_xp(db_session, None, USER, 95, source="seed")
        await db_session.commit()

        async def water(event_id: str):
            event = DomainEvent(domain=Domain.WATER, activity_date=DAY0, xp_amount=10, event_id=event_id)
            async with session_factory() as session:
                return await handle_domain_event(session, mock_redis, USER, event)

        first, second = await asyncio.gather(water("water-a"), water("water-b"))

        level_ups = [r.level_up for r in (first, second) if r.level_up is not None]
        assert len(level_ups) == 1
        assert (level_ups[0].old_level, level_ups[0].new_level) == (1, 2)
        assert first.xp_awarded == second.xp_awarded == 10
        assert (await get_user_level(db_session, USER)).level == 2


class TestStreakChallengeScenario:
    @pytest.mark.asyncio
    async def test_seven_day_streak_completes_once(self, db_session, mock_redis):
        joined = await join_challenge(db_session, USER, "workout_streak_7", now=JOINED_AT)

        results = []
        for day in range(7):
            results.append(await handle_domain_event(db_session, mock_redis, USER, _workout(day)))

        assert all(r.completed_challenges == [] for r in results[:6])
        final = results[6]
        assert final.streak.current_streak == 7
        assert len(final.completed_challenges) == 1
        completion = final.completed_challenges[0]
        assert completion.user_challenge_id == joined.id
        assert completion.xp_reward == 100
        assert completion.badge_code == "week_warrior"
        assert "week_warrior" in final.new_badges
        assert "workout_streak_7" in final.new_badges
        assert "workout_streak_3" in results[2].new_badges

        stored = await get_user_challenge(db_session, joined.id)
        assert stored.status == "completed"
        assert stored.progress == 100

        week_warrior = await db_session.execute(
            select(func.count()).select_from(UserBadge).where(
                UserBadge.user_id == USER, UserBadge.badge_code == "week_warrior",
            )
        )
        assert week_warrior.scalar_one() == 1
        challenge_xp = await db_session.execute(
            select(func.count()).select_from(XPLedger).where(
                XPLedger.idempotency_key == f"challenge:{joined.id}",
            )
        )
        assert challenge_xp.scalar_one() == 1

        # Another day does not complete it again.
        extra = await handle_domain_event(db_session, mock_redis, USER, _workout(7))
        assert extra.completed_challenges == []

    @pytest.mark.asyncio
    async def test_progress_tracks_streak(self, db_session, mock_redis):
        joined = await join_challenge(db_session, USER, "workout_streak_7", now=JOINED_AT)
        for day in range(4):
            await handle_domain_event(db_session, mock_redis, USER, _workout(day))

        assert (await get_user_challenge(db_session, joined.id)).progress == 57

    @pytest.mark.asyncio
    async def test_other_domain_challenges_untouched(self, db_session, mock_redis):
        water = await join_challenge(db_session, USER, "water_streak_14", now=JOINED_AT)
        await handle_domain_event(db_session, mock_redis, USER, _workout(0))

        assert (await get_user_challenge(db_session, water.id)).progress == 0

    @pytest.mark.asyncio
    async def test_daily_target_counts_calendar_days(self, db_session, mock_redis):
        joined = await join_challenge(db_session, USER, "workout_3_per_week", now=JOINED_AT)
        await handle_domain_event(db_session, mock_redis, USER, _workout(0))
        await handle_domain_event(db_session, mock_redis, USER, _workout(2))
        result = await handle_domain_event(db_session, mock_redis, USER, _workout(5))

        assert [c.challenge_code for c in result.completed_challenges] == ["workout_3_per_week"]
        assert (await get_user_challenge(db_session, joined.id)).status == "completed"

    @pytest.mark.asyncio
    async def test_fixed_window_starts_on_local_join_day(self, db_session, mock_redis):
        # 23:30 UTC on Mar 1 is already Mar 2 for the user.
        joined = await join_challenge(
            db_session, USER, "workout_3_per_week",
            now=datetime(2026, 3, 1, 23, 30, tzinfo=timezone.utc),
            joined_on=date(2026, 3, 2),
        )
        for day in (4, 5, 6):
            result = await handle_domain_event(db_session, mock_redis, USER, _workout(day))

        assert [c.challenge_code for c in result.completed_challenges] == ["workout_3_per_week"]
        assert (await get_user_challenge(db_session, joined.id)).progress == 100


class TestFailureHandling:
    @pytest.mark.asyncio
    async def test_challenge_race_is_not_an_error(self, db_session, mock_redis):
        await join_challenge(db_session, USER, "workout_streak_7", now=JOINED_AT)
        with patch(
            "wellup.progress.dispatcher.update_challenge_progress",
            AsyncMock(side_effect=InvalidStateError(1, "failed")),
        ):
            result = await handle_domain_event(db_session, mock_redis, USER, _workout(0))

        assert result.completed_challenges == []
        assert result.xp_awarded == 10

    @pytest.mark.asyncio
    async def test_store_failure_keeps_earlier_steps(self, db_session, mock_redis):
        boom = OperationalError("UPDATE user_challenges", {}, Exception("database is locked"))
        with patch("wellup.progress.dispatcher.get_active_challenges", AsyncMock(side_effect=boom)):
            with pytest.raises(PersistenceError) as exc:
                await handle_domain_event(db_session, mock_redis, USER, _workout(0))

        assert exc.value.retryable
        partial = exc.value.partial_result
        assert partial.xp_awarded == 10
        assert partial.streak.current_streak == 1
        assert partial.new_badges == ["first_workout"]

        # XP and streak were committed before the failing step.
        assert (await get_user_level(db_session, USER)).total_xp == 30
        assert (await get_streak(db_session, USER, Domain.WORKOUT)).current_streak == 1

        # Re-sending the event finishes the job without double-counting.
        retry = await handle_domain_event(db_session, mock_redis, USER, _workout(0))
        assert retry.xp_awarded == 0
        assert retry.level.total_xp == 30
