"""Pure streak helpers: gap detection and display summaries."""

from datetime import date

from wellup.db.models import StreakState
from wellup.progress.domains import Domain
from wellup.progress.streak_service import (
    get_days_to_next_milestone,
    is_streak_broken,
    summarize_streak,
)

TODAY = date(2026, 3, 10)


def _state(current: int, longest: int, last: date, start: date | None = None) -> StreakState:
    return StreakState(
        user_id="u1",
        domain="workout",
        current_streak=current,
        longest_streak=longest,
        last_activity_date=last,
        streak_start_date=start,
    )


class TestIsStreakBroken:
    def test_no_activity(self):
        assert is_streak_broken(None, TODAY)

    def test_today_and_yesterday_keep_it(self):
        assert not is_streak_broken(TODAY, TODAY)
        assert not is_streak_broken(date(2026, 3, 9), TODAY)

    def test_two_days_ago_breaks_it(self):
        assert is_streak_broken(date(2026, 3, 8), TODAY)


class TestDaysToNextMilestone:
    def test_values(self):
        assert get_days_to_next_milestone(Domain.WORKOUT, 0) == 3
        assert get_days_to_next_milestone(Domain.WORKOUT, 5) == 2
        assert get_days_to_next_milestone(Domain.NUTRITION, 7) == 7
        assert get_days_to_next_milestone(Domain.WORKOUT, 100) is None


class TestSummarizeStreak:
    def test_no_state(self):
        summary = summarize_streak(Domain.WATER, None, TODAY)
        assert summary.current_streak == 0
        assert not summary.is_active
        assert summary.next_milestone == 3
        assert summary.badges == []

    def test_active(self):
        summary = summarize_streak(Domain.WORKOUT, _state(8, 10, date(2026, 3, 9), date(2026, 3, 2)), TODAY)
        assert summary.current_streak == 8
        assert summary.longest_streak == 10
        assert summary.is_active
        assert summary.streak_start_date == date(2026, 3, 2)
        assert summary.achieved_milestones == [3, 7]
        assert summary.badges == ["workout_streak_3", "workout_streak_7"]
        assert summary.days_to_next_milestone == 6

    def test_broken_reads_as_zero(self):
        summary = summarize_streak(Domain.WORKOUT, _state(8, 10, date(2026, 3, 5)), TODAY)
        assert summary.current_streak == 0
        assert summary.longest_streak == 10
        assert not summary.is_active
        assert summary.streak_start_date is None
        assert summary.achieved_milestones == []
