"""Percent-complete for a challenge target given a progress snapshot."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import assert_never

from wellup.progress.challenges import CombinedTarget, CountTarget, DailyTarget, StreakTarget, Target
from wellup.progress.schemas import ProgressSnapshot


def _percent(value: int, goal: int) -> int:
    if value <= 0:
        return 0
    return min(100, value * 100 // goal)


def daily_window(target: DailyTarget, snapshot: ProgressSnapshot, joined_on: date | None) -> tuple[date, date]:
    """Inclusive (start, end) of the window a DailyTarget counts days in."""
    as_of = snapshot.as_of or datetime.now(timezone.utc).date()
    if target.window == "fixed" and joined_on is not None:
        start = joined_on
        return start, start + timedelta(days=target.window_days - 1)
    return as_of - timedelta(days=target.window_days - 1), as_of


def calculate_progress(target: Target, snapshot: ProgressSnapshot, joined_on: date | None = None) -> int:
    """Integer progress 0..100.

    A fixed DailyTarget window starts at joined_on; without it the
    window falls back to rolling.
    """
    if isinstance(target, StreakTarget):
        return _percent(snapshot.current_streak, target.days)
    if isinstance(target, CountTarget):
        return _percent(snapshot.counts.get(target.domain.value, 0), target.count)
    if isinstance(target, DailyTarget):
        start, end = daily_window(target, snapshot, joined_on)
        days = sum(1 for d in snapshot.activity_dates if start <= d <= end)
        return _percent(days, target.count)
    if isinstance(target, CombinedTarget):
        return min(calculate_progress(sub, snapshot, joined_on) for sub in target.sub_targets)
    assert_never(target)
