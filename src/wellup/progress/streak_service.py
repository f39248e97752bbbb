"""Daily streak tracking per (user, domain) and the activity calendar."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wellup.db.dialects import dialect_insert
from wellup.db.models import ActivityDay, StreakState
from wellup.progress.badge_catalog import (
    achieved_milestones,
    badges_for_milestones,
    check_streak_milestones,
    next_milestone,
)
from wellup.progress.domains import Domain
from wellup.progress.schemas import StreakSummary, StreakUpdate

logger = logging.getLogger(__name__)


def get_days_difference(earlier: date, later: date) -> int:
    """Whole calendar days from earlier to later (negative if later is before)."""
    return (later - earlier).days


def is_streak_broken(last_activity_date: date | None, today: date) -> bool:
    """A streak survives until the end of the day after its last activity."""
    if last_activity_date is None:
        return True
    return get_days_difference(last_activity_date, today) > 1


def get_days_to_next_milestone(domain: Domain, streak: int) -> int | None:
    """Days left until the next milestone, or None past the last one.

    All domains share STREAK_MILESTONES; domain is accepted so callers
    need not know that.
    """
    upcoming = next_milestone(streak)
    if upcoming is None:
        return None
    return upcoming - streak


async def record_activity_day(db: AsyncSession, user_id: str, domain: Domain, activity_date: date) -> None:
    """Mark activity on a calendar day. Repeats are no-ops."""
    stmt = dialect_insert(db, ActivityDay).values(
        user_id=user_id,
        domain=domain.value,
        activity_date=activity_date,
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "domain", "activity_date"])
    await db.execute(stmt)


async def get_activity_dates(
    db: AsyncSession,
    user_id: str,
    domain: Domain,
    start: date | None = None,
    end: date | None = None,
) -> set[date]:
    """Distinct activity dates in [start, end] (either bound optional)."""
    q = select(ActivityDay.activity_date).where(
        ActivityDay.user_id == user_id,
        ActivityDay.domain == domain.value,
    )
    if start is not None:
        q = q.where(ActivityDay.activity_date >= start)
    if end is not None:
        q = q.where(ActivityDay.activity_date <= end)
    result = await db.execute(q)
    return set(result.scalars().all())


async def count_activity_on(db: AsyncSession, user_id: str, day: date, domain: Domain | None = None) -> int:
    """Activity days recorded for user_id on day, across domains unless one is given.

    Each domain counts once per day, so without a domain this is the number
    of domains the user was active in.
    """
    q = select(func.count()).select_from(ActivityDay).where(
        ActivityDay.user_id == user_id,
        ActivityDay.activity_date == day,
    )
    if domain is not None:
        q = q.where(ActivityDay.domain == domain.value)
    result = await db.execute(q)
    return result.scalar_one()


async def get_streak(db: AsyncSession, user_id: str, domain: Domain) -> StreakState | None:
    result = await db.execute(
        select(StreakState).where(
            StreakState.user_id == user_id,
            StreakState.domain == domain.value,
        ).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def record_activity(
    db: AsyncSession,
    user_id: str,
    domain: Domain,
    activity_date: date,
) -> StreakUpdate:
    """Apply one activity on activity_date to the streak. Does not commit.

    - last activity was the day before: current_streak += 1
    - same day (or an older, backdated day): no change
    - gap or first activity: current_streak = 1
    The transition is a single guarded UPDATE, so same-day duplicates
    from concurrent callers collapse to one increment.
    """
    await record_activity_day(db, user_id, domain, activity_date)

    seed = dialect_insert(db, StreakState).values(
        user_id=user_id,
        domain=domain.value,
        current_streak=0,
        longest_streak=0,
    )
    await db.execute(seed.on_conflict_do_nothing(index_elements=["user_id", "domain"]))

    continued = StreakState.last_activity_date == activity_date - timedelta(days=1)
    new_current = case((continued, StreakState.current_streak + 1), else_=1)
    new_longest = case(
        (StreakState.longest_streak >= new_current, StreakState.longest_streak),
        else_=new_current,
    )
    new_start = case((continued, StreakState.streak_start_date), else_=activity_date)

    result = await db.execute(
        update(StreakState)
        .where(
            StreakState.user_id == user_id,
            StreakState.domain == domain.value,
            or_(
                StreakState.last_activity_date.is_(None),
                StreakState.last_activity_date < activity_date,
            ),
        )
        .values(
            current_streak=new_current,
            longest_streak=new_longest,
            streak_start_date=new_start,
            last_activity_date=activity_date,
            updated_at=datetime.now(timezone.utc),
        )
        .returning(StreakState.current_streak, StreakState.longest_streak)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()

    if row is None:
        state = await get_streak(db, user_id, domain)
        return StreakUpdate(
            domain=domain,
            previous_streak=state.current_streak,
            current_streak=state.current_streak,
            longest_streak=state.longest_streak,
            last_activity_date=state.last_activity_date,
            changed=False,
        )

    current, longest = row
    previous = current - 1
    milestones = check_streak_milestones(previous, current)
    if milestones:
        logger.info("User %s reached %s streak milestones %s", user_id, domain.value, milestones)
    return StreakUpdate(
        domain=domain,
        previous_streak=previous,
        current_streak=current,
        longest_streak=longest,
        last_activity_date=activity_date,
        changed=True,
        milestones_crossed=milestones,
    )


def summarize_streak(domain: Domain, state: StreakState | None, today: date) -> StreakSummary:
    """Display summary; a broken streak reads as 0 even before the next activity resets it."""
    if state is None:
        return StreakSummary(
            domain=domain,
            current_streak=0,
            longest_streak=0,
            is_active=False,
            next_milestone=next_milestone(0),
            days_to_next_milestone=get_days_to_next_milestone(domain, 0),
            achieved_milestones=[],
            badges=[],
        )

    broken = is_streak_broken(state.last_activity_date, today)
    effective = 0 if broken else state.current_streak
    achieved = achieved_milestones(effective)
    return StreakSummary(
        domain=domain,
        current_streak=effective,
        longest_streak=state.longest_streak,
        is_active=not broken and effective > 0,
        last_activity_date=state.last_activity_date,
        streak_start_date=state.streak_start_date if not broken else None,
        next_milestone=next_milestone(effective),
        days_to_next_milestone=get_days_to_next_milestone(domain, effective),
        achieved_milestones=achieved,
        badges=badges_for_milestones(domain, achieved),
    )


async def get_streak_summary(
    db: AsyncSession,
    user_id: str,
    domain: Domain,
    today: date | None = None,
) -> StreakSummary:
    if today is None:
        today = datetime.now(timezone.utc).date()
    state = await get_streak(db, user_id, domain)
    return summarize_streak(domain, state, today)
