"""Single entry point that turns a domain event into progress.

Steps commit independently, in order:
1. XP for the activity
2. streak for the event's domain, milestone badges, other earned badges
3. progress of every active challenge in the domain, completing any at 100

A store failure surfaces as PersistenceError carrying whatever was
already committed; re-sending the same event is safe because every step
is idempotent (XP by event_id, streaks per day, badges by unique key,
challenge completion by status guard).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from wellup.db.models import UserChallenge
from wellup.exceptions import InvalidStateError, PersistenceError, UnknownChallengeError
from wellup.progress.badge_catalog import BadgeFacts, badges_for_milestones
from wellup.progress.badge_service import award_badge, evaluate_badges
from wellup.progress.challenge_service import get_active_challenges, update_challenge_progress
from wellup.progress.challenges import ChallengeStatus, CombinedTarget, DailyTarget, Target, get_challenge
from wellup.progress.schemas import (
    DomainEvent,
    LevelUp,
    ProgressResult,
    ProgressSnapshot,
    StreakUpdate,
    TierChange,
    XPGrant,
)
from wellup.progress.streak_service import get_activity_dates, record_activity
from wellup.progress.xp_service import get_user_level, grant_xp

logger = logging.getLogger(__name__)


def _longest_window(target: Target) -> int:
    if isinstance(target, DailyTarget):
        return target.window_days
    if isinstance(target, CombinedTarget):
        return max(_longest_window(sub) for sub in target.sub_targets)
    return 0


def _apply_level_changes(result: ProgressResult, grants: list[XPGrant]) -> None:
    """Derive level and tier changes from this event's own grants.

    Each grant carries the before/after level read atomically with its
    increment, so a concurrent event for the same user cannot make two
    results report the same level-up.
    """
    applied = [g for g in grants if g.granted and g.amount > 0]
    if not applied:
        return
    first = min(applied, key=lambda g: g.old_level)
    last = max(applied, key=lambda g: g.new_level)
    if last.new_level > first.old_level:
        result.level_up = LevelUp(old_level=first.old_level, new_level=last.new_level)
    if last.new_tier != first.old_tier:
        result.tier_change = TierChange(old_tier=first.old_tier, new_tier=last.new_tier)


class ProgressDispatcher:
    """Routes one user's domain events through XP, streaks, badges and challenges."""

    def __init__(self, db: AsyncSession, redis: object) -> None:
        self.db = db
        self.redis = redis

    async def handle(self, user_id: str, event: DomainEvent, now: datetime | None = None) -> ProgressResult:
        result = ProgressResult()
        grants: list[XPGrant] = []
        step = "xp"
        try:
            pending: list[XPGrant] = []
            await self._award_xp(user_id, event, result, pending)
            await self.db.commit()
            grants.extend(pending)

            step = "streak"
            streak = await record_activity(self.db, user_id, event.domain, event.activity_date)
            result.streak = streak
            pending = []
            await self._award_badges(user_id, event, streak, result, pending)
            await self.db.commit()
            grants.extend(pending)

            step = "challenges"
            await self._update_challenges(user_id, event, streak, result, grants, now)

            result.level = await get_user_level(self.db, user_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            _apply_level_changes(result, grants)
            logger.error("Progress step %s failed for %s: %s", step, user_id, e)
            raise PersistenceError(f"Progress step '{step}' failed", partial_result=result) from e

        _apply_level_changes(result, grants)
        return result

    async def _award_xp(
        self,
        user_id: str,
        event: DomainEvent,
        result: ProgressResult,
        grants: list[XPGrant],
    ) -> None:
        amount = event.effective_xp
        if amount == 0:
            return
        grant = await grant_xp(
            db=self.db,
            redis=self.redis,
            user_id=user_id,
            amount=amount,
            source=event.domain.value,
            source_id=event.event_id,
            description=f"{event.domain.value} activity on {event.activity_date.isoformat()}",
            idempotency_key=f"event:{event.event_id}" if event.event_id else None,
        )
        grants.append(grant)
        result.xp_awarded = grant.amount

    async def _award_badges(
        self,
        user_id: str,
        event: DomainEvent,
        streak: StreakUpdate,
        result: ProgressResult,
        grants: list[XPGrant],
    ) -> None:
        for code in badges_for_milestones(event.domain, streak.milestones_crossed):
            if await award_badge(
                self.db, self.redis, user_id, code,
                metadata={"streak": streak.current_streak},
                grants=grants,
            ):
                result.new_badges.append(code)

        completed = await self.db.execute(
            select(UserChallenge.challenge_code).where(
                UserChallenge.user_id == user_id,
                UserChallenge.status == ChallengeStatus.COMPLETED.value,
            )
        )
        level = await get_user_level(self.db, user_id)
        facts = BadgeFacts(
            streaks={event.domain.value: streak.current_streak},
            totals=dict(event.counters),
            completed_challenges=frozenset(completed.scalars().all()),
            level=level.level,
        )
        for code in await evaluate_badges(self.db, self.redis, user_id, facts, grants):
            result.new_badges.append(code)

    async def _snapshot(
        self,
        user_id: str,
        event: DomainEvent,
        streak: StreakUpdate,
        challenges: list[UserChallenge],
    ) -> ProgressSnapshot:
        as_of = event.activity_date
        earliest: date = as_of
        for row in challenges:
            template = get_challenge(row.challenge_code)
            if template is None:
                continue
            window = _longest_window(template.target)
            if window:
                earliest = min(earliest, row.joined_on, as_of - timedelta(days=window - 1))
        dates = await get_activity_dates(self.db, user_id, event.domain, start=earliest, end=as_of)
        return ProgressSnapshot(
            current_streak=streak.current_streak,
            counts=dict(event.counters),
            activity_dates=frozenset(dates),
            as_of=as_of,
        )

    async def _update_challenges(
        self,
        user_id: str,
        event: DomainEvent,
        streak: StreakUpdate,
        result: ProgressResult,
        grants: list[XPGrant],
        now: datetime | None,
    ) -> None:
        challenges = await get_active_challenges(self.db, user_id, event.domain)
        if not challenges:
            return
        snapshot = await self._snapshot(user_id, event, streak, challenges)

        for row in challenges:
            pending: list[XPGrant] = []
            try:
                progress = await update_challenge_progress(
                    self.db, self.redis, row.id, snapshot, now=now, grants=pending,
                )
            except InvalidStateError:
                # Completed or expired concurrently.
                logger.debug("Challenge #%d no longer active, skipping", row.id)
                continue
            except UnknownChallengeError:
                logger.warning("Active challenge #%d has unregistered code %s", row.id, row.challenge_code)
                continue
            grants.extend(pending)
            completion = progress.completion
            if completion is not None:
                result.completed_challenges.append(completion)
                if completion.badge_awarded and completion.badge_code:
                    result.new_badges.append(completion.badge_code)


async def handle_domain_event(
    db: AsyncSession,
    redis: object,
    user_id: str,
    event: DomainEvent,
    now: datetime | None = None,
) -> ProgressResult:
    """Apply one domain event for user_id and return what changed."""
    return await ProgressDispatcher(db, redis).handle(user_id, event, now=now)
