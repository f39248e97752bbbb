"""Challenge lifecycle: join, progress, completion, terminal transitions, expiry.

Every status change is a conditional UPDATE ... WHERE status = 'active';
rowcount tells the caller whether it won. Terminal rows never go back to
active, so completion, abandonment and the expiry sweep can race freely.
Each public operation commits its own unit of work.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import NoReturn

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wellup.db.models import UserChallenge
from wellup.exceptions import (
    AlreadyJoinedError,
    InvalidStateError,
    UnknownChallengeError,
    UserChallengeNotFoundError,
)
from wellup.progress.badge_service import award_badge
from wellup.progress.challenges import ChallengeStatus, ChallengeTemplate, get_challenge
from wellup.progress.domains import Domain
from wellup.progress.notifications import (
    CHALLENGE_COMPLETED_CHANNEL,
    CHALLENGE_FAILED_CHANNEL,
    publish_progress_event,
)
from wellup.progress.progress_calculator import calculate_progress
from wellup.progress.schemas import ChallengeCompletion, ChallengeProgressUpdate, ProgressSnapshot, XPGrant
from wellup.progress.xp_service import grant_xp

logger = logging.getLogger(__name__)

ACTIVE = ChallengeStatus.ACTIVE.value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _template_for(code: str) -> ChallengeTemplate:
    template = get_challenge(code)
    if template is None:
        raise UnknownChallengeError(code)
    return template


async def get_user_challenge(db: AsyncSession, user_challenge_id: int) -> UserChallenge | None:
    result = await db.execute(
        select(UserChallenge)
        .where(UserChallenge.id == user_challenge_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _raise_not_active(db: AsyncSession, user_challenge_id: int, user_id: str | None = None) -> NoReturn:
    """Explain a conditional update that matched nothing."""
    row = await get_user_challenge(db, user_challenge_id)
    if row is None or (user_id is not None and row.user_id != user_id):
        raise UserChallengeNotFoundError(user_challenge_id)
    raise InvalidStateError(user_challenge_id, row.status)


async def join_challenge(
    db: AsyncSession,
    user_id: str,
    challenge_code: str,
    now: datetime | None = None,
    joined_on: date | None = None,
) -> UserChallenge:
    """Start an active run of a challenge.

    joined_on is the user's local calendar day of joining and anchors
    fixed daily windows. It defaults to the UTC date of now.

    The partial unique index on (user_id, challenge_code) WHERE status =
    'active' rejects a second concurrent join. A finished run does not
    block joining again.
    """
    template = _template_for(challenge_code)
    now = now or _utcnow()
    target_end_at = None
    if template.duration_days is not None:
        target_end_at = now + timedelta(days=template.duration_days)

    row = UserChallenge(
        user_id=user_id,
        challenge_code=template.code,
        domain=template.domain.value,
        status=ACTIVE,
        progress=0,
        joined_at=now,
        joined_on=joined_on or now.date(),
        target_end_at=target_end_at,
        reward_claimed=False,
    )
    db.add(row)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise AlreadyJoinedError(user_id, challenge_code) from e

    logger.info("User %s joined challenge %s (ends %s)", user_id, challenge_code, target_end_at)
    return row


async def _complete(
    db: AsyncSession,
    redis: object,
    row: UserChallenge,
    template: ChallengeTemplate,
    now: datetime,
    grants: list[XPGrant] | None = None,
) -> ChallengeCompletion:
    """Claim the active -> completed transition and pay out. Does not commit."""
    result = await db.execute(
        update(UserChallenge)
        .where(UserChallenge.id == row.id, UserChallenge.status == ACTIVE)
        .values(
            status=ChallengeStatus.COMPLETED.value,
            progress=100,
            completed_at=now,
            ended_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        await _raise_not_active(db, row.id)

    if template.xp_reward:
        grant = await grant_xp(
            db=db,
            redis=redis,
            user_id=row.user_id,
            amount=template.xp_reward,
            source="challenge",
            source_id=str(row.id),
            description=f'Completed challenge: "{template.name}"',
            idempotency_key=f"challenge:{row.id}",
        )
        if grants is not None:
            grants.append(grant)

    badge_awarded = False
    if template.badge_code:
        badge_awarded = await award_badge(
            db, redis, row.user_id, template.badge_code,
            metadata={"user_challenge_id": row.id},
            grants=grants,
        )

    logger.info("User %s completed challenge %s (#%d)", row.user_id, template.code, row.id)
    await publish_progress_event(redis, CHALLENGE_COMPLETED_CHANNEL, {
        "user_id": row.user_id,
        "user_challenge_id": row.id,
        "challenge_code": template.code,
        "xp_reward": template.xp_reward,
        "badge_code": template.badge_code,
    })
    return ChallengeCompletion(
        user_challenge_id=row.id,
        challenge_code=template.code,
        xp_reward=template.xp_reward,
        badge_code=template.badge_code,
        badge_awarded=badge_awarded,
    )


async def update_challenge_progress(
    db: AsyncSession,
    redis: object,
    user_challenge_id: int,
    snapshot: ProgressSnapshot,
    now: datetime | None = None,
    grants: list[XPGrant] | None = None,
) -> ChallengeProgressUpdate:
    """Recompute progress from snapshot; completes the run at 100.

    Raises InvalidStateError if the run is terminal, including when a
    concurrent completion or the expiry sweep got there first.
    """
    row = await get_user_challenge(db, user_challenge_id)
    if row is None:
        raise UserChallengeNotFoundError(user_challenge_id)
    if row.status != ACTIVE:
        raise InvalidStateError(user_challenge_id, row.status)

    template = _template_for(row.challenge_code)
    progress = calculate_progress(template.target, snapshot, joined_on=row.joined_on)

    if progress >= 100:
        completion = await _complete(db, redis, row, template, now or _utcnow(), grants)
        await db.commit()
        return ChallengeProgressUpdate(
            user_challenge_id=row.id,
            challenge_code=row.challenge_code,
            progress=100,
            completion=completion,
        )

    result = await db.execute(
        update(UserChallenge)
        .where(UserChallenge.id == user_challenge_id, UserChallenge.status == ACTIVE)
        .values(progress=progress)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        await _raise_not_active(db, user_challenge_id)
    await db.commit()

    logger.debug("Challenge #%d progress %d%%", user_challenge_id, progress)
    return ChallengeProgressUpdate(
        user_challenge_id=row.id,
        challenge_code=row.challenge_code,
        progress=progress,
    )


async def complete_challenge(
    db: AsyncSession,
    redis: object,
    user_challenge_id: int,
    now: datetime | None = None,
    grants: list[XPGrant] | None = None,
) -> ChallengeCompletion:
    """Force completion regardless of progress. Exactly-once via the status guard."""
    row = await get_user_challenge(db, user_challenge_id)
    if row is None:
        raise UserChallengeNotFoundError(user_challenge_id)
    if row.status != ACTIVE:
        raise InvalidStateError(user_challenge_id, row.status)

    completion = await _complete(db, redis, row, _template_for(row.challenge_code), now or _utcnow(), grants)
    await db.commit()
    return completion


async def _end(
    db: AsyncSession,
    user_challenge_id: int,
    status: ChallengeStatus,
    now: datetime,
    user_id: str | None = None,
) -> None:
    stmt = update(UserChallenge).where(
        UserChallenge.id == user_challenge_id,
        UserChallenge.status == ACTIVE,
    )
    if user_id is not None:
        stmt = stmt.where(UserChallenge.user_id == user_id)
    result = await db.execute(
        stmt.values(status=status.value, ended_at=now).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        await _raise_not_active(db, user_challenge_id, user_id)
    await db.commit()
    logger.info("Challenge #%d %s", user_challenge_id, status.value)


async def abandon_challenge(
    db: AsyncSession,
    user_id: str,
    user_challenge_id: int,
    now: datetime | None = None,
) -> None:
    """User-initiated withdrawal. Only the owner can abandon a run."""
    await _end(db, user_challenge_id, ChallengeStatus.ABANDONED, now or _utcnow(), user_id=user_id)


async def fail_challenge(db: AsyncSession, user_challenge_id: int, now: datetime | None = None) -> None:
    await _end(db, user_challenge_id, ChallengeStatus.FAILED, now or _utcnow())


async def process_expired_challenges(
    db: AsyncSession,
    now: datetime | None = None,
    redis: object = None,
) -> int:
    """Fail every active run whose target_end_at has passed. Returns rows moved.

    Only ever moves rows out of 'active', so a second sweep over the same
    data changes nothing. Each failed run is announced on the
    challenge_failed channel after commit.
    """
    now = now or _utcnow()
    result = await db.execute(
        update(UserChallenge)
        .where(
            UserChallenge.status == ACTIVE,
            UserChallenge.target_end_at.is_not(None),
            UserChallenge.target_end_at < now,
        )
        .values(status=ChallengeStatus.FAILED.value, ended_at=now)
        .returning(UserChallenge.id, UserChallenge.user_id, UserChallenge.challenge_code)
        .execution_options(synchronize_session=False)
    )
    failed = result.all()
    await db.commit()
    if not failed:
        return 0

    logger.info("Expired %d challenges", len(failed))
    for user_challenge_id, user_id, challenge_code in failed:
        await publish_progress_event(redis, CHALLENGE_FAILED_CHANNEL, {
            "user_id": user_id,
            "user_challenge_id": user_challenge_id,
            "challenge_code": challenge_code,
            "reason": "expired",
        })
    return len(failed)


async def get_user_challenges(
    db: AsyncSession,
    user_id: str,
    status: ChallengeStatus | None = None,
) -> list[UserChallenge]:
    q = select(UserChallenge).where(UserChallenge.user_id == user_id)
    if status is not None:
        q = q.where(UserChallenge.status == status.value)
    result = await db.execute(
        q.order_by(UserChallenge.joined_at.desc(), UserChallenge.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_active_challenges(db: AsyncSession, user_id: str, domain: Domain) -> list[UserChallenge]:
    result = await db.execute(
        select(UserChallenge)
        .where(
            UserChallenge.user_id == user_id,
            UserChallenge.domain == domain.value,
            UserChallenge.status == ACTIVE,
        )
        .order_by(UserChallenge.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def claim_challenge_reward(db: AsyncSession, user_challenge_id: int, user_id: str) -> bool:
    """Mark a completed run's reward as claimed. False if already claimed.

    XP is granted at completion; this only records that the user saw it.
    """
    result = await db.execute(
        update(UserChallenge)
        .where(
            UserChallenge.id == user_challenge_id,
            UserChallenge.user_id == user_id,
            UserChallenge.status == ChallengeStatus.COMPLETED.value,
            UserChallenge.reward_claimed.is_(False),
        )
        .values(reward_claimed=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        await db.commit()
        return True

    row = await get_user_challenge(db, user_challenge_id)
    if row is None or row.user_id != user_id:
        raise UserChallengeNotFoundError(user_challenge_id)
    if row.status != ChallengeStatus.COMPLETED.value:
        raise InvalidStateError(user_challenge_id, row.status)
    return False
