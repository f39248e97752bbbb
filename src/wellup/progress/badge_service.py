"""Badge award service: storage-enforced uniqueness, badge XP, notification."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wellup.db.dialects import dialect_insert
from wellup.db.models import UserBadge
from wellup.exceptions import UnknownBadgeError
from wellup.progress.badge_catalog import BadgeFacts, badges_satisfied, get_badge_def
from wellup.progress.notifications import BADGE_EARNED_CHANNEL, publish_progress_event
from wellup.progress.schemas import XPGrant
from wellup.progress.xp_service import grant_xp

logger = logging.getLogger(__name__)


async def has_badge(db: AsyncSession, user_id: str, code: str) -> bool:
    """Check if user already holds a specific badge."""
    result = await db.execute(
        select(UserBadge.id).where(
            UserBadge.user_id == user_id,
            UserBadge.badge_code == code,
        )
    )
    return result.scalar_one_or_none() is not None


async def get_user_badges(db: AsyncSession, user_id: str) -> list[UserBadge]:
    """Badges held by a user, oldest award first."""
    result = await db.execute(
        select(UserBadge)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.awarded_at.asc(), UserBadge.id.asc())
    )
    return list(result.scalars().all())


async def award_badge(
    db: AsyncSession,
    redis: object,
    user_id: str,
    code: str,
    metadata: dict[str, Any] | None = None,
    grants: list[XPGrant] | None = None,
) -> bool:
    """Award a badge to a user. Does not commit.

    Returns True if newly awarded, False if the user already held it.
    The badge XP grant is appended to grants when a list is passed.
    The UNIQUE(user_id, badge_code) constraint is the only arbiter of
    "already awarded": the insert is ON CONFLICT DO NOTHING, so two
    concurrent calls yield one row and neither raises.
    """
    badge = get_badge_def(code)
    if badge is None:
        raise UnknownBadgeError(code)

    now = datetime.now(timezone.utc)
    stmt = dialect_insert(db, UserBadge).values(
        user_id=user_id,
        badge_code=code,
        awarded_at=now,
        badge_metadata=metadata or {},
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "badge_code"]).returning(UserBadge.id)
    inserted = (await db.execute(stmt)).scalar_one_or_none()
    if inserted is None:
        logger.debug("Badge %s already held by %s", code, user_id)
        return False

    if badge.xp_reward:
        grant = await grant_xp(
            db=db,
            redis=redis,
            user_id=user_id,
            amount=badge.xp_reward,
            source="badge",
            source_id=code,
            description=f'Earned badge: "{badge.name}"',
            idempotency_key=f"badge:{code}:{user_id}",
        )
        if grants is not None:
            grants.append(grant)

    logger.info("Awarded badge %s to %s", code, user_id)
    await publish_progress_event(redis, BADGE_EARNED_CHANNEL, {
        "user_id": user_id,
        "badge_code": code,
        "badge_name": badge.name,
        "rarity": badge.rarity.value,
        "xp_reward": badge.xp_reward,
    })
    return True


async def evaluate_badges(
    db: AsyncSession,
    redis: object,
    user_id: str,
    facts: BadgeFacts,
    grants: list[XPGrant] | None = None,
) -> list[str]:
    """Award every catalog badge whose requirement holds. Returns newly awarded codes."""
    awarded = []
    for code in badges_satisfied(facts):
        if await award_badge(db, redis, user_id, code, grants=grants):
            awarded.append(code)
    return awarded
