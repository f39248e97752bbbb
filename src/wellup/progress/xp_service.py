"""XP grant service: atomic increment, idempotency, level-up detection."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wellup.db.dialects import dialect_insert
from wellup.db.models import UserLevel, XPLedger
from wellup.progress.level_curve import calculate_level_info, level_from_total_xp, tier_for_level
from wellup.progress.notifications import LEVEL_UP_CHANNEL, publish_progress_event
from wellup.progress.schemas import LevelInfo, XPGrant, XPHistoryEntry

logger = logging.getLogger(__name__)


async def ensure_user_level(db: AsyncSession, user_id: str) -> None:
    """Create the user's level row if missing. Safe under concurrent callers."""
    stmt = dialect_insert(db, UserLevel).values(user_id=user_id)
    stmt = stmt.on_conflict_do_nothing(index_elements=["user_id"])
    await db.execute(stmt)


async def get_user_level(db: AsyncSession, user_id: str) -> LevelInfo:
    """Level info for a user; users with no XP yet are level 1."""
    result = await db.execute(select(UserLevel.total_xp).where(UserLevel.user_id == user_id))
    total_xp = result.scalar_one_or_none() or 0
    return calculate_level_info(total_xp)


async def grant_xp(
    db: AsyncSession,
    redis: object,
    user_id: str,
    amount: int,
    source: str,
    source_id: str | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> XPGrant:
    """Grant XP to a user. Does not commit.

    1. Insert into xp_ledger (ON CONFLICT on idempotency_key -> replay, nothing granted)
    2. Atomically increment user_levels.total_xp in one statement
    3. Write level/tier/current_xp only if total_xp is still the value we produced
    4. If the level went up, publish level_up
    """
    if amount < 0:
        raise ValueError(f"XP amount must be >= 0, got {amount}")

    now = datetime.now(timezone.utc)

    ledger = dialect_insert(db, XPLedger).values(
        user_id=user_id,
        amount=amount,
        source=source,
        source_id=source_id,
        description=description,
        idempotency_key=idempotency_key,
        created_at=now,
    )
    ledger = ledger.on_conflict_do_nothing(index_elements=["idempotency_key"]).returning(XPLedger.id)
    inserted = (await db.execute(ledger)).scalar_one_or_none()

    await ensure_user_level(db, user_id)

    if inserted is None:
        logger.debug("XP grant replayed, skipping (key=%s)", idempotency_key)
        current = await get_user_level(db, user_id)
        tier = current.tier
        return XPGrant(
            granted=False, amount=0, total_xp=current.total_xp,
            old_level=current.level, new_level=current.level,
            old_tier=tier, new_tier=tier,
        )

    result = await db.execute(
        update(UserLevel)
        .where(UserLevel.user_id == user_id)
        .values(total_xp=UserLevel.total_xp + amount, updated_at=now)
        .returning(UserLevel.total_xp)
    )
    new_total = result.scalar_one()
    old_level = level_from_total_xp(new_total - amount)
    info = calculate_level_info(new_total)

    # A concurrent grant that already moved total_xp past new_total owns the derived columns.
    await db.execute(
        update(UserLevel)
        .where(UserLevel.user_id == user_id, UserLevel.total_xp == new_total)
        .values(level=info.level, current_xp=info.current_xp, tier=info.tier)
    )

    grant = XPGrant(
        granted=True,
        amount=amount,
        total_xp=new_total,
        old_level=old_level,
        new_level=info.level,
        old_tier=tier_for_level(old_level).value,
        new_tier=info.tier,
    )

    if grant.leveled_up:
        logger.info("User %s leveled up %d -> %d (%s)", user_id, old_level, info.level, info.tier)
        await publish_progress_event(redis, LEVEL_UP_CHANNEL, {
            "user_id": user_id,
            "old_level": old_level,
            "new_level": info.level,
            "tier": info.tier,
            "tier_changed": grant.tier_changed,
        })

    return grant


async def get_xp_history(db: AsyncSession, user_id: str, limit: int = 20) -> list[XPHistoryEntry]:
    """Most recent ledger entries first."""
    result = await db.execute(
        select(XPLedger)
        .where(XPLedger.user_id == user_id)
        .order_by(XPLedger.id.desc())
        .limit(limit)
    )
    return [
        XPHistoryEntry(
            amount=row.amount,
            source=row.source,
            source_id=row.source_id,
            description=row.description,
        )
        for row in result.scalars()
    ]
