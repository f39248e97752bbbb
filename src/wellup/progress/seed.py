"""Mirror the in-memory badge catalog into badge_definitions (idempotent upsert).

user_badges references badge_definitions by foreign key, so no badge can
be awarded until the catalog is seeded. Services call bootstrap() once
after init_db(); the arq worker does so on startup.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from wellup.database import create_all, get_session
from wellup.db.dialects import dialect_insert
from wellup.db.models import BadgeDefinition
from wellup.progress.badge_catalog import BADGE_CATALOG

logger = logging.getLogger(__name__)


async def seed_badges(db: AsyncSession) -> int:
    """Upsert every catalog badge. Returns number of badges seeded."""
    seeded = 0
    for badge in BADGE_CATALOG.values():
        stmt = dialect_insert(db, BadgeDefinition).values(
            code=badge.code,
            name=badge.name,
            description=badge.description,
            category=badge.category.value,
            rarity=badge.rarity.value,
            xp_reward=badge.xp_reward,
            requirement=badge.requirement.model_dump(mode="json"),
            sort_order=badge.sort_order,
            is_active=True,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["code"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "category": stmt.excluded.category,
                "rarity": stmt.excluded.rarity,
                "xp_reward": stmt.excluded.xp_reward,
                "requirement": stmt.excluded.requirement,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded


async def bootstrap(create_schema: bool = False) -> int:
    """Prepare an initialized database for progress writes. Returns badges seeded."""
    if create_schema:
        await create_all()
    async for db in get_session():
        return await seed_badges(db)
    return 0
