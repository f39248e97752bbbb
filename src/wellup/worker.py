"""arq worker running the challenge expiry sweep.

Run with: arq wellup.worker.WorkerSettings
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.exc import SQLAlchemyError

from wellup.config import get_settings
from wellup.database import close_db, get_session, init_db
from wellup.logging_config import setup_logging
from wellup.progress.challenge_service import process_expired_challenges
from wellup.progress.seed import bootstrap
from wellup.redis_client import close_redis, get_redis, init_redis

logger = structlog.get_logger()

settings = get_settings()


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize logging, DB and Redis on worker startup, then seed badges."""
    setup_logging(settings)
    await init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    await init_redis(settings.redis_url, max_connections=settings.redis_max_connections)
    ctx["redis"] = get_redis()

    # Idempotent; badge awards need the definitions present.
    try:
        seeded = await bootstrap()
    except SQLAlchemyError:
        logger.warning("Badge seeding failed (tables may not exist yet)", exc_info=True)
    else:
        logger.info("Badge definitions seeded", count=seeded)
    logger.info("Progress worker started", environment=settings.environment)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    ctx.pop("redis", None)
    await close_redis()
    await close_db()
    logger.info("Progress worker shut down")


async def expire_challenges(ctx: dict) -> int:  # type: ignore[type-arg]
    """Cron task: fail every active challenge past its end time and announce it."""
    now = datetime.now(timezone.utc)
    async for session in get_session():
        expired = await process_expired_challenges(session, now, redis=ctx.get("redis"))
        logger.info("Challenge expiry sweep done", expired=expired, now=now.isoformat())
        return expired
    return 0


class WorkerSettings:
    """arq worker settings for the progress engine."""

    functions = [expire_challenges]
    cron_jobs = [
        cron(expire_challenges, minute=settings.expiry_sweep_minutes, second=0, run_at_startup=True),
    ]
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = settings.worker_max_jobs
    job_timeout = settings.worker_job_timeout_seconds
    allow_abort_jobs = True
