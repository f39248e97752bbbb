"""Best-effort fan-out of progress events over Redis pub/sub."""

from __future__ import annotations

import json
import logging
from typing import Any

from wellup.config import get_settings

logger = logging.getLogger(__name__)

LEVEL_UP_CHANNEL = "pubsub:level_up"
BADGE_EARNED_CHANNEL = "pubsub:badge_earned"
CHALLENGE_COMPLETED_CHANNEL = "pubsub:challenge_completed"
CHALLENGE_FAILED_CHANNEL = "pubsub:challenge_failed"


async def publish_progress_event(redis: object, channel: str, payload: dict[str, Any]) -> bool:
    """Publish payload on channel. Never raises; returns False on failure or without Redis."""
    if redis is None or not get_settings().publish_progress_events:
        return False
    try:
        await redis.publish(channel, json.dumps(payload, default=str))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to publish %s notification", channel, exc_info=True)
        return False
    return True
