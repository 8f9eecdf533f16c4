"""Fixed-window rate limiter backed by Redis.

INCR the per-owner counter unconditionally, set the window expiry on the
first hit, and compare the returned count against the limit. Concurrent
requests may over-count slightly; the limit only needs to hold approximately.
"""

import enum
import logging
from dataclasses import dataclass

import redis.asyncio as aioredis

from whitewall.config import settings

logger = logging.getLogger(__name__)


class RateLimitedAction(enum.Enum):
    IMAGE = "generate"
    VIDEO = "generate-video"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    count: int
    limit: int
    window_seconds: int


def _get_rate_config(action: RateLimitedAction) -> tuple[int, int]:
    """Return (limit, window_seconds) for an action."""
    if action is RateLimitedAction.VIDEO:
        return settings.rate_limit_video_limit, settings.rate_limit_video_window_seconds
    return settings.rate_limit_image_limit, settings.rate_limit_image_window_seconds


def rate_limit_key(action: RateLimitedAction, owner_address: str) -> str:
    return f"ratelimit:{action.value}:{owner_address.lower()}"


async def check_rate_limit(
    redis: aioredis.Redis,
    action: RateLimitedAction,
    owner_address: str,
) -> RateLimitResult:
    limit, window = _get_rate_config(action)
    key = rate_limit_key(action, owner_address)

    count = int(await redis.incr(key))
    if count == 1:
        await redis.expire(key, window)

    allowed = count <= limit
    if not allowed:
        logger.info("Rate limit hit for %s (%d/%d in %ds)", key, count, limit, window)
    return RateLimitResult(allowed=allowed, count=count, limit=limit, window_seconds=window)
