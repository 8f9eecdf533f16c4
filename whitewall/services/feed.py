"""Feed persistence in Redis: license plate records, ordered indexes, counters.

Layout:
    gen:<id>                 hash, every value a string
    feed:generations         sorted set of ids, score = decision time (ms)
    feed:owner:<address>     same, per requester
    feed:stats:granted       counter
    feed:stats:denied        counter
    feed:stats:agents        set of agent ids ever seen

Pages are read newest-first; the cursor is the timestamp of the last entry
returned and the next page holds scores strictly below it.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from whitewall.config import settings
from whitewall.schemas.feed import FeedEntry, FeedPage, FeedStats

logger = logging.getLogger(__name__)

FEED_KEY = "feed:generations"
STATS_GRANTED = "feed:stats:granted"
STATS_DENIED = "feed:stats:denied"
STATS_AGENTS = "feed:stats:agents"


def gen_key(record_id: str) -> str:
    return f"gen:{record_id}"


def owner_feed_key(owner_address: str) -> str:
    return f"feed:owner:{owner_address.lower()}"


def new_record_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Decision:
    record_id: str
    prompt: str
    granted: bool
    agent_id: str
    owner_address: str
    human_verified: bool
    tier: int
    artifact_url: str = ""
    reason: str = ""
    timestamp: int = 0

    def to_hash(self) -> dict[str, str]:
        return {
            "id": self.record_id,
            "prompt": self.prompt,
            "imageUrl": self.artifact_url,
            "status": "granted" if self.granted else "denied",
            "agentId": self.agent_id,
            "ownerAddress": self.owner_address.lower(),
            "humanVerified": "true" if self.human_verified else "false",
            "tier": str(self.tier),
            "reason": "" if self.granted else self.reason,
            "timestamp": str(self.timestamp),
        }


async def record_decision(redis: aioredis.Redis, decision: Decision) -> None:
    """Persist a grant/deny record and index it by decision time."""
    await redis.hset(gen_key(decision.record_id), mapping=decision.to_hash())
    await redis.zadd(FEED_KEY, {decision.record_id: decision.timestamp})
    await redis.zadd(owner_feed_key(decision.owner_address), {decision.record_id: decision.timestamp})
    await redis.incr(STATS_GRANTED if decision.granted else STATS_DENIED)
    await redis.sadd(STATS_AGENTS, decision.agent_id)
    logger.info(
        "Recorded %s decision %s for agent %s (owner %s)",
        "granted" if decision.granted else "denied",
        decision.record_id, decision.agent_id, decision.owner_address.lower(),
    )


async def fetch_entries(redis: aioredis.Redis, ids: list[str]) -> list[FeedEntry]:
    entries: list[FeedEntry] = []
    for record_id in ids:
        raw = await redis.hgetall(gen_key(record_id))
        if raw and "id" in raw:
            entries.append(FeedEntry.from_hash(raw))
    return entries


async def get_stats(redis: aioredis.Redis, feed_key: str = FEED_KEY) -> FeedStats:
    return FeedStats(
        total=int(await redis.zcard(feed_key)),
        granted=int(await redis.get(STATS_GRANTED) or 0),
        denied=int(await redis.get(STATS_DENIED) or 0),
        unique_agents=int(await redis.scard(STATS_AGENTS)),
    )


async def list_feed(
    redis: aioredis.Redis,
    cursor: int | None = None,
    limit: int | None = None,
    owner: str | None = None,
) -> FeedPage:
    """Return one page of entries, newest first, older than ``cursor``."""
    page_size = min(limit or settings.feed_page_default, settings.feed_page_max)
    feed_key = owner_feed_key(owner) if owner else FEED_KEY

    max_score = f"({cursor}" if cursor is not None else "+inf"
    # One extra id tells us whether another page exists
    ids = await redis.zrevrangebyscore(feed_key, max_score, "-inf", start=0, num=page_size + 1)

    has_more = len(ids) > page_size
    entries = await fetch_entries(redis, list(ids[:page_size]))
    entries.sort(key=lambda e: e.timestamp, reverse=True)

    next_cursor = str(entries[-1].timestamp) if has_more and entries else None
    return FeedPage(entries=entries, next_cursor=next_cursor, stats=await get_stats(redis, feed_key))


async def iter_new_entries(
    redis: aioredis.Redis,
    since_ms: int | None = None,
    poll_seconds: float | None = None,
) -> AsyncIterator[FeedEntry]:
    """Yield entries recorded after ``since_ms`` as they appear, forever."""
    interval = settings.feed_poll_seconds if poll_seconds is None else poll_seconds
    last = now_ms() if since_ms is None else since_ms
    while True:
        try:
            ids = await redis.zrangebyscore(FEED_KEY, f"({last}", "+inf")
            for entry in await fetch_entries(redis, list(ids)):
                if entry.timestamp > last:
                    yield entry
                    last = entry.timestamp
        except RedisError as e:
            logger.warning("Feed poll failed, retrying: %s", e)
        await asyncio.sleep(interval)
