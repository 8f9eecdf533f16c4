"""Public feed of license plates: paginated JSON or a live SSE stream."""

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException, Query

from whitewall.pipeline.transport import event_stream_response
from whitewall.redis import get_redis
from whitewall.schemas.feed import FeedPage
from whitewall.services import feed as feed_service

router = APIRouter(tags=["feed"])


@router.get("/feed", response_model=FeedPage, response_model_by_alias=True)
async def get_feed(
    cursor: str | None = Query(None, description="Timestamp (ms) of the last entry already seen"),
    limit: int | None = Query(None, ge=1),
    owner: str | None = Query(None, description="Only entries requested by this address"),
    stream: bool = Query(False, description="Stream new entries as server-sent events"),
    redis: aioredis.Redis = Depends(get_redis),
):
    if stream:
        return event_stream_response(feed_service.iter_new_entries(redis))

    parsed_cursor: int | None = None
    if cursor:
        try:
            parsed_cursor = int(cursor)
        except ValueError:
            raise HTTPException(status_code=400, detail="cursor must be an integer timestamp")

    return await feed_service.list_feed(redis, cursor=parsed_cursor, limit=limit, owner=owner)
