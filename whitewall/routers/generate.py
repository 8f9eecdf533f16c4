"""Live, rate-limited generation runs streamed as server-sent events."""

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from whitewall.config import settings
from whitewall.pipeline.transport import event_stream_response
from whitewall.redis import get_redis
from whitewall.schemas.generate import GenerateRequest
from whitewall.services.genapi import MediaType
from whitewall.services.orchestrator import LiveRequest, clean_prompt, stream_live_run

router = APIRouter(tags=["generate"])


def _build_request(data: GenerateRequest, media_type: MediaType) -> LiveRequest:
    """Validate and sanitize before any stream starts."""
    prompt = clean_prompt(data.prompt, settings.prompt_max_length)
    if not prompt:
        raise HTTPException(status_code=400, detail="Empty prompt")
    agent_id = data.agent_id.strip()
    if not agent_id.isdigit():
        raise HTTPException(status_code=400, detail="agentId must be a non-negative integer")
    return LiveRequest(
        prompt=prompt,
        agent_id=int(agent_id),
        owner_address=data.owner_address,
        media_type=media_type,
    )


@router.post("/generate", response_class=StreamingResponse)
async def generate_image(
    data: GenerateRequest,
    redis: aioredis.Redis = Depends(get_redis),
) -> StreamingResponse:
    """Verify the agent on-chain, then generate an image and record it in the feed."""
    request = _build_request(data, MediaType.IMAGE)
    return event_stream_response(stream_live_run(redis, request))


@router.post("/generate-video", response_class=StreamingResponse)
async def generate_video(
    data: GenerateRequest,
    redis: aioredis.Redis = Depends(get_redis),
) -> StreamingResponse:
    """Same pipeline as /generate with a video artifact and a tighter rate limit."""
    request = _build_request(data, MediaType.VIDEO)
    return event_stream_response(stream_live_run(redis, request))
