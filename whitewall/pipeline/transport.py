"""Server-sent event transport for pipeline runs and the live feed.

A source (async iterator of wire models) is drained by a pump task into a
queue; the response body generator reads the queue and writes one
``data: <json>`` message per item, interleaving ``: keepalive`` comments
whenever the source stays quiet for ``keepalive_seconds``. When the client
goes away Starlette cancels the body generator, which cancels the pump and
whatever sleep the source was parked in.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Iterable

from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from whitewall.config import settings
from whitewall.pipeline.events import ErrorEvent, encode_event
from whitewall.pipeline.scenarios import TimedEvent

logger = logging.getLogger(__name__)

KEEPALIVE = ": keepalive\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_END = object()


def format_sse(item: BaseModel) -> str:
    return f"data: {encode_event(item)}\n\n"


async def paced(events: Iterable[TimedEvent], time_scale: float | None = None) -> AsyncIterator[BaseModel]:
    """Turn a scripted (event, delay) sequence into a timed async source.

    Each event is released, then the source sleeps for its delay before
    pulling the next one. ``time_scale`` of 0 disables sleeping entirely.
    """
    scale = settings.simulation_time_scale if time_scale is None else time_scale
    for item in events:
        yield item.event
        if item.delay_ms > 0 and scale > 0:
            await asyncio.sleep(item.delay_ms / 1000 * scale)


async def sse_messages(
    source: AsyncIterator[BaseModel],
    keepalive_seconds: float | None = None,
) -> AsyncIterator[str]:
    """Encode ``source`` as SSE messages, in order, with keep-alives in the gaps."""
    interval = settings.sse_keepalive_seconds if keepalive_seconds is None else keepalive_seconds
    queue: asyncio.Queue[object] = asyncio.Queue()

    async def pump() -> None:
        try:
            async for item in source:
                queue.put_nowait(item)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Event source failed mid-stream")
            queue.put_nowait(ErrorEvent())
        finally:
            queue.put_nowait(_END)

    pump_task = asyncio.create_task(pump())
    try:
        while True:
            try:
                item = await asyncio.wait_for(queue.get(), timeout=interval)
            except TimeoutError:
                yield KEEPALIVE
                continue
            if item is _END:
                break
            yield format_sse(item)  # type: ignore[arg-type]
    finally:
        pump_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pump_task


def event_stream_response(source: AsyncIterator[BaseModel]) -> StreamingResponse:
    return StreamingResponse(
        sse_messages(source),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
