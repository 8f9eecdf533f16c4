"""Consume a pipeline event stream over HTTP and fold it through the reducer."""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from pydantic import ValidationError

from whitewall.pipeline.events import DoneEvent, PipelineEvent, decode_event
from whitewall.pipeline.reducer import (
    Apply,
    Reset,
    RunState,
    Start,
    TransportFailed,
    initial_state,
    reduce,
)

logger = logging.getLogger(__name__)


class StreamProtocolError(Exception):
    """A ``data:`` payload that is not a valid pipeline event."""


class SSEDecoder:
    """Incremental decoder for ``text/event-stream`` bodies.

    Feed it raw text chunks; it returns the pipeline events completed by each
    chunk. Comment lines (keep-alives) and lines without a ``data:`` prefix
    are dropped.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[PipelineEvent]:
        self._buffer += chunk.replace("\r\n", "\n")
        *messages, self._buffer = self._buffer.split("\n\n")
        events: list[PipelineEvent] = []
        for message in messages:
            event = self._decode_message(message)
            if event is not None:
                events.append(event)
        return events

    @property
    def pending(self) -> str:
        return self._buffer

    @staticmethod
    def _decode_message(message: str) -> PipelineEvent | None:
        data_lines = [
            line[5:].removeprefix(" ")
            for line in message.split("\n")
            if line.startswith("data:")
        ]
        if not data_lines:
            return None
        payload = "\n".join(data_lines)
        try:
            return decode_event(payload)
        except ValidationError as e:
            raise StreamProtocolError(f"Malformed event payload: {payload[:200]}") from e


async def follow_run(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    run_id: str | None = None,
    json_body: dict[str, Any] | None = None,
    params: dict[str, str] | None = None,
) -> AsyncIterator[RunState]:
    """Stream one run, yielding the reducer state after every event.

    The first yielded state is the freshly started run. A stream that ends
    without ``done``, returns a non-2xx status, carries a malformed payload, or
    drops mid-read is folded in as ``TransportFailed`` so the final state is
    never left running.
    """
    state = reduce(reduce(initial_state(), Reset()), Start(run_id))
    yield state

    decoder = SSEDecoder()
    try:
        async with client.stream(method, url, json=json_body, params=params) as resp:
            if resp.status_code >= 400:
                body = (await resp.aread()).decode(errors="replace")
                yield reduce(state, TransportFailed(_error_detail(resp.status_code, body)))
                return
            async for chunk in resp.aiter_text():
                for event in decoder.feed(chunk):
                    state = reduce(state, Apply(event))
                    yield state
                    if isinstance(event, DoneEvent):
                        return
    except (httpx.HTTPError, StreamProtocolError) as e:
        logger.warning("Pipeline stream %s %s failed: %s", method, url, e)
        yield reduce(state, TransportFailed())
        return

    # Body ended without a done event; an error sentinel has already stopped the run
    if state.is_running:
        yield reduce(state, TransportFailed())


def _error_detail(status_code: int, body: str) -> str:
    try:
        detail = json.loads(body).get("detail")
    except (ValueError, AttributeError):
        detail = None
    if isinstance(detail, str) and detail:
        return f"Request rejected ({status_code}): {detail}"
    return f"Request rejected ({status_code})"
