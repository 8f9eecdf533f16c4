"""Scripted pipeline storylines streamed as server-sent events."""

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse

from whitewall.config import settings
from whitewall.pipeline.scenarios import UnknownScenarioError, iter_scenario, parse_scenario_id
from whitewall.pipeline.transport import event_stream_response, paced

router = APIRouter(tags=["simulate"])


@router.get("/simulate", response_class=StreamingResponse)
async def simulate(
    scenario: str | None = Query(None, description="anon-bot | registered-bot | verified-agent"),
    mode: str | None = Query(None, description="'present' slows playback for presentations"),
) -> StreamingResponse:
    """Replay one canned verification run."""
    try:
        scenario_id = parse_scenario_id(scenario)
    except UnknownScenarioError as e:
        raise HTTPException(status_code=400, detail=str(e))

    events = iter_scenario(
        scenario_id,
        presentation=mode == "present",
        multiplier=settings.presentation_multiplier,
    )
    return event_stream_response(paced(events))
