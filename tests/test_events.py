"""Tests for the pipeline event wire format."""

import json

import pytest
from pydantic import ValidationError

from whitewall.pipeline.events import (
    PIPELINE_STAGES,
    DoneEvent,
    ErrorEvent,
    LogLevel,
    ResultEvent,
    SkipEvent,
    StepEvent,
    StepId,
    StepStatus,
    TerminalLogEvent,
    decode_event,
    encode_event,
    log,
    skip_after,
    step,
)


def test_step_event_uses_camel_case_keys() -> None:
    payload = json.loads(encode_event(step(StepId.GATE_1, StepStatus.FAIL, "NOT REGISTERED", 600)))
    assert payload == {
        "type": "step",
        "stepId": "gate-1",
        "status": "fail",
        "detail": "NOT REGISTERED",
        "timingMs": 600,
    }


def test_optional_fields_are_omitted() -> None:
    payload = json.loads(encode_event(step(StepId.GATEWAY, StepStatus.ACTIVE)))
    assert payload == {"type": "step", "stepId": "gateway", "status": "active"}

    result = json.loads(encode_event(ResultEvent(granted=False, reason="nope")))
    assert result == {"type": "result", "granted": False, "reason": "nope"}


def test_terminal_log_defaults_to_info() -> None:
    event = log("GW", "hello")
    assert event.level is LogLevel.INFO
    assert json.loads(encode_event(event)) == {
        "type": "terminal", "tag": "GW", "message": "hello", "level": "info",
    }


def test_skip_and_done_shapes() -> None:
    assert json.loads(encode_event(skip_after(StepId.GATE_2))) == {"type": "skip", "afterStepId": "gate-2"}
    assert json.loads(encode_event(DoneEvent())) == {"type": "done"}
    assert json.loads(encode_event(ErrorEvent())) == {"type": "error"}


def test_decode_dispatches_on_type() -> None:
    assert isinstance(decode_event('{"type":"step","stepId":"gate-3","status":"pass"}'), StepEvent)
    assert isinstance(decode_event('{"type":"terminal","tag":"x","message":"y","level":"warn"}'), TerminalLogEvent)
    assert isinstance(decode_event('{"type":"skip","afterStepId":"gate-1"}'), SkipEvent)
    assert isinstance(decode_event('{"type":"done"}'), DoneEvent)
    assert isinstance(decode_event('{"type":"error"}'), ErrorEvent)


def test_decode_result_with_live_fields() -> None:
    event = decode_event(
        '{"type":"result","granted":true,"accountableHuman":"0xabc","tier":2,'
        '"id":"r1","artifactUrl":"https://blob.test/a.png","mediaType":"image"}'
    )
    assert isinstance(event, ResultEvent)
    assert event.granted is True
    assert event.accountable_human == "0xabc"
    assert event.artifact_url == "https://blob.test/a.png"
    assert event.media_type == "image"


def test_decode_rejects_unknown_type() -> None:
    with pytest.raises(ValidationError):
        decode_event('{"type":"bogus"}')


def test_decode_rejects_unknown_status() -> None:
    with pytest.raises(ValidationError):
        decode_event('{"type":"step","stepId":"gate-1","status":"exploded"}')


def test_events_are_immutable() -> None:
    event = step(StepId.GATE_1, StepStatus.ACTIVE)
    with pytest.raises(ValidationError):
        event.status = StepStatus.PASS  # type: ignore[misc]


def test_stage_order() -> None:
    assert [s.id for s in PIPELINE_STAGES] == [
        "agent-submit", "payment-hold", "gateway", "orchestrator",
        "gate-1", "gate-2", "gate-3", "gate-4",
        "consensus", "policy-enforcement", "result",
    ]
    assert len({s.label for s in PIPELINE_STAGES}) == len(PIPELINE_STAGES)
