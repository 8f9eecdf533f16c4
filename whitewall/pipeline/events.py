"""Pipeline event vocabulary shared by the simulator, the live orchestrator and clients.

Every message on a pipeline stream is one of the models below, discriminated
by its ``type`` field and serialized with camelCase keys:

    {"type":"step","stepId":"gate-1","status":"fail","detail":"NOT REGISTERED","timingMs":600}
    {"type":"terminal","tag":"GATE 1","message":"...","level":"fail"}
    {"type":"skip","afterStepId":"gate-1"}
    {"type":"result","granted":false,"reason":"..."}
    {"type":"done"}

A run always ends with exactly one ``result`` immediately followed by ``done``.
"""

import enum
from dataclasses import dataclass
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class StepStatus(enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PASS = "pass"
    FAIL = "fail"
    SKIPPED = "skipped"


class LogLevel(enum.Enum):
    INFO = "info"
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


class StepId:
    """Identifiers of the fixed pipeline stages, in display order."""

    AGENT_SUBMIT = "agent-submit"
    PAYMENT_HOLD = "payment-hold"
    GATEWAY = "gateway"
    ORCHESTRATOR = "orchestrator"
    GATE_1 = "gate-1"
    GATE_2 = "gate-2"
    GATE_3 = "gate-3"
    GATE_4 = "gate-4"
    CONSENSUS = "consensus"
    POLICY = "policy-enforcement"
    RESULT = "result"


@dataclass(frozen=True)
class StageDefinition:
    id: str
    label: str


PIPELINE_STAGES: tuple[StageDefinition, ...] = (
    StageDefinition(StepId.AGENT_SUBMIT, "Agent"),
    StageDefinition(StepId.PAYMENT_HOLD, "x402"),
    StageDefinition(StepId.GATEWAY, "Gateway"),
    StageDefinition(StepId.ORCHESTRATOR, "CRE"),
    StageDefinition(StepId.GATE_1, "G1: Identity"),
    StageDefinition(StepId.GATE_2, "G2: Verification"),
    StageDefinition(StepId.GATE_3, "G3: Liveness"),
    StageDefinition(StepId.GATE_4, "G4: Reputation"),
    StageDefinition(StepId.CONSENSUS, "DON"),
    StageDefinition(StepId.POLICY, "ACE"),
    StageDefinition(StepId.RESULT, "Result"),
)


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class StepEvent(_WireModel):
    type: Literal["step"] = "step"
    step_id: str
    status: StepStatus
    detail: str | None = None
    timing_ms: int | None = None


class TerminalLogEvent(_WireModel):
    type: Literal["terminal"] = "terminal"
    tag: str
    message: str
    level: LogLevel


class ResultEvent(_WireModel):
    type: Literal["result"] = "result"
    granted: bool
    accountable_human: str | None = None
    tier: int | None = None
    reason: str | None = None

    # Populated by live runs only
    id: str | None = None
    artifact_url: str | None = None
    media_type: str | None = None
    prompt: str | None = None
    agent_id: str | None = None
    owner_address: str | None = None
    timestamp: int | None = None


class SkipEvent(_WireModel):
    type: Literal["skip"] = "skip"
    after_step_id: str


class DoneEvent(_WireModel):
    type: Literal["done"] = "done"


class ErrorEvent(_WireModel):
    """Sentinel written when the producer of a stream failed unexpectedly."""

    type: Literal["error"] = "error"


PipelineEvent = Annotated[
    Union[StepEvent, TerminalLogEvent, ResultEvent, SkipEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[PipelineEvent] = TypeAdapter(PipelineEvent)


def encode_event(event: BaseModel) -> str:
    """Serialize an event (or any wire model) to its compact JSON form."""
    return event.model_dump_json(by_alias=True, exclude_none=True)


def decode_event(payload: str | bytes) -> PipelineEvent:
    """Parse one JSON payload into a PipelineEvent. Raises pydantic.ValidationError."""
    return _event_adapter.validate_json(payload)


# --- Constructors used by scenario scripts and the live orchestrator ---


def step(step_id: str, status: StepStatus, detail: str | None = None, timing_ms: int | None = None) -> StepEvent:
    return StepEvent(step_id=step_id, status=status, detail=detail, timing_ms=timing_ms)


def log(tag: str, message: str, level: LogLevel = LogLevel.INFO) -> TerminalLogEvent:
    return TerminalLogEvent(tag=tag, message=message, level=level)


def skip_after(step_id: str) -> SkipEvent:
    return SkipEvent(after_step_id=step_id)
