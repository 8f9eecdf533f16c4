"""Client-side run state and the pure reducer that folds pipeline events into it.

``reduce(state, action)`` never mutates its input. The only impure input is the
clock used to stamp terminal entries, and it is injectable.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import assert_never

from whitewall.pipeline.events import (
    PIPELINE_STAGES,
    DoneEvent,
    ErrorEvent,
    LogLevel,
    PipelineEvent,
    ResultEvent,
    SkipEvent,
    StageDefinition,
    StepEvent,
    StepStatus,
    TerminalLogEvent,
)

CONNECTION_LOST_MESSAGE = "Connection lost -- simulation interrupted."


@dataclass(frozen=True)
class PipelineStepState:
    id: str
    label: str
    status: StepStatus = StepStatus.IDLE
    detail: str | None = None
    timing_ms: int | None = None


@dataclass(frozen=True)
class TerminalEntry:
    tag: str
    message: str
    level: LogLevel
    timestamp: int  # ms since epoch, captured on arrival


@dataclass(frozen=True)
class RunState:
    steps: tuple[PipelineStepState, ...]
    log: tuple[TerminalEntry, ...] = ()
    is_running: bool = False
    result: ResultEvent | None = None
    run_id: str | None = None

    def step(self, step_id: str) -> PipelineStepState | None:
        for s in self.steps:
            if s.id == step_id:
                return s
        return None

    def statuses(self) -> dict[str, StepStatus]:
        return {s.id: s.status for s in self.steps}


# --- Actions ---


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class Start:
    run_id: str | None = None


@dataclass(frozen=True)
class Apply:
    event: PipelineEvent


@dataclass(frozen=True)
class TransportFailed:
    message: str = CONNECTION_LOST_MESSAGE


@dataclass(frozen=True)
class ClearLog:
    pass


Action = Reset | Start | Apply | TransportFailed | ClearLog


def initial_state(stages: tuple[StageDefinition, ...] = PIPELINE_STAGES) -> RunState:
    return RunState(steps=tuple(PipelineStepState(id=s.id, label=s.label) for s in stages))


def _now_ms() -> int:
    return int(time.time() * 1000)


def _apply_step(state: RunState, event: StepEvent) -> RunState:
    if state.step(event.step_id) is None:
        return state
    steps = tuple(
        replace(
            s,
            status=event.status,
            detail=event.detail if event.detail is not None else s.detail,
            timing_ms=event.timing_ms if event.timing_ms is not None else s.timing_ms,
        )
        if s.id == event.step_id
        else s
        for s in state.steps
    )
    return replace(state, steps=steps)


def _apply_skip(state: RunState, event: SkipEvent) -> RunState:
    ids = [s.id for s in state.steps]
    # Unknown anchor behaves like "before the first step": every idle step is skipped
    anchor = ids.index(event.after_step_id) if event.after_step_id in ids else -1
    steps = tuple(
        replace(s, status=StepStatus.SKIPPED)
        if i > anchor and s.status is StepStatus.IDLE
        else s
        for i, s in enumerate(state.steps)
    )
    return replace(state, steps=steps)


def _append_log(state: RunState, tag: str, message: str, level: LogLevel, timestamp: int) -> RunState:
    entry = TerminalEntry(tag=tag, message=message, level=level, timestamp=timestamp)
    return replace(state, log=state.log + (entry,))


def _fail_transport(state: RunState, message: str, clock: Callable[[], int]) -> RunState:
    state = _append_log(state, "SYSTEM", message, LogLevel.FAIL, clock())
    return replace(state, is_running=False)


def _apply_event(state: RunState, event: PipelineEvent, clock: Callable[[], int]) -> RunState:
    if isinstance(event, StepEvent):
        return _apply_step(state, event)
    if isinstance(event, TerminalLogEvent):
        return _append_log(state, event.tag, event.message, event.level, clock())
    if isinstance(event, SkipEvent):
        return _apply_skip(state, event)
    if isinstance(event, ResultEvent):
        return replace(state, result=event)
    if isinstance(event, DoneEvent):
        return replace(state, is_running=False)
    if isinstance(event, ErrorEvent):
        return _fail_transport(state, "Stream reported an error -- run aborted.", clock)
    assert_never(event)


def reduce(state: RunState, action: Action, *, clock: Callable[[], int] = _now_ms) -> RunState:
    """Return the state after ``action``. ``clock`` returns milliseconds."""
    if isinstance(action, Reset):
        return initial_state()
    if isinstance(action, Start):
        return replace(state, is_running=True, run_id=action.run_id)
    if isinstance(action, Apply):
        return _apply_event(state, action.event, clock)
    if isinstance(action, TransportFailed):
        return _fail_transport(state, action.message, clock)
    if isinstance(action, ClearLog):
        return replace(state, log=())
    assert_never(action)


def replay(events: list[PipelineEvent], *, run_id: str | None = None, clock: Callable[[], int] = _now_ms) -> RunState:
    """Reset, start, and fold ``events`` in order."""
    state = reduce(initial_state(), Reset(), clock=clock)
    state = reduce(state, Start(run_id), clock=clock)
    for event in events:
        state = reduce(state, Apply(event), clock=clock)
    return state
