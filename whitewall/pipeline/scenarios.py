"""Canned verification storylines replayed by ``GET /simulate``.

Each scenario is a hand-scripted, deterministic sequence of pipeline events.
``iter_scenario`` returns a fresh lazy iterator of ``TimedEvent`` pairs; the
``delay_ms`` of a pair is the pause the transport inserts before the next
event. Nothing here sleeps or touches shared state, so a sequence can be
replayed any number of times and abandoned at any point.
"""

import enum
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from whitewall.pipeline.events import (
    DoneEvent,
    LogLevel,
    PipelineEvent,
    ResultEvent,
    StepId,
    StepStatus,
    log,
    skip_after,
    step,
)

PRESENTATION_MULTIPLIER = 1.8
HALT_GRACE_MS = 200

DEMO_AGENT_ID = 42
DEMO_ACCOUNTABLE_HUMAN = "0xAl1c3000000000000000000000000000000cafe"
DEMO_TIER = 2


class ScenarioId(enum.Enum):
    ANON_BOT = "anon-bot"
    REGISTERED_BOT = "registered-bot"
    VERIFIED_AGENT = "verified-agent"


DEFAULT_SCENARIO = ScenarioId.ANON_BOT


@dataclass(frozen=True)
class TimedEvent:
    event: PipelineEvent
    delay_ms: int = 0


class UnknownScenarioError(ValueError):
    """Raised for a scenario id outside the canned set."""


def _t(event: PipelineEvent, delay_ms: int = 0) -> TimedEvent:
    return TimedEvent(event, delay_ms)


def _preamble(pipeline_ready_message: str) -> Iterator[TimedEvent]:
    """Agent submit, payment hold, gateway and orchestrator start. Identical for every storyline."""
    yield _t(step(StepId.AGENT_SUBMIT, StepStatus.ACTIVE), 300)
    yield _t(step(StepId.AGENT_SUBMIT, StepStatus.PASS, "Request sent"))

    yield _t(step(StepId.PAYMENT_HOLD, StepStatus.ACTIVE))
    yield _t(log("x402", "Payment hold: $0.50 USDC via x402 protocol"), 400)
    yield _t(step(StepId.PAYMENT_HOLD, StepStatus.PASS, "$0.50 held", 400))
    yield _t(log("x402", "Payment hold authorized", LogLevel.PASS))

    yield _t(step(StepId.GATEWAY, StepStatus.ACTIVE))
    yield _t(log("GW", "HTTP request received, extracting agent metadata"), 300)
    yield _t(step(StepId.GATEWAY, StepStatus.PASS, "JWT valid", 300))
    yield _t(log("GW", "JWT verified, forwarding to CRE", LogLevel.PASS))

    yield _t(step(StepId.ORCHESTRATOR, StepStatus.ACTIVE))
    yield _t(log("CRE", "HTTP Trigger received, initiating 4-gate pipeline"), 500)
    yield _t(step(StepId.ORCHESTRATOR, StepStatus.PASS, "Pipeline started", 500))
    yield _t(log("CRE", pipeline_ready_message, LogLevel.PASS))


def _gate(
    step_id: str,
    tag: str,
    probe: str,
    passed: bool,
    detail: str,
    outcome: str,
    timing_ms: int = 600,
) -> Iterator[TimedEvent]:
    yield _t(step(step_id, StepStatus.ACTIVE))
    yield _t(log(tag, probe), timing_ms)
    status = StepStatus.PASS if passed else StepStatus.FAIL
    yield _t(step(step_id, status, detail, timing_ms))
    yield _t(log(tag, outcome, LogLevel.PASS if passed else LogLevel.FAIL))


def _halt(gate_id: str, halt_message: str, reason: str) -> Iterator[TimedEvent]:
    """Tail of a rejected run: halt notice, skip downstream stages, refund, deny."""
    yield _t(log("CRE", halt_message, LogLevel.FAIL))
    yield _t(skip_after(gate_id), HALT_GRACE_MS)
    yield _t(log("x402", "$0.50 USDC refunded to agent wallet", LogLevel.WARN))
    yield _t(ResultEvent(granted=False, reason=reason))
    yield _t(DoneEvent())


def _anon_bot() -> Iterator[TimedEvent]:
    yield _t(log("x402", "Payment hold: $0.50 USDC"))
    yield from _preamble("Pipeline initialized, starting Gate 1")
    yield from _gate(
        StepId.GATE_1, "GATE 1",
        "Identity check: ownerOf(agentId) -> ...",
        passed=False,
        detail="NOT REGISTERED",
        outcome="Identity: ownerOf(agentId) -> 0x0000...0000 (unregistered)",
    )
    yield from _halt(
        StepId.GATE_1,
        "Pipeline HALTED at Gate 1 -- agent not registered",
        "Agent not registered (no ERC-8004 identity)",
    )


def _registered_identity_gate() -> Iterator[TimedEvent]:
    yield from _gate(
        StepId.GATE_1, "GATE 1",
        f"Identity: ownerOf({DEMO_AGENT_ID}) -> ...",
        passed=True,
        detail=f"ownerOf({DEMO_AGENT_ID}) -> Alice",
        outcome=f"Identity: ownerOf({DEMO_AGENT_ID}) -> 0xAl1c3...cafe (registered)",
    )


def _registered_bot() -> Iterator[TimedEvent]:
    yield from _preamble("Pipeline initialized")
    yield from _registered_identity_gate()
    yield from _gate(
        StepId.GATE_2, "GATE 2",
        f"Verification: getSummary({DEMO_AGENT_ID}, [WorldID], HUMAN_VERIFIED)",
        passed=False,
        detail="NOT VERIFIED",
        outcome="Verification: count=0, avgScore=0 -- no human bond",
    )
    yield from _halt(
        StepId.GATE_2,
        "Pipeline HALTED at Gate 2 -- agent not human-verified",
        "Agent not human-verified (no World ID bond)",
    )


def _verified_agent() -> Iterator[TimedEvent]:
    yield from _preamble("Pipeline initialized")
    yield from _registered_identity_gate()
    yield from _gate(
        StepId.GATE_2, "GATE 2",
        f"Verification: getSummary({DEMO_AGENT_ID}, [WorldID], HUMAN_VERIFIED)",
        passed=True,
        detail="Human verified",
        outcome="Verification: count=1, avgScore=2 -- human bond active",
    )
    yield from _gate(
        StepId.GATE_3, "GATE 3",
        "Liveness: checking verification TTL...",
        passed=True,
        detail="TTL valid",
        outcome="Liveness: verification valid, expires in 29d",
    )
    yield from _gate(
        StepId.GATE_4, "GATE 4",
        "Reputation: checking tier >= required...",
        passed=True,
        detail=f"Tier {DEMO_TIER} >= 2",
        outcome=f"Reputation: tier {DEMO_TIER} >= requiredTier 2",
    )

    # Consensus: three nodes sign, each faster than the last
    yield _t(step(StepId.CONSENSUS, StepStatus.ACTIVE))
    yield _t(log("DON", "Submitting verification report to DON consensus..."), 800)
    yield _t(log("DON", "Node 1/3 signed report"), 400)
    yield _t(log("DON", "Node 2/3 signed report"), 300)
    yield _t(log("DON", "Node 3/3 signed report -- consensus reached", LogLevel.PASS))
    yield _t(step(StepId.CONSENSUS, StepStatus.PASS, "3/3 consensus", 1500))

    yield _t(step(StepId.POLICY, StepStatus.ACTIVE))
    yield _t(log("ACE", f"Executing HumanVerifiedPolicy.runPolicy({DEMO_AGENT_ID})..."), 600)
    yield _t(step(StepId.POLICY, StepStatus.PASS, "Policy approved", 600))
    yield _t(log(
        "ACE",
        f"Policy executed -- AccessGranted({DEMO_AGENT_ID}, 0xAl1c3, tier={DEMO_TIER})",
        LogLevel.PASS,
    ))

    yield _t(step(StepId.RESULT, StepStatus.ACTIVE), 200)
    yield _t(step(StepId.RESULT, StepStatus.PASS, "Granted"))
    yield _t(log(
        "RESULT",
        f"Access GRANTED. accountableHuman: 0xAl1c3...cafe, tier: {DEMO_TIER}",
        LogLevel.PASS,
    ))
    yield _t(log("x402", "$0.50 USDC payment finalized", LogLevel.PASS))
    yield _t(ResultEvent(granted=True, accountable_human=DEMO_ACCOUNTABLE_HUMAN, tier=DEMO_TIER))
    yield _t(DoneEvent())


_SCRIPTS: dict[ScenarioId, Callable[[], Iterator[TimedEvent]]] = {
    ScenarioId.ANON_BOT: _anon_bot,
    ScenarioId.REGISTERED_BOT: _registered_bot,
    ScenarioId.VERIFIED_AGENT: _verified_agent,
}


def parse_scenario_id(raw: str | None) -> ScenarioId:
    """Resolve a query-string scenario id; a missing id selects the default storyline."""
    if not raw:
        return DEFAULT_SCENARIO
    try:
        return ScenarioId(raw)
    except ValueError:
        raise UnknownScenarioError(f"Unknown scenario: {raw}") from None


def iter_scenario(
    scenario: ScenarioId | str,
    presentation: bool = False,
    multiplier: float = PRESENTATION_MULTIPLIER,
) -> Iterator[TimedEvent]:
    """Return a fresh iterator over the scripted events of one storyline.

    Presentation mode stretches every delay by ``multiplier``.
    """
    scenario_id = scenario if isinstance(scenario, ScenarioId) else parse_scenario_id(scenario)
    script = _SCRIPTS[scenario_id]
    scale = multiplier if presentation else 1.0
    return (TimedEvent(item.event, round(item.delay_ms * scale)) for item in script())
