"""Live generation runs: rate check, on-chain verification, generation, ledger.

A run speaks the same event vocabulary and step ids as the simulator:

    agent-submit        rate limit check
    payment-hold        resource payment hold
    gate-2              isHumanVerified(agentId), fail-closed
    policy-enforcement  generation + upload to blob storage
    result              license plate written to the feed

The work executes in a detached worker task that pushes events onto a queue;
the HTTP stream only drains that queue. A client that disconnects stops the
drain but never the worker, so a generation finished after the client left
is still recorded in the feed.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Coroutine
from dataclasses import dataclass
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

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
from whitewall.services import blob, feed, genapi, rate_limit, verification
from whitewall.services.blob import BlobUploadError
from whitewall.services.genapi import GenerationError, JobStatus, MediaType
from whitewall.services.rate_limit import RateLimitedAction
from whitewall.services.verification import VerificationUnavailable

logger = logging.getLogger(__name__)

RATE_LIMITED_REASON = "rate limited"
NOT_VERIFIED_REASON = "not verified"
LOOKUP_FAILED_REASON = "not verified: verification lookup failed"
STORE_FAILED_REASON = "Failed to record decision"
INTERNAL_ERROR_REASON = "Internal error while processing request"

_END = object()

# Strong references so detached workers are not garbage-collected mid-run
_background_tasks: set[asyncio.Task] = set()


def _spawn(coro: Coroutine[Any, Any, None]) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


@dataclass(frozen=True)
class ActionProfile:
    rate_action: RateLimitedAction
    tier: int
    price: str
    noun: str


PROFILES: dict[MediaType, ActionProfile] = {
    MediaType.IMAGE: ActionProfile(RateLimitedAction.IMAGE, tier=2, price="$0.10", noun="Image"),
    MediaType.VIDEO: ActionProfile(RateLimitedAction.VIDEO, tier=3, price="$0.25", noun="Video"),
}


@dataclass(frozen=True)
class LiveRequest:
    prompt: str  # already truncated and trimmed
    agent_id: int
    owner_address: str
    media_type: MediaType = MediaType.IMAGE

    @property
    def owner(self) -> str:
        return self.owner_address.lower()


def clean_prompt(raw: str, max_length: int) -> str:
    """Truncate to ``max_length`` characters, then trim surrounding whitespace."""
    return raw[:max_length].strip()


def _preview(prompt: str, limit: int = 60) -> str:
    return prompt[:limit] + ("..." if len(prompt) > limit else "")


class LiveRun:
    def __init__(self, redis: aioredis.Redis, request: LiveRequest) -> None:
        self.redis = redis
        self.request = request
        self.profile = PROFILES[request.media_type]
        self.record_id = feed.new_record_id()
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._finished = False
        self._payment_held = False
        self._human_verified = False
        self._artifact_url = ""
        self._last_job_status: JobStatus | None = None

    # --- Event plumbing ---

    def _emit(self, event: PipelineEvent) -> None:
        self._queue.put_nowait(event)

    def _finish(self, result: ResultEvent) -> None:
        if self._finished:
            logger.error("Run %s tried to emit a second result", self.record_id)
            return
        self._finished = True
        self._emit(result)
        self._emit(DoneEvent())

    async def events(self) -> AsyncIterator[PipelineEvent]:
        _spawn(self.execute())
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            yield item  # type: ignore[misc]

    async def execute(self) -> None:
        try:
            await self._run()
        except Exception:
            logger.exception("Live %s run %s failed", self.request.media_type.value, self.record_id)
            if not self._finished:
                self._emit(log("ERROR", INTERNAL_ERROR_REASON, LogLevel.FAIL))
                self._finish(ResultEvent(granted=False, reason=INTERNAL_ERROR_REASON))
        finally:
            self._queue.put_nowait(_END)

    # --- Stages ---

    async def _run(self) -> None:
        if not await self._check_rate_limit():
            return
        self._hold_payment()
        if not await self._verify():
            return
        if not await self._generate():
            return
        await self._grant()

    async def _check_rate_limit(self) -> bool:
        req = self.request
        self._emit(step(StepId.AGENT_SUBMIT, StepStatus.ACTIVE))
        self._emit(log("RATE", f"Checking rate limit for {req.owner_address[:8]}..."))

        rl = await rate_limit.check_rate_limit(self.redis, self.profile.rate_action, req.owner_address)
        if not rl.allowed:
            self._emit(log(
                "RATE",
                f"Rate limit exceeded ({rl.limit}/{rl.window_seconds}s). Try again shortly.",
                LogLevel.FAIL,
            ))
            self._emit(step(StepId.AGENT_SUBMIT, StepStatus.FAIL, "Rate limited"))
            self._emit(skip_after(StepId.AGENT_SUBMIT))
            self._finish(ResultEvent(granted=False, reason=RATE_LIMITED_REASON))
            return False

        self._emit(log("RATE", f"Rate limit OK ({rl.count}/{rl.limit})", LogLevel.PASS))
        self._emit(step(StepId.AGENT_SUBMIT, StepStatus.PASS, "Prompt received"))
        return True

    def _hold_payment(self) -> None:
        price, noun = self.profile.price, self.profile.noun.lower()
        self._emit(step(StepId.PAYMENT_HOLD, StepStatus.ACTIVE))
        self._emit(log("x402", f"Resource payment: {price} USDC for {noun} generation"))
        self._emit(step(StepId.PAYMENT_HOLD, StepStatus.PASS, f"{price} held"))
        self._payment_held = True

    async def _verify(self) -> bool:
        agent_id = self.request.agent_id
        self._emit(step(StepId.GATE_2, StepStatus.ACTIVE))
        self._emit(log("VERIFY", f"Checking on-chain verification for agent #{agent_id}..."))

        try:
            verified = await verification.is_human_verified(agent_id)
        except VerificationUnavailable as e:
            # Fail closed: an unreadable contract is treated as "not verified"
            self._emit(log("RPC", f"Verification lookup failed: {e}", LogLevel.FAIL))
            self._emit(step(StepId.GATE_2, StepStatus.FAIL, "RPC error"))
            await self._deny(StepId.GATE_2, LOOKUP_FAILED_REASON)
            return False

        if not verified:
            self._emit(log("VERIFY", f"Agent #{agent_id} is not human-verified on-chain", LogLevel.FAIL))
            self._emit(step(StepId.GATE_2, StepStatus.FAIL, "Not verified"))
            await self._deny(StepId.GATE_2, NOT_VERIFIED_REASON)
            return False

        self._human_verified = True
        self._emit(log("VERIFY", f"Agent #{agent_id} is human-verified", LogLevel.PASS))
        self._emit(step(StepId.GATE_2, StepStatus.PASS, "Human verified"))
        return True

    def _on_job_status(self, status: JobStatus) -> None:
        if status is self._last_job_status:
            return
        self._last_job_status = status
        if status is JobStatus.PROCESSING:
            self._emit(log("GEN", f"GPU processing {self.profile.noun.lower()}..."))

    async def _generate(self) -> bool:
        req, noun = self.request, self.profile.noun
        self._emit(step(StepId.POLICY, StepStatus.ACTIVE))
        self._emit(log("GEN", f'{noun} generation requested: "{_preview(req.prompt)}"'))

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            artifact = await genapi.generate(req.prompt, req.media_type, on_status=self._on_job_status)
            self._emit(log("GEN", f"{noun} generated successfully", LogLevel.PASS))
            self._emit(log("BLOB", "Uploading to permanent storage..."))
            url = await blob.upload(
                artifact.content,
                blob.artifact_pathname(self.record_id, artifact.content_type),
                artifact.content_type,
            )
        except (GenerationError, BlobUploadError) as e:
            message = str(e) or f"{noun} generation failed"
            return await self._generation_failed(message)
        except Exception:
            logger.exception("Unexpected generation failure for run %s", self.record_id)
            return await self._generation_failed(f"{noun} generation failed")

        self._artifact_url = url
        elapsed_ms = int((loop.time() - started) * 1000)
        self._emit(log("BLOB", f"{noun} stored permanently", LogLevel.PASS))
        self._emit(step(StepId.POLICY, StepStatus.PASS, f"{noun} ready", elapsed_ms))
        return True

    async def _generation_failed(self, message: str) -> bool:
        self._emit(log("GEN", f"Generation failed: {message}", LogLevel.FAIL))
        self._emit(step(StepId.POLICY, StepStatus.FAIL, "Gen failed"))
        await self._deny(StepId.POLICY, message)
        return False

    async def _grant(self) -> None:
        req = self.request
        self._emit(step(StepId.RESULT, StepStatus.ACTIVE))
        self._emit(log("LEDGER", "Recording license plate in feed..."))

        decision = self._decision(granted=True)
        if not await self._record(decision):
            self._emit(step(StepId.RESULT, StepStatus.FAIL, "Not recorded"))
            self._finish(self._store_failed_result())
            return

        self._emit(step(StepId.RESULT, StepStatus.PASS, "Recorded"))
        self._emit(log("LEDGER", f"License plate issued: {self.record_id[:8]}...", LogLevel.PASS))
        self._emit(log("x402", f"{self.profile.price} USDC payment finalized", LogLevel.PASS))
        self._finish(ResultEvent(
            granted=True,
            accountable_human=req.owner,
            tier=self.profile.tier,
            id=self.record_id,
            artifact_url=self._artifact_url,
            media_type=req.media_type.value,
            prompt=req.prompt,
            agent_id=str(req.agent_id),
            owner_address=req.owner,
            timestamp=decision.timestamp,
        ))

    # --- Decisions ---

    async def _deny(self, failed_step: str, reason: str) -> None:
        self._emit(skip_after(failed_step))
        if self._payment_held:
            self._emit(log(
                "x402", f"{self.profile.price} USDC refunded to agent wallet", LogLevel.WARN,
            ))
        decision = self._decision(granted=False, reason=reason)
        if not await self._record(decision):
            self._finish(self._store_failed_result())
            return
        self._finish(ResultEvent(
            granted=False,
            reason=reason,
            id=self.record_id,
            media_type=self.request.media_type.value,
            agent_id=str(self.request.agent_id),
            owner_address=self.request.owner,
            timestamp=decision.timestamp,
        ))

    def _decision(self, granted: bool, reason: str = "") -> feed.Decision:
        req = self.request
        return feed.Decision(
            record_id=self.record_id,
            prompt=req.prompt,
            granted=granted,
            agent_id=str(req.agent_id),
            owner_address=req.owner,
            human_verified=self._human_verified,
            tier=self.profile.tier,
            artifact_url=self._artifact_url if granted else "",
            reason=reason,
            timestamp=feed.now_ms(),
        )

    async def _record(self, decision: feed.Decision) -> bool:
        try:
            await feed.record_decision(self.redis, decision)
        except RedisError:
            logger.exception("Failed to persist decision %s", decision.record_id)
            self._emit(log("STORE", f"{STORE_FAILED_REASON}: storage unavailable", LogLevel.FAIL))
            return False
        return True

    def _store_failed_result(self) -> ResultEvent:
        # Keep the artifact visible to the client even though the record is lost
        return ResultEvent(
            granted=False,
            reason=STORE_FAILED_REASON,
            id=self.record_id,
            artifact_url=self._artifact_url or None,
            media_type=self.request.media_type.value,
        )


def stream_live_run(redis: aioredis.Redis, request: LiveRequest) -> AsyncIterator[PipelineEvent]:
    return LiveRun(redis, request).events()
