"""
Per-take generation lifecycle against unreliable providers.

Each take runs as its own asyncio task. Chained takes wait on the future of
their predecessor, which resolves to the predecessor's continuity anchor or
to None when it failed. The concurrency budget is a semaphore acquired only
after that wait, so a chain never holds a slot while blocked. Every provider
call is bounded by call_timeout and the take deadline, and cancel() reaches
calls that are still in flight.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from reelchain.assets.asset_store import AssetStore
from reelchain.assets.frames import FrameExtractor
from reelchain.cache.result_cache import ResultCache
from reelchain.continuity.planner import validate_plan
from reelchain.core.errors import (
    BudgetError,
    PlanValidationError,
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    TaskNotFoundError,
    ValidationError,
)
from reelchain.core.models import (
    ContinuityAnchor,
    CreditReservation,
    GenerationRequest,
    GenerationResult,
    ReservationState,
    Take,
    TakeStatus,
    Timeline,
    TimelineEntry,
)
from reelchain.ledger.credit_ledger import CreditLedger
from reelchain.orchestrator.backoff import BackoffPolicy
from reelchain.orchestrator.state import can_transition, transition
from reelchain.pricing import CostEstimator
from reelchain.providers.base import SUCCEEDED, PollStatus, VideoProvider
from reelchain.providers.selection import ProviderPolicy
from reelchain.providers.wavespeed import download_bytes
from reelchain.utils.logging_setup import log_context, setup_logger

logger = setup_logger(__name__)

S = TakeStatus

CANCELLED = "cancelled"
DEPENDENCY_FAILED = "dependency failed"


@dataclass
class OrchestratorContext:
    ledger: CreditLedger
    cache: ResultCache
    asset_store: AssetStore
    frame_extractor: FrameExtractor
    providers: ProviderPolicy
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    cost_estimator: CostEstimator = field(default_factory=CostEstimator)
    fetch_asset: Callable[[str], bytes] = download_bytes
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    anchor_time_fraction: float = 0.98


@dataclass
class _Outcome:
    reason: Optional[str] = None
    asset_ref: Optional[str] = None
    cached: bool = False
    attempts: int = 0
    provider: Optional[str] = None
    credits: int = 0
    reservation: Optional[CreditReservation] = None
    anchor: Optional[ContinuityAnchor] = None


class _TakeAborted(Exception):
    """Ends the attempt loop for good: cancellation, deadline, or a permanent error."""


class GenerationOrchestrator:
    def __init__(self, context: OrchestratorContext):
        self.context = context
        self._cancelled = False
        self._stop: Optional[asyncio.Event] = None
        self._anchors: Dict[str, ContinuityAnchor] = {}

    @property
    def anchors(self) -> Dict[str, ContinuityAnchor]:
        return dict(self._anchors)

    def cancel(self) -> None:
        logger.warning("Cancellation requested")
        self._cancelled = True
        if self._stop is not None:
            self._stop.set()

    async def run(
        self,
        takes: Sequence[Take],
        concurrency_budget: int = 2,
        batch_id: Optional[str] = None,
    ) -> Timeline:
        if concurrency_budget < 1:
            raise ValidationError(f"concurrency_budget must be >= 1, got {concurrency_budget}")
        validate_plan(takes)
        if any(t.status != S.PENDING for t in takes):
            raise PlanValidationError("Takes must be pending; plan a fresh batch to run again")

        ordered = sorted(takes, key=lambda t: t.index)
        batch_id = batch_id or uuid.uuid4().hex[:8]
        loop = asyncio.get_running_loop()
        futures: Dict[str, asyncio.Future] = {t.id: loop.create_future() for t in ordered}
        semaphore = asyncio.Semaphore(concurrency_budget)
        self._stop = asyncio.Event()
        if self._cancelled:
            self._stop.set()

        with log_context(batch_id=batch_id):
            logger.info(f"Running {len(ordered)} takes with concurrency {concurrency_budget}")
            tasks = [asyncio.create_task(self._run_take(t, futures, semaphore)) for t in ordered]
            outcomes: List[_Outcome] = await asyncio.gather(*tasks)

        entries = tuple(
            TimelineEntry(
                take=take,
                final_status=take.status,
                reason=outcome.reason,
                asset_ref=outcome.asset_ref,
                cached=outcome.cached,
                attempts=outcome.attempts,
                provider=outcome.provider,
                credits_committed=outcome.credits,
            )
            for take, outcome in zip(ordered, outcomes)
        )
        tail_anchor = self._anchors.get(ordered[-1].id) if ordered else None
        timeline = Timeline(entries=entries, tail_anchor=tail_anchor)
        logger.info(f"Batch {batch_id} finished: {timeline.summary()}")
        return timeline

    async def _run_take(
        self,
        take: Take,
        futures: Dict[str, asyncio.Future],
        semaphore: asyncio.Semaphore,
    ) -> _Outcome:
        outcome = _Outcome()
        with log_context(take_id=take.id[:12]):
            try:
                await self._process(take, futures, semaphore, outcome)
            except asyncio.CancelledError:
                await asyncio.shield(self._abandon(take, outcome))
                raise
            except Exception as e:
                logger.exception(f"Take {take.index} hit an unexpected error")
                await self._fail(take, outcome, f"internal error: {e}")
            finally:
                future = futures[take.id]
                if not future.done():
                    future.set_result(outcome.anchor if take.status == S.COMMITTED else None)
        return outcome

    async def _process(
        self,
        take: Take,
        futures: Dict[str, asyncio.Future],
        semaphore: asyncio.Semaphore,
        outcome: _Outcome,
    ) -> None:
        ctx = self.context
        seed: Optional[ContinuityAnchor] = None
        if take.depends_on_take_id is not None:
            with log_context(stage="waiting"):
                seed = await futures[take.depends_on_take_id]
            if seed is None and not self._cancelled:
                logger.warning(f"Take {take.index} skipped: predecessor produced no anchor")
                await self._fail(take, outcome, DEPENDENCY_FAILED)
                return
        if self._cancelled:
            await self._fail(take, outcome, CANCELLED)
            return

        transition(take, S.CACHE_CHECK)
        params = ctx.cost_estimator.provider_params(take)
        request = GenerationRequest.build(take.text, ctx.providers.primary.identity, params, seed)
        cached_ref = ctx.cache.get(request.fingerprint)
        if cached_ref is not None:
            transition(take, S.CACHE_HIT)
            outcome.cached = True
            logger.info(f"Take {take.index} served from cache ({request.fingerprint[:12]})")
            await self._finish(take, outcome, cached_ref)
            return
        transition(take, S.CACHE_MISS)

        async with semaphore:
            if self._cancelled:
                await self._fail(take, outcome, CANCELLED)
                return
            transition(take, S.RESERVING)
            cost = ctx.cost_estimator.estimate(take)
            try:
                outcome.reservation = await ctx.ledger.reserve(cost)
            except BudgetError as e:
                logger.warning(f"Take {take.index} not submitted: {e}")
                await self._fail(take, outcome, str(e))
                return

            result = await self._generate(take, request, seed, outcome)
            if not result.succeeded:
                await self._fail(take, outcome, result.error_reason or "generation failed")
                return

            with log_context(stage="download"):
                try:
                    data = await asyncio.to_thread(ctx.fetch_asset, result.asset_ref)
                    asset_ref = ctx.asset_store.put(data)
                except (ProviderError, OSError) as e:
                    logger.warning(f"Take {take.index} asset download failed: {e}")
                    await self._fail(take, outcome, f"asset download failed: {e}")
                    return

            reservation = await ctx.ledger.commit(outcome.reservation.id)
            outcome.credits = reservation.amount
            ctx.cache.put(request.fingerprint, asset_ref)

        await self._finish(take, outcome, asset_ref)

    async def _generate(
        self,
        take: Take,
        request: GenerationRequest,
        seed: Optional[ContinuityAnchor],
        outcome: _Outcome,
    ) -> GenerationResult:
        ctx = self.context
        policy = ctx.backoff
        deadline = ctx.clock() + policy.take_timeout
        seed_bytes = ctx.asset_store.get(seed.image_ref) if seed is not None else None
        consecutive_failures = 0
        last_reason = "no attempts made"
        task_id = ""

        for attempt in range(1, policy.max_attempts + 1):
            provider = ctx.providers.select(consecutive_failures)
            try:
                if attempt > 1:
                    switching = ctx.providers.is_fallback(provider) and outcome.provider != provider.name
                    transition(take, S.FALLBACK_PROVIDER if switching else S.RETRYING)
                    if switching:
                        logger.warning(f"Take {take.index} switching to fallback provider {provider.name}")
                    self._checkpoint()
                    await ctx.sleep(policy.delay(attempt - 2))
                self._checkpoint()
                if ctx.clock() >= deadline:
                    raise _TakeAborted(f"timed out after {policy.take_timeout:.0f}s")

                transition(take, S.SUBMITTING)
                outcome.attempts = attempt
                outcome.provider = provider.name
                with log_context(stage="submit"):
                    task_id = await self._bounded(
                        provider.submit(request.prompt, request.params, seed_bytes), provider, deadline, "submit"
                    )
                submitted_at = ctx.clock()
                transition(take, S.POLLING)
                with log_context(stage="poll"):
                    status = await self._poll(provider, task_id, submitted_at, deadline)
            except _TakeAborted as e:
                return GenerationResult(task_id, "failed", error_reason=str(e))
            except ProviderPermanentError as e:
                logger.warning(f"Take {take.index} permanent provider error: {e}")
                return GenerationResult(task_id, "failed", error_reason=str(e))
            except ProviderTransientError as e:
                last_reason = str(e)
            else:
                if status.state == SUCCEEDED:
                    transition(take, S.SUCCEEDED)
                    return GenerationResult(task_id, "succeeded", asset_ref=status.asset_url)
                last_reason = status.reason or "provider reported failure"

            consecutive_failures += 1
            logger.warning(
                f"Take {take.index} attempt {attempt}/{policy.max_attempts} on {provider.name} failed: {last_reason}"
            )

        return GenerationResult(
            task_id, "failed", error_reason=f"exhausted {policy.max_attempts} attempts: {last_reason}"
        )

    async def _poll(
        self,
        provider: VideoProvider,
        task_id: str,
        submitted_at: float,
        deadline: float,
    ) -> PollStatus:
        ctx = self.context
        policy = ctx.backoff
        attempt_deadline = deadline
        if policy.attempt_timeout is not None:
            attempt_deadline = min(deadline, submitted_at + policy.attempt_timeout)

        n = 0
        while True:
            now = ctx.clock()
            if now >= deadline:
                raise _TakeAborted(f"timed out after {policy.take_timeout:.0f}s")
            if now >= attempt_deadline:
                raise ProviderTransientError(f"poll timed out for task {task_id}", provider=provider.name)
            await ctx.sleep(min(policy.delay(n), attempt_deadline - now))
            n += 1
            self._checkpoint()
            try:
                status = await self._bounded(provider.poll(task_id), provider, deadline, "poll", attempt_deadline)
            except TaskNotFoundError:
                elapsed = ctx.clock() - submitted_at
                if elapsed <= policy.not_found_grace:
                    logger.info(f"Task {task_id} not indexed yet ({elapsed:.1f}s after submit)")
                    continue
                raise ProviderPermanentError(
                    f"task {task_id} not found {elapsed:.0f}s after submit", status_code=404, provider=provider.name
                )
            if status.is_terminal:
                return status

    async def _bounded(
        self,
        call: Awaitable,
        provider: VideoProvider,
        deadline: float,
        label: str,
        limit: Optional[float] = None,
    ):
        """
        Await one provider call for at most call_timeout, and never past the
        take deadline (or the tighter attempt ``limit``). cancel() interrupts it.
        """
        ctx = self.context
        policy = ctx.backoff
        limit = deadline if limit is None else min(limit, deadline)
        remaining = limit - ctx.clock()
        if remaining <= 0 or self._cancelled:
            call.close()
            self._checkpoint()
        else:
            pending = asyncio.ensure_future(call)
            stop = asyncio.ensure_future(self._stop.wait())
            try:
                done, _ = await asyncio.wait(
                    {pending, stop}, timeout=min(policy.call_timeout, remaining), return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                for fut in (pending, stop):
                    if not fut.done():
                        fut.cancel()
            if pending in done:
                return pending.result()
            self._checkpoint()
        if ctx.clock() >= deadline:
            raise _TakeAborted(f"timed out after {policy.take_timeout:.0f}s")
        raise ProviderTransientError(f"{label} call to {provider.name} timed out", provider=provider.name)

    def _checkpoint(self) -> None:
        if self._cancelled:
            raise _TakeAborted(CANCELLED)

    async def _finish(self, take: Take, outcome: _Outcome, asset_ref: str) -> None:
        ctx = self.context
        outcome.asset_ref = asset_ref
        if take.emit_anchor:
            transition(take, S.EXTRACTING_ANCHOR)
            with log_context(stage="anchor"):
                try:
                    frame = await asyncio.to_thread(
                        ctx.frame_extractor.extract, asset_ref, ctx.anchor_time_fraction
                    )
                    image_ref = ctx.asset_store.put(frame)
                    outcome.anchor = ContinuityAnchor(
                        take_id=take.id,
                        image_ref=image_ref,
                        image_hash=hashlib.sha256(frame).hexdigest(),
                    )
                    self._anchors[take.id] = outcome.anchor
                except Exception as e:
                    # Credits stay committed; only the dependents lose their seed.
                    logger.warning(f"Anchor extraction failed for take {take.index}: {e}")
        transition(take, S.COMMITTED)
        logger.info(f"Take {take.index} committed (cached={outcome.cached}, credits={outcome.credits})")

    async def _abandon(self, take: Take, outcome: _Outcome) -> None:
        """Cleanup for a take whose surrounding run() was cancelled."""
        reservation = outcome.reservation
        if reservation is not None and reservation.state == ReservationState.RESERVED:
            await self.context.ledger.release(reservation.id)
        if can_transition(take.status, S.ROLLED_BACK):
            transition(take, S.ROLLED_BACK)
        if can_transition(take.status, S.FAILED):
            transition(take, S.FAILED)
            take.failure_reason = outcome.reason = CANCELLED
        logger.warning(f"Take {take.index} abandoned by cancelled run (status={take.status.value})")

    async def _fail(self, take: Take, outcome: _Outcome, reason: str) -> None:
        reservation = outcome.reservation
        if reservation is not None and reservation.state == ReservationState.RESERVED:
            await self.context.ledger.release(reservation.id)
        if take.status in (S.SUBMITTING, S.POLLING, S.RETRYING, S.FALLBACK_PROVIDER, S.SUCCEEDED):
            transition(take, S.ROLLED_BACK)
        transition(take, S.FAILED)
        take.failure_reason = reason
        outcome.reason = reason
        logger.warning(f"Take {take.index} failed: {reason}")
