"""
Invocation gateway.

Runs one model request through the state machine

    PENDING -> RATE_LIMIT_WAIT -> IN_FLIGHT -> SUCCESS | RETRYABLE_FAILURE | FATAL_FAILURE
    RETRYABLE_FAILURE -> BACKOFF -> RATE_LIMIT_WAIT ...   (primary attempts 1..max_retries)
    EXHAUSTED -> FALLBACK_MODEL_ATTEMPT -> SUCCESS | FATAL_FAILURE

A primary model that answered 429 is cooling down; remaining primary attempts
are skipped and the request moves straight to the fallback.

Every request runs as its own asyncio task and is controlled through an
InvocationHandle, which exposes cancellation. Backoff sleeps, token refill,
attempt timeouts and the overall deadline are all driven by the injected clock
so timing is reproducible in tests.
"""
import asyncio
import logging
import random
import uuid
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Optional, Tuple

from maternal_risk.core.clock import Clock, SYSTEM_CLOCK
from maternal_risk.core.rate_limiter import TokenBucketRateLimiter
from maternal_risk.engines.model_provider import ModelProvider
from maternal_risk.errors import (
    AttemptTimeoutError, InvocationCancelled, ProviderError, ProviderRateLimited, RateLimitExceeded, ResourceExhausted
)
from maternal_risk.schemas.internal_models import (
    AttemptOutcome, InvocationAttempt, InvocationRequest, InvocationResult, InvocationStatus, ModelProfile,
    ModelResponse, Selection
)
from maternal_risk.services.metrics_service import MetricsService

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(3, ge=1)
    initial_delay_ms: int = Field(1000, ge=0)
    max_delay_ms: int = Field(30000, ge=0)
    attempt_timeout_ms: int = Field(30000, gt=0)
    queue_wait_timeout_ms: int = Field(10000, ge=0)
    jitter: float = Field(0.0, ge=0.0, le=1.0)
    max_concurrent_in_flight: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def _check_delays(self):
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self

    @property
    def attempt_timeout(self) -> float:
        return self.attempt_timeout_ms / 1000.0

    @property
    def queue_wait_timeout(self) -> float:
        return self.queue_wait_timeout_ms / 1000.0


class RequestState(str, Enum):
    PENDING = "PENDING"
    BACKOFF = "BACKOFF"
    RATE_LIMIT_WAIT = "RATE_LIMIT_WAIT"
    IN_FLIGHT = "IN_FLIGHT"
    RETRYABLE_FAILURE = "RETRYABLE_FAILURE"
    EXHAUSTED = "EXHAUSTED"
    FALLBACK_MODEL_ATTEMPT = "FALLBACK_MODEL_ATTEMPT"
    SUCCESS = "SUCCESS"
    FATAL_FAILURE = "FATAL_FAILURE"
    CANCELLED = "CANCELLED"


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, ProviderError):
        return error.retryable
    # Raw socket / connection failures that escaped the provider adapter.
    return isinstance(error, (ConnectionError, OSError))


def _discard_result(call: asyncio.Future) -> None:
    if not call.cancelled():
        call.exception()


async def _stop(task: asyncio.Future) -> None:
    """Cancels ``task`` and waits until it has unwound."""
    task.cancel()
    task.add_done_callback(_discard_result)
    await asyncio.wait({task})


class InvocationHandle:
    def __init__(self, request: InvocationRequest, selection: Selection):
        self.request = request
        self.selection = selection
        self.request_id = uuid.uuid4().hex[:12]
        self.state = RequestState.PENDING
        self.attempts: List[InvocationAttempt] = []
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> bool:
        """
        Cancels the request. PENDING, BACKOFF and RATE_LIMIT_WAIT requests stop
        before any further attempt is made. For IN_FLIGHT requests the gateway
        stops waiting and discards the late result; the remote side may still
        finish processing.
        """
        if self._task is None or self._task.done():
            return False
        self._cancel_requested = True
        logger.info(f"[{self.request_id}] Cancellation requested in state {self.state.value}")
        return self._task.cancel()

    async def result(self) -> InvocationResult:
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._cancel_requested and self._task.cancelled():
                self.state = RequestState.CANCELLED
                return InvocationResult(
                    status=InvocationStatus.FATAL_FAILURE,
                    attempts=tuple(self.attempts),
                    error=InvocationCancelled(f"Request {self.request_id} cancelled")
                )
            raise

    def _record(self, attempt: InvocationAttempt) -> None:
        self.attempts.append(attempt)
        MetricsService.record_attempt(attempt.model, attempt.outcome.value)


class InvocationGateway:
    def __init__(
        self,
        provider: ModelProvider,
        rate_limiter: TokenBucketRateLimiter,
        policy: Optional[RetryPolicy] = None,
        clock: Clock = SYSTEM_CLOCK,
        rng: Optional[random.Random] = None
    ):
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.policy = policy or RetryPolicy()
        self.clock = clock
        self.rng = rng or random.Random()
        limit = self.policy.max_concurrent_in_flight
        self._in_flight = asyncio.Semaphore(limit) if limit else None

    def backoff_delay(self, attempt_number: int) -> float:
        """Seconds to wait before attempt ``attempt_number`` (no delay before the first)."""
        if attempt_number < 2:
            return 0.0
        cap = self.policy.max_delay_ms / 1000.0
        base = min(cap, self.policy.initial_delay_ms / 1000.0 * (2 ** (attempt_number - 2)))
        if self.policy.jitter:
            base *= 1.0 + self.rng.uniform(-self.policy.jitter, self.policy.jitter)
        return max(0.0, min(cap, base))

    def overall_timeout(self) -> float:
        cap = self.policy.max_delay_ms / 1000.0
        total_attempts = self.policy.max_retries + 1
        total = self.policy.attempt_timeout * total_attempts
        for n in range(2, total_attempts + 1):
            base = self.policy.initial_delay_ms / 1000.0 * (2 ** (n - 2))
            total += min(cap, base * (1.0 + self.policy.jitter))
        return total

    def submit(self, request: InvocationRequest, selection: Selection) -> InvocationHandle:
        handle = InvocationHandle(request, selection)
        handle._task = asyncio.create_task(self._run(handle))
        return handle

    async def invoke(self, request: InvocationRequest, selection: Selection) -> InvocationResult:
        return await self.submit(request, selection).result()

    async def _run(self, handle: InvocationHandle) -> InvocationResult:
        execution = asyncio.ensure_future(self._execute(handle))
        deadline = asyncio.ensure_future(self.clock.timer(self.overall_timeout()))
        try:
            await asyncio.wait({execution, deadline}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            deadline.cancel()
            await _stop(execution)
            raise
        deadline.cancel()

        if execution.done():
            return execution.result()
        await _stop(execution)
        logger.error(f"[{handle.request_id}] Overall deadline of {self.overall_timeout():.1f}s exceeded")
        return self._fatal(handle, ResourceExhausted("Overall request deadline exceeded"))

    async def _execute(self, handle: InvocationHandle) -> InvocationResult:
        selection = handle.selection
        max_retries = self.policy.max_retries
        last_error: Optional[BaseException] = None

        for attempt_number in range(1, max_retries + 1):
            if self._cooling_down(handle, selection.primary):
                break
            try:
                response, error = await self._attempt(handle, selection.primary, attempt_number)
            except RateLimitExceeded as e:
                return self._reject(handle, e)
            if response is not None:
                return self._success(handle, selection.primary, response)
            if not is_retryable(error):
                logger.error(f"[{handle.request_id}] Fatal error from {selection.primary.name}: {error}")
                return self._fatal(handle, error)
            last_error = error
            handle.state = RequestState.RETRYABLE_FAILURE
            if attempt_number < max_retries:
                logger.warning(
                    f"[{handle.request_id}] Retry {attempt_number}/{max_retries} for {selection.primary.name} "
                    f"after {type(error).__name__}: {error}"
                )

        handle.state = RequestState.EXHAUSTED
        primary_attempts = len(handle.attempts)
        logger.error(
            f"[{handle.request_id}] {selection.primary.name} exhausted after {primary_attempts} attempts; "
            f"falling back to {selection.fallback.name}"
        )
        MetricsService.record_fallback(handle.request.use_case.value)

        if self._cooling_down(handle, selection.fallback):
            return self._fatal(handle, ResourceExhausted(
                "Primary and fallback models are both cooling down after provider rate limiting",
                last_error=last_error
            ))
        try:
            response, error = await self._attempt(handle, selection.fallback, primary_attempts + 1, is_fallback=True)
        except RateLimitExceeded as e:
            return self._reject(handle, e)
        if response is not None:
            return self._success(handle, selection.fallback, response)
        if not is_retryable(error):
            return self._fatal(handle, error)
        return self._fatal(handle, ResourceExhausted(
            f"Primary retries and fallback model failed: {type(error).__name__}: {error}",
            last_error=error or last_error
        ))

    async def _attempt(
        self, handle: InvocationHandle, profile: ModelProfile, attempt_number: int, is_fallback: bool = False
    ) -> Tuple[Optional[ModelResponse], Optional[BaseException]]:
        backoff = self.backoff_delay(attempt_number)
        if backoff > 0:
            handle.state = RequestState.BACKOFF
            await self.clock.sleep(backoff)

        handle.state = RequestState.RATE_LIMIT_WAIT
        await self.rate_limiter.acquire(timeout=self.policy.queue_wait_timeout)

        if self._in_flight is not None:
            async with self._in_flight:
                return await self._call(handle, profile, attempt_number, backoff, is_fallback)
        return await self._call(handle, profile, attempt_number, backoff, is_fallback)

    async def _call(
        self, handle: InvocationHandle, profile: ModelProfile, attempt_number: int, backoff: float, is_fallback: bool
    ) -> Tuple[Optional[ModelResponse], Optional[BaseException]]:
        handle.state = RequestState.FALLBACK_MODEL_ATTEMPT if is_fallback else RequestState.IN_FLIGHT
        started_at = self.clock.now()
        max_tokens = min(profile.max_tokens, handle.selection.context_window)

        def record(outcome: AttemptOutcome, error: Optional[BaseException] = None):
            handle._record(InvocationAttempt(
                attempt_number=attempt_number,
                model=profile.name,
                started_at=started_at,
                outcome=outcome,
                backoff_seconds=backoff,
                is_fallback=is_fallback,
                error=f"{type(error).__name__}: {error}" if error else None
            ))

        call = asyncio.ensure_future(
            self.provider.invoke(profile, handle.request.payload, max_tokens, handle.selection.temperature)
        )
        timer = asyncio.ensure_future(self.clock.timer(self.policy.attempt_timeout))
        try:
            await asyncio.wait({call, timer}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            timer.cancel()
            call.add_done_callback(_discard_result)
            record(AttemptOutcome.CANCELLED)
            raise
        timer.cancel()

        if not call.done():
            call.cancel()
            call.add_done_callback(_discard_result)
            error = AttemptTimeoutError(f"{profile.name} exceeded {self.policy.attempt_timeout:.1f}s attempt timeout")
            record(AttemptOutcome.TIMEOUT, error)
            MetricsService.record_error(profile.name, type(error).__name__)
            return None, error

        error = call.exception()
        if error is None:
            record(AttemptOutcome.SUCCESS)
            response = call.result()
            if not isinstance(response, ModelResponse):
                response = ModelResponse(structured=response) if isinstance(response, dict) else ModelResponse(text=str(response))
            return response, None

        outcome = AttemptOutcome.TIMEOUT if isinstance(error, AttemptTimeoutError) else AttemptOutcome.PROVIDER_ERROR
        record(outcome, error)
        MetricsService.record_error(profile.name, type(error).__name__)
        if isinstance(error, ProviderRateLimited):
            self.rate_limiter.cool_down(profile.name)
        return None, error

    def _cooling_down(self, handle: InvocationHandle, profile: ModelProfile) -> bool:
        remaining = self.rate_limiter.cooldown_remaining(profile.name)
        if remaining <= 0:
            return False
        logger.warning(f"[{handle.request_id}] Skipping {profile.name}: cooling down for another {remaining:.1f}s")
        return True

    def _success(self, handle: InvocationHandle, profile: ModelProfile, response: ModelResponse) -> InvocationResult:
        handle.state = RequestState.SUCCESS
        logger.info(f"[{handle.request_id}] {profile.name} succeeded on attempt {len(handle.attempts)}")
        return InvocationResult(
            status=InvocationStatus.SUCCESS,
            model_used=profile.name,
            attempts=tuple(handle.attempts),
            response=response
        )

    def _reject(self, handle: InvocationHandle, error: RateLimitExceeded) -> InvocationResult:
        logger.warning(f"[{handle.request_id}] Rejected by rate limiter: {error}")
        MetricsService.record_rate_limit_rejection()
        return self._fatal(handle, error)

    def _fatal(self, handle: InvocationHandle, error: BaseException) -> InvocationResult:
        handle.state = RequestState.FATAL_FAILURE
        last = handle.attempts[-1].model if handle.attempts else None
        return InvocationResult(
            status=InvocationStatus.FATAL_FAILURE,
            model_used=last,
            attempts=tuple(handle.attempts),
            error=error
        )
