import logging
import threading
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Optional

from maternal_risk.core.clock import Clock, SYSTEM_CLOCK
from maternal_risk.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class RateLimitState(BaseModel):
    model_config = ConfigDict(frozen=True)

    tokens: float
    capacity: int
    refill_rate_per_second: float
    last_refill_at: float
    cooldowns: Dict[str, float] = Field(default_factory=dict)


class RateLimitConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    requests_per_minute: float = Field(60.0, gt=0)
    burst_limit: int = Field(100, ge=1)
    cooldown_period_ms: int = Field(60000, ge=0)


class TokenBucketRateLimiter:
    """
    Token bucket shared by every model invocation in the process.

    Tokens are only ever taken inside the lock, so concurrent acquirers cannot
    spend the same token. Waiting happens outside the lock.

    Provider rate limiting is tracked separately, per model: a model that
    answered 429 is marked as cooling down until its horizon passes. The
    shared bucket is left alone so other models keep their throughput.
    """

    def __init__(self, config: Optional[RateLimitConfig] = None, clock: Clock = SYSTEM_CLOCK):
        self.config = config or RateLimitConfig()
        self.clock = clock
        self.capacity = self.config.burst_limit
        self.refill_rate = self.config.requests_per_minute / 60.0
        self._lock = threading.Lock()
        self._tokens = float(self.capacity)
        self._last_refill_at = clock.now()
        self._cooldown_until: Dict[str, float] = {}

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill_at
        if elapsed <= 0:
            return
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_rate)
        self._last_refill_at = now

    def _try_take(self) -> float:
        """Takes a token and returns 0, or returns the seconds until one is available."""
        with self._lock:
            self._refill(self.clock.now())
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            return (1.0 - self._tokens) / self.refill_rate

    def try_acquire(self) -> bool:
        return self._try_take() == 0.0

    async def acquire(self, timeout: float = 0.0) -> float:
        """Blocks until a token is taken. Returns the time spent waiting."""
        started = self.clock.now()
        deadline = started + max(0.0, timeout)
        while True:
            wait = self._try_take()
            if wait == 0.0:
                return self.clock.now() - started
            now = self.clock.now()
            if now + wait > deadline + 1e-9:
                raise RateLimitExceeded(
                    f"Rate limit token unavailable for {wait:.2f}s (queue wait limit {timeout:.2f}s)",
                    wait_seconds=wait
                )
            await self.clock.sleep(wait)

    def cool_down(self, model: str) -> None:
        """Marks ``model`` as rate limited by its provider for the configured cooldown period."""
        if self.config.cooldown_period_ms <= 0:
            return
        with self._lock:
            self._cooldown_until[model] = self.clock.now() + self.config.cooldown_period_ms / 1000.0
        logger.warning(f"{model} cooling down for {self.config.cooldown_period_ms}ms after provider rate limiting")

    def cooldown_remaining(self, model: str) -> float:
        with self._lock:
            until = self._cooldown_until.get(model)
            if until is None:
                return 0.0
            remaining = until - self.clock.now()
            if remaining <= 0:
                del self._cooldown_until[model]
                return 0.0
            return remaining

    def snapshot(self) -> RateLimitState:
        with self._lock:
            now = self.clock.now()
            self._refill(now)
            return RateLimitState(
                tokens=self._tokens,
                capacity=self.capacity,
                refill_rate_per_second=self.refill_rate,
                last_refill_at=self._last_refill_at,
                cooldowns={m: until - now for m, until in self._cooldown_until.items() if until > now}
            )
