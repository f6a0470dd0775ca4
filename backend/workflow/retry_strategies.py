"""Retry strategies for actions and whole workflow executions.

Two places retry:
- an action declaring ``retryOnError`` re-runs its handler inside its own
  timeout race, with the backoff of the action's ``retry`` policy;
- a failed execution moves to RETRYING with ``nextRetryAt`` computed by a
  fixed-delay strategy built from the workflow's ``retryDelaySeconds``.

Usage:
    strategy = RetryStrategy.from_dict({"policy": "exponential", "max_retries": 3})
    result = await execute_with_retry(handler.run, strategy, config, namespace)
"""

import asyncio
import random
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

import httpx
import structlog

from core.exceptions import DeliveryError, NotFoundError, TemplateResolutionError, ValidationError

logger = structlog.get_logger(__name__)

# Failures that cannot succeed by trying again
NON_RETRYABLE_ERRORS = (ValidationError, NotFoundError, TemplateResolutionError)

_TIMEOUT_ERRORS = (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)
_DELIVERY_ERRORS = (DeliveryError, ConnectionError, httpx.TransportError)
_TRANSIENT_MARKERS = ("timeout", "connection", "temporar", "503", "429", "502", "504")


class RetryPolicy(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    NONE = "none"


@dataclass(frozen=True)
class RetryStrategy:
    """How many times to retry, how long to wait, and which errors qualify.

    ``retryable_errors`` (exception class names) replaces the built-in
    classification when non-empty.
    """
    policy: RetryPolicy
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 300.0
    jitter: bool = True
    jitter_range: float = 0.5
    retryable_errors: tuple[str, ...] = field(default_factory=tuple)
    retry_on_timeout: bool = True
    retry_on_delivery_error: bool = True

    # ─── Constructors ──────────────────────────────────────

    @classmethod
    def none(cls) -> "RetryStrategy":
        return cls(policy=RetryPolicy.NONE, max_retries=0)

    @classmethod
    def fixed(cls, max_retries: int = 3, delay: float = 5.0) -> "RetryStrategy":
        return cls(RetryPolicy.FIXED, max_retries, delay, max(delay, 300.0), jitter=False)

    @classmethod
    def exponential(
        cls,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        jitter: bool = True,
    ) -> "RetryStrategy":
        """delay = base_delay * 2^(attempt-1), capped at max_delay."""
        return cls(RetryPolicy.EXPONENTIAL, max_retries, base_delay, max_delay, jitter=jitter)

    @classmethod
    def linear(cls, max_retries: int = 5, base_delay: float = 2.0, max_delay: float = 30.0) -> "RetryStrategy":
        """delay = base_delay * attempt, capped at max_delay."""
        return cls(RetryPolicy.LINEAR, max_retries, base_delay, max_delay, jitter=False)

    @classmethod
    def for_workflow(cls, max_retries: int, retry_delay_seconds: float) -> "RetryStrategy":
        """Whole-execution retry: fixed delay, no jitter."""
        return cls.fixed(max_retries=max_retries, delay=float(retry_delay_seconds))

    @classmethod
    def from_dict(cls, config: Optional[dict]) -> "RetryStrategy":
        """Build a strategy from an action's ``retry`` block.

        Accepts snake_case or camelCase keys, or ``{"preset": "<name>"}``.
        Missing config yields the ``conservative`` preset.

        Raises:
            ValueError: unknown preset or policy name
        """
        if not config:
            return RETRY_PRESETS["conservative"]
        if config.get("preset"):
            try:
                return RETRY_PRESETS[config["preset"]]
            except KeyError:
                raise ValueError(f"Unknown retry preset: {config['preset']}") from None

        def pick(snake: str, camel: str, default: Any) -> Any:
            return config.get(snake, config.get(camel, default))

        return cls(
            policy=RetryPolicy(str(config.get("policy", "exponential")).lower()),
            max_retries=int(pick("max_retries", "maxRetries", 3)),
            base_delay=float(pick("base_delay", "baseDelay", 1.0)),
            max_delay=float(pick("max_delay", "maxDelay", 300.0)),
            jitter=bool(config.get("jitter", True)),
            jitter_range=float(pick("jitter_range", "jitterRange", 0.5)),
            retryable_errors=tuple(pick("retryable_errors", "retryableErrors", ())),
            retry_on_timeout=bool(pick("retry_on_timeout", "retryOnTimeout", True)),
            retry_on_delivery_error=bool(pick("retry_on_delivery_error", "retryOnDeliveryError", True)),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["policy"] = self.policy.value
        data["retryable_errors"] = list(self.retryable_errors)
        return data

    # ─── Decisions ─────────────────────────────────────────

    def compute_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        if self.policy == RetryPolicy.NONE:
            return 0.0
        if self.policy == RetryPolicy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (attempt - 1))
        elif self.policy == RetryPolicy.LINEAR:
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay
        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            spread = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-spread, spread))
        return round(delay, 3)

    def retry_after(self, attempt: int, now: datetime) -> datetime:
        """When retry number ``attempt`` is due."""
        return now + timedelta(seconds=self.compute_delay(attempt))

    def is_retryable(self, error: BaseException) -> bool:
        """Whether ``error`` is the kind of failure another try can fix."""
        if isinstance(error, NON_RETRYABLE_ERRORS):
            return False
        if self.retryable_errors:
            return type(error).__name__ in self.retryable_errors
        if isinstance(error, _TIMEOUT_ERRORS):
            return self.retry_on_timeout
        if isinstance(error, _DELIVERY_ERRORS):
            return self.retry_on_delivery_error
        message = str(error).lower()
        return any(marker in message for marker in _TRANSIENT_MARKERS)

    def should_retry(self, attempt: int, error: Optional[BaseException] = None) -> bool:
        """Whether failure number ``attempt`` (1-based) gets another try.

        Without an error only the attempt budget is checked.
        """
        if self.policy == RetryPolicy.NONE or attempt > self.max_retries:
            return False
        return error is None or self.is_retryable(error)


RETRY_PRESETS: dict[str, RetryStrategy] = {
    "none": RetryStrategy.none(),
    "conservative": RetryStrategy.exponential(max_retries=3, base_delay=2.0, max_delay=30.0),
    "aggressive": RetryStrategy.exponential(max_retries=7, base_delay=0.5, max_delay=120.0),
    "webhook": RetryStrategy.exponential(max_retries=5, base_delay=1.0, max_delay=60.0),
    "database": RetryStrategy.fixed(max_retries=3, delay=2.0),
    "email": RetryStrategy.linear(max_retries=3, base_delay=10.0, max_delay=60.0),
}


async def execute_with_retry(
    func: Callable,
    strategy: RetryStrategy,
    *args,
    on_retry: Optional[Callable] = None,
    **kwargs,
):
    """Await ``func(*args, **kwargs)``, retrying per ``strategy``.

    ``on_retry(attempt, error, delay)`` (sync or async) runs before each
    sleep. Returns the first successful result; re-raises the last error
    once the strategy gives up.
    """
    attempt = 0
    while True:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            attempt += 1
            if not strategy.should_retry(attempt, e):
                raise
            delay = strategy.compute_delay(attempt)
            logger.info("retry.scheduled", attempt=attempt, delay=delay, error=str(e))
            if on_retry:
                outcome = on_retry(attempt, e, delay)
                if asyncio.iscoroutine(outcome):
                    await outcome
            await asyncio.sleep(delay)
