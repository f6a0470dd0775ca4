"""Tests for action and execution retry strategies."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from core.exceptions import ConfigurationError, DeliveryError, NotFoundError, TemplateResolutionError
from workflow.retry_strategies import (
    RETRY_PRESETS,
    RetryPolicy,
    RetryStrategy,
    execute_with_retry,
)


# ─── Building strategies ───

@pytest.mark.unit
class TestRetryStrategyCreation:
    @pytest.mark.parametrize("strategy, policy, jitter", [
        (RetryStrategy.none(), RetryPolicy.NONE, True),
        (RetryStrategy.fixed(delay=5.0), RetryPolicy.FIXED, False),
        (RetryStrategy.exponential(), RetryPolicy.EXPONENTIAL, True),
        (RetryStrategy.linear(), RetryPolicy.LINEAR, False),
    ])
    def test_constructors(self, strategy, policy, jitter):
        assert strategy.policy == policy
        assert strategy.jitter is jitter

    def test_from_dict_snake_case(self):
        s = RetryStrategy.from_dict({
            "policy": "exponential",
            "max_retries": 7,
            "base_delay": 0.5,
            "max_delay": 120.0,
            "retryable_errors": ["ReadTimeout"],
        })
        assert (s.policy, s.max_retries, s.base_delay, s.max_delay) == (RetryPolicy.EXPONENTIAL, 7, 0.5, 120.0)
        assert s.retryable_errors == ("ReadTimeout",)

    def test_from_dict_camel_case(self):
        s = RetryStrategy.from_dict({"policy": "LINEAR", "maxRetries": 2, "baseDelay": 3})
        assert s.policy == RetryPolicy.LINEAR
        assert s.max_retries == 2
        assert s.base_delay == 3.0

    def test_presets(self):
        assert set(RETRY_PRESETS) == {"none", "conservative", "aggressive", "webhook", "database", "email"}
        assert RetryStrategy.from_dict({"preset": "webhook"}) is RETRY_PRESETS["webhook"]
        assert RetryStrategy.from_dict(None) is RETRY_PRESETS["conservative"]
        assert RetryStrategy.from_dict({}) is RETRY_PRESETS["conservative"]

    @pytest.mark.parametrize("config, message", [
        ({"preset": "forever"}, "Unknown retry preset"),
        ({"policy": "fibonacci"}, "fibonacci"),
    ])
    def test_from_dict_rejects_unknown_names(self, config, message):
        with pytest.raises(ValueError, match=message):
            RetryStrategy.from_dict(config)

    def test_to_dict_is_accepted_by_from_dict(self):
        original = RetryStrategy.from_dict({"policy": "linear", "maxRetries": 4, "retryableErrors": ["X"]})
        assert RetryStrategy.from_dict(original.to_dict()) == original


# ─── Delays ───

@pytest.mark.unit
class TestDelays:
    def test_none(self):
        assert RetryStrategy.none().compute_delay(1) == 0.0

    def test_fixed(self):
        s = RetryStrategy.fixed(delay=5.0)
        assert [s.compute_delay(n) for n in (1, 2, 3)] == [5.0, 5.0, 5.0]

    def test_exponential(self):
        s = RetryStrategy.exponential(base_delay=1.0, jitter=False)
        assert [s.compute_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_linear(self):
        s = RetryStrategy.linear(base_delay=2.0)
        assert [s.compute_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 6.0]

    def test_capped_at_max_delay(self):
        s = RetryStrategy.exponential(base_delay=10.0, max_delay=30.0, jitter=False)
        assert s.compute_delay(5) == 30.0

    def test_jitter_stays_in_range(self):
        s = RetryStrategy.exponential(base_delay=10.0, max_delay=100.0)
        assert all(5.0 <= s.compute_delay(1) <= 15.0 for _ in range(50))

    def test_workflow_retry_is_fixed(self):
        s = RetryStrategy.for_workflow(max_retries=3, retry_delay_seconds=120)
        now = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)
        assert s.retry_after(1, now) == now + timedelta(seconds=120)
        assert s.retry_after(3, now) == now + timedelta(seconds=120)


# ─── Retry decisions ───

@pytest.mark.unit
class TestShouldRetry:
    def test_attempt_budget(self):
        s = RetryStrategy.fixed(max_retries=3)
        assert s.should_retry(3) is True
        assert s.should_retry(4) is False
        assert RetryStrategy.none().should_retry(1) is False

    @pytest.mark.parametrize("error", [
        TimeoutError("timeout"),
        ConnectionError("refused"),
        DeliveryError("SMTP refused"),
        httpx.ConnectError("refused"),
        httpx.ReadTimeout("slow"),
        Exception("HTTP 503 Service Unavailable"),
        Exception("HTTP 429 Too Many Requests"),
    ])
    def test_transient_failures(self, error):
        assert RetryStrategy.exponential().should_retry(1, error) is True

    @pytest.mark.parametrize("error", [
        ConfigurationError("NOT group requires exactly one condition"),
        NotFoundError("Task not found: t1"),
        TemplateResolutionError(["entity.data.missing"]),
        Exception("bad input"),
    ])
    def test_permanent_failures(self, error):
        assert RetryStrategy.exponential().is_retryable(error) is False

    def test_named_errors_replace_classification(self):
        s = replace(RetryStrategy.exponential(), retryable_errors=("ValueError",))
        assert s.should_retry(1, ValueError("bad")) is True
        assert s.should_retry(1, TimeoutError("timeout")) is False

    def test_switches(self):
        s = RetryStrategy.from_dict({"policy": "fixed", "retryOnDeliveryError": False, "retryOnTimeout": False})
        assert s.is_retryable(DeliveryError("SMTP refused")) is False
        assert s.is_retryable(httpx.ReadTimeout("slow")) is False


# ─── execute_with_retry ───

def flaky(failures, error=ConnectionError("refused"), result="ok"):
    calls = []

    async def func():
        calls.append(1)
        if len(calls) <= failures:
            raise error
        return result

    return func, calls


@pytest.mark.unit
class TestExecuteWithRetry:
    async def test_first_attempt(self):
        func, calls = flaky(0, result=42)
        assert await execute_with_retry(func, RetryStrategy.fixed(max_retries=3, delay=0.01)) == 42
        assert len(calls) == 1

    async def test_recovers(self):
        func, calls = flaky(2)
        assert await execute_with_retry(func, RetryStrategy.fixed(max_retries=5, delay=0.01)) == "ok"
        assert len(calls) == 3

    async def test_gives_up_with_last_error(self):
        func, calls = flaky(10, error=TimeoutError("always timeout"))
        with pytest.raises(TimeoutError):
            await execute_with_retry(func, RetryStrategy.fixed(max_retries=2, delay=0.01))
        assert len(calls) == 3

    async def test_permanent_error_not_retried(self):
        func, calls = flaky(10, error=NotFoundError("Project p9 not found"))
        with pytest.raises(NotFoundError):
            await execute_with_retry(func, RetryStrategy.fixed(max_retries=5, delay=0.01))
        assert len(calls) == 1

    async def test_on_retry_callback(self):
        seen = []

        async def on_retry(attempt, error, delay):
            seen.append((attempt, str(error), delay))

        func, _ = flaky(2, error=ConnectionError("fail"))
        await execute_with_retry(func, RetryStrategy.fixed(max_retries=5, delay=0.01), on_retry=on_retry)
        assert seen == [(1, "fail", 0.01), (2, "fail", 0.01)]
