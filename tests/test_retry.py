"""Backoff policies and the async retry behind the state file lock."""

import pytest

from roadmap_engine.core.exceptions import StateLockError, ValidationError
from roadmap_engine.core.retry import (
    LOCK_RETRY_CONFIG,
    BackoffStrategy,
    RetryConfig,
    async_retry_with_result,
    should_retry,
)


@pytest.mark.parametrize(
    "strategy, expected",
    [
        (BackoffStrategy.CONSTANT, [0.5, 0.5, 0.5, 0.5]),
        (BackoffStrategy.LINEAR, [0.5, 1.0, 1.5, 2.0]),
        (BackoffStrategy.EXPONENTIAL, [0.5, 1.0, 2.0, 3.0]),
    ],
)
def test_backoff_schedules_are_capped(strategy, expected):
    policy = RetryConfig(initial_delay=0.5, max_delay=3.0, backoff_strategy=strategy, jitter=False)
    assert [policy.calculate_delay(n) for n in range(4)] == pytest.approx(expected)


def test_defaults_back_off_exponentially_with_jitter():
    policy = RetryConfig()
    assert (policy.max_attempts, policy.initial_delay, policy.max_delay) == (3, 1.0, 60.0)
    assert policy.backoff_strategy is BackoffStrategy.EXPONENTIAL
    assert policy.jitter is True


def test_jitter_stays_within_factor():
    policy = RetryConfig(
        initial_delay=2.0, backoff_strategy=BackoffStrategy.CONSTANT, jitter_factor=0.1
    )
    samples = {policy.calculate_delay(3) for _ in range(25)}
    assert len(samples) > 1
    assert all(1.8 <= s <= 2.2 for s in samples)


class TestLockRetryConfig:
    """The lock policy: 5 attempts, 100ms base, doubling, no jitter."""

    def test_lock_backoff_schedule(self):
        delays = [LOCK_RETRY_CONFIG.calculate_delay(n) for n in range(4)]
        assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8])
        assert LOCK_RETRY_CONFIG.max_attempts == 5

    def test_only_lock_contention_is_retried(self):
        assert should_retry(FileExistsError(), LOCK_RETRY_CONFIG, 1)
        assert not should_retry(PermissionError(), LOCK_RETRY_CONFIG, 1)
        assert not should_retry(FileExistsError(), LOCK_RETRY_CONFIG, 5)


class TestShouldRetry:
    """Tests for should_retry with transient errors enabled."""

    def test_stop_on_wins(self):
        config = RetryConfig(retry_on=(Exception,), stop_on=(ValueError,))
        assert not should_retry(ValueError(), config, 1)

    def test_non_retryable_roadmap_error(self):
        config = RetryConfig(retry_on=())
        assert not should_retry(ValidationError("bad"), config, 1)
        assert should_retry(StateLockError("locked"), config, 1)


class TestAsyncRetryWithResult:
    """Tests for async_retry_with_result."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        async def ok():
            return 42

        result = await async_retry_with_result(ok, config=RetryConfig(jitter=False))
        assert result.success
        assert result.result == 42
        assert result.attempts == 1
        assert result.total_delay == 0.0

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        calls = []

        async def flaky(value):
            calls.append(value)
            if len(calls) < 3:
                raise FileExistsError("held")
            return value

        config = RetryConfig(
            max_attempts=5, initial_delay=0.001, jitter=False, retry_on=(FileExistsError,)
        )
        result = await async_retry_with_result(flaky, "x", config=config)

        assert result.success
        assert result.result == "x"
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_exhausted_attempts_return_failure(self):
        async def always_held():
            raise FileExistsError("held")

        config = RetryConfig(
            max_attempts=4,
            initial_delay=0.001,
            jitter=False,
            retry_on=(FileExistsError,),
            retry_transient=False,
        )
        result = await async_retry_with_result(always_held, config=config)

        assert result.failed
        assert result.attempts == 4
        assert isinstance(result.last_exception, FileExistsError)
        # No sleep after the final attempt
        assert result.total_delay == pytest.approx(0.001 + 0.002 + 0.004)

    @pytest.mark.asyncio
    async def test_ineligible_error_propagates(self):
        async def denied():
            raise PermissionError("denied")

        with pytest.raises(PermissionError):
            await async_retry_with_result(denied, config=LOCK_RETRY_CONFIG)
