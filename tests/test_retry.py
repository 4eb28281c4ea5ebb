"""
Tests for the retry policy and manager.
"""

import pytest

from tarlift.core.retry import (
    DEFAULT_RETRY_POLICY,
    NO_RETRY_POLICY,
    RetryManager,
    RetryPolicy,
    RetryState,
)
from tarlift.exceptions import (
    AuthenticationError,
    ConflictError,
    RetryExhaustedError,
    StoreError,
    TransientNetworkError,
)


async def _no_sleep(delay: float) -> None:
    return None


class _Flaky:
    """Fails with the given errors in order, then returns "ok"."""

    def __init__(self, *errors: Exception) -> None:
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


@pytest.mark.unit
class TestRetryPolicy:
    """Tests for RetryPolicy configuration."""

    def test_default_values(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.initial_delay == 1.0
        assert policy.max_delay == 30.0
        assert policy.exponential_base == 2.0
        assert policy.jitter is True

    def test_validation_max_attempts(self):
        with pytest.raises(ValueError, match="max_attempts must be >= 0"):
            RetryPolicy(max_attempts=-1)

    def test_validation_initial_delay(self):
        with pytest.raises(ValueError, match="initial_delay must be > 0"):
            RetryPolicy(initial_delay=0)

    def test_validation_max_delay(self):
        with pytest.raises(ValueError, match="max_delay must be >= initial_delay"):
            RetryPolicy(initial_delay=10.0, max_delay=5.0)

    def test_transient_errors_are_retried(self):
        policy = RetryPolicy(max_attempts=2)
        assert policy.should_retry(TransientNetworkError("503", status=503), 0)
        assert policy.should_retry(TransientNetworkError("reset"), 1)
        assert not policy.should_retry(TransientNetworkError("503"), 2)

    @pytest.mark.parametrize(
        "error",
        [
            StoreError("400 bad request", status=400),
            ConflictError("exists", status=412),
            AuthenticationError("no key"),
            ValueError("bug"),
        ],
    )
    def test_fatal_errors_are_not_retried(self, error):
        assert not RetryPolicy().should_retry(error, 0)

    def test_custom_condition(self):
        policy = RetryPolicy(retry_condition=lambda e, attempt: isinstance(e, ValueError))
        assert policy.should_retry(ValueError("x"), 0)
        assert not policy.should_retry(TransientNetworkError("x"), 0)

    def test_exponential_delay_without_jitter(self):
        policy = RetryPolicy(initial_delay=1.0, exponential_base=2.0, jitter=False)
        assert [policy.get_delay(a) for a in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped(self):
        policy = RetryPolicy(initial_delay=1.0, max_delay=5.0, jitter=True)
        assert all(policy.get_delay(a) <= 5.0 for a in range(10))

    def test_jitter_range(self):
        policy = RetryPolicy(initial_delay=4.0, max_delay=100.0, jitter=True)
        for _ in range(50):
            assert 3.0 <= policy.get_delay(0) <= 5.0

    def test_no_retry_policy(self):
        assert NO_RETRY_POLICY.max_attempts == 0
        assert not NO_RETRY_POLICY.should_retry(TransientNetworkError("x"), 0)


@pytest.mark.unit
class TestRetryManager:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        func = _Flaky()
        manager = RetryManager(RetryPolicy(), sleep=_no_sleep)
        assert await manager.execute(func, operation="put /a") == "ok"
        assert func.calls == 1
        assert manager.retries == 0

    @pytest.mark.asyncio
    async def test_transient_then_success(self):
        func = _Flaky(TransientNetworkError("503", status=503), TransientNetworkError("reset"))
        delays = []

        async def record(delay: float) -> None:
            delays.append(delay)

        manager = RetryManager(RetryPolicy(jitter=False), sleep=record)
        state = RetryState(operation="put /a")
        assert await manager.execute(func, state=state) == "ok"
        assert func.calls == 3
        assert delays == [1.0, 2.0]
        assert state.succeeded
        assert state.total_attempts == 3

    @pytest.mark.asyncio
    async def test_exhausted(self):
        last = TransientNetworkError("503 again", status=503)
        func = _Flaky(TransientNetworkError("503"), TransientNetworkError("503"), last)
        manager = RetryManager(RetryPolicy(max_attempts=2), sleep=_no_sleep)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await manager.execute(func, operation="put /a")

        assert func.calls == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last
        assert exc_info.value.__cause__ is last

    @pytest.mark.asyncio
    async def test_fatal_error_surfaces_immediately(self):
        error = StoreError("400", status=400)
        func = _Flaky(error)
        manager = RetryManager(RetryPolicy(), sleep=_no_sleep)

        with pytest.raises(StoreError) as exc_info:
            await manager.execute(func)

        assert exc_info.value is error
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_no_retry_policy_wraps_transient(self):
        func = _Flaky(TransientNetworkError("timeout"))
        manager = RetryManager(NO_RETRY_POLICY, sleep=_no_sleep)
        with pytest.raises(RetryExhaustedError):
            await manager.execute(func)
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_declined_transient_error_is_not_exhaustion(self):
        error = TransientNetworkError("429 slow down", status=429)
        func = _Flaky(error)
        policy = RetryPolicy(retry_condition=lambda e, attempt: False)
        manager = RetryManager(policy, sleep=_no_sleep)

        with pytest.raises(TransientNetworkError) as exc_info:
            await manager.execute(func)

        assert exc_info.value is error
        assert func.calls == 1

    def test_default_policy(self):
        assert RetryManager().policy is DEFAULT_RETRY_POLICY
