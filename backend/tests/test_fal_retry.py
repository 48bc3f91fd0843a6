"""Unit tests for the fal.ai retry executor and circuit breaker."""

import httpx
import pytest

from conftest import FakeClock, fake_sleep
from tryon.services.exceptions import CircuitOpenError, FalApiError
from tryon.services.fal.retry import FalRetryExecutor, is_retryable


class ScriptedOperation:
    """Raises the queued errors in order, then returns `result`."""

    def __init__(self, *errors: Exception, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def breaker(clock, sleeps):
    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return FalRetryExecutor(
        max_attempts=3,
        base_delay=0.5,
        max_delay=5.0,
        failure_threshold=5,
        open_duration=30.0,
        max_jitter=0.0,
        clock=clock,
        sleep=record_sleep,
    )


class TestIsRetryable:
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
    def test_transient_statuses_are_retryable(self, status):
        assert is_retryable(FalApiError(status)) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_client_errors_are_not_retryable(self, status):
        assert is_retryable(FalApiError(status)) is False

    def test_transport_and_unknown_errors_are_retryable(self):
        assert is_retryable(httpx.ConnectTimeout("timed out")) is True
        assert is_retryable(CircuitOpenError()) is True
        assert is_retryable(RuntimeError("boom")) is True


@pytest.mark.asyncio
class TestFalRetryExecutor:
    async def test_success_on_first_attempt(self, breaker, sleeps):
        operation = ScriptedOperation(result={"request_id": "req_1"})

        result = await breaker.execute(operation, operation_name="queue.submit")

        assert result == {"request_id": "req_1"}
        assert operation.calls == 1
        assert sleeps == []

    async def test_retries_transient_failures_with_backoff(self, breaker, sleeps):
        operation = ScriptedOperation(FalApiError(503), FalApiError(429))

        result = await breaker.execute(operation, operation_name="queue.status")

        assert result == "ok"
        assert operation.calls == 3
        assert sleeps == [0.5, 1.0]
        assert breaker.consecutive_failures == 0

    async def test_non_retryable_error_is_raised_immediately(self, breaker, sleeps):
        operation = ScriptedOperation(FalApiError(422, {"detail": "bad input"}))

        with pytest.raises(FalApiError) as exc_info:
            await breaker.execute(operation, operation_name="queue.submit")

        assert exc_info.value.status == 422
        assert operation.calls == 1
        assert sleeps == []

    async def test_non_retryable_error_resets_failure_count(self, breaker):
        breaker.consecutive_failures = 3
        operation = ScriptedOperation(FalApiError(400))

        with pytest.raises(FalApiError):
            await breaker.execute(operation, operation_name="queue.submit")

        assert breaker.consecutive_failures == 0

    async def test_last_error_is_raised_when_attempts_are_exhausted(self, breaker, sleeps):
        last = FalApiError(502)
        operation = ScriptedOperation(FalApiError(500), FalApiError(503), last)

        with pytest.raises(FalApiError) as exc_info:
            await breaker.execute(operation, operation_name="queue.submit")

        assert exc_info.value is last
        assert operation.calls == 3
        assert len(sleeps) == 2
        assert breaker.consecutive_failures == 3

    async def test_circuit_opens_after_threshold_and_fails_fast(self, breaker, clock):
        first = ScriptedOperation(*[FalApiError(503)] * 3)
        second = ScriptedOperation(*[FalApiError(503)] * 3)

        with pytest.raises(FalApiError):
            await breaker.execute(first, operation_name="queue.status")
        with pytest.raises(FalApiError):
            await breaker.execute(second, operation_name="queue.status")

        # Threshold (5) was reached on the second attempt of the second call
        assert second.calls == 3
        assert breaker.is_open is True
        assert breaker.circuit_open_until == pytest.approx(clock.now + 30.0)

        untouched = ScriptedOperation()
        with pytest.raises(CircuitOpenError):
            await breaker.execute(untouched, operation_name="queue.status")
        assert untouched.calls == 0

    async def test_circuit_allows_calls_after_cooldown(self, breaker, clock):
        breaker.consecutive_failures = 5
        breaker.circuit_open_until = clock.now + 30.0
        clock.advance(30.0)

        operation = ScriptedOperation()
        result = await breaker.execute(operation, operation_name="queue.status")

        assert result == "ok"
        assert breaker.is_open is False
        assert breaker.consecutive_failures == 0
        assert breaker.circuit_open_until == 0.0

    async def test_transport_errors_are_retried(self, breaker):
        operation = ScriptedOperation(httpx.ReadTimeout("slow"))

        assert await breaker.execute(operation, operation_name="queue.result") == "ok"
        assert operation.calls == 2


class TestBackoffDelay:
    def test_exponential_growth_is_capped(self):
        executor = FalRetryExecutor(base_delay=0.5, max_delay=5.0, max_jitter=0.0)

        assert [executor.backoff_delay(n) for n in (1, 2, 3, 4, 5, 6)] == [
            0.5,
            1.0,
            2.0,
            4.0,
            5.0,
            5.0,
        ]

    def test_jitter_is_bounded(self):
        executor = FalRetryExecutor(base_delay=0.5, max_delay=5.0, max_jitter=0.1)

        for _ in range(20):
            assert 0.5 <= executor.backoff_delay(1) <= 0.6

    def test_max_attempts_is_at_least_one(self):
        executor = FalRetryExecutor(max_attempts=0, clock=FakeClock(), sleep=fake_sleep)

        assert executor.max_attempts == 1
