"""Retry with exponential backoff plus a circuit breaker for fal.ai calls.

One executor instance is shared by every provider call in the process, so the
breaker reflects the provider's health as a whole:

- Closed: calls go through; retryable failures are retried with backoff
- Open: calls fail fast with CircuitOpenError until the cooldown elapses

Reaching `failure_threshold` consecutive retryable failures opens the circuit.
Any success, or a non-retryable answer (the provider is up but rejected the
request), closes it again.
"""

import asyncio
import random
import time
from typing import Awaitable, Callable, TypeVar

import structlog

from tryon.core.config import Settings
from tryon.services.exceptions import CircuitOpenError, FalApiError

logger = structlog.get_logger()

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """Classify an attempt failure.

    Classification rules:
        - FalApiError 429/408/5xx → retryable
        - Other FalApiError (4xx) → not retryable
        - CircuitOpenError → retryable
        - Transport errors (timeouts, connection resets) → retryable
        - Anything else unclassified → retryable
    """
    if isinstance(error, FalApiError):
        return error.retryable

    # Circuit-open, transport failures and unclassified errors are all retried
    return True


class FalRetryExecutor:
    """Runs provider operations with retries and a shared circuit breaker."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 5.0,
        failure_threshold: int = 5,
        open_duration: float = 30.0,
        max_jitter: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize executor.

        Args:
            max_attempts: Attempts per call, including the first (default: 3)
            base_delay: Backoff before the second attempt, in seconds
            max_delay: Upper bound on backoff before jitter, in seconds
            failure_threshold: Consecutive retryable failures that open the circuit
            open_duration: Seconds the circuit stays open
            max_jitter: Upper bound of random jitter added to each backoff
            clock: Time source (monotonic seconds)
            sleep: Coroutine used to wait between attempts
        """
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.failure_threshold = failure_threshold
        self.open_duration = open_duration
        self.max_jitter = max_jitter
        self._clock = clock
        self._sleep = sleep
        self.consecutive_failures = 0
        self.circuit_open_until = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "FalRetryExecutor":
        return cls(
            max_attempts=settings.fal_retry_max_attempts,
            base_delay=settings.fal_retry_base_delay_ms / 1000,
            max_delay=settings.fal_retry_max_delay_ms / 1000,
            failure_threshold=settings.fal_circuit_failure_threshold,
            open_duration=settings.fal_circuit_open_ms / 1000,
        )

    @property
    def is_open(self) -> bool:
        return self._clock() < self.circuit_open_until

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        request_id: str | None = None,
    ) -> T:
        """Run operation, retrying retryable failures.

        Args:
            operation: Zero-argument coroutine factory performing one attempt
            operation_name: Name used in logs (e.g. "queue.submit")
            request_id: Provider request id, when known, for logs

        Returns:
            Whatever operation returns

        Raises:
            CircuitOpenError: Circuit is open; operation was not called
            Exception: The last attempt's error once attempts are exhausted,
                or a non-retryable error immediately
        """
        if self.is_open:
            raise CircuitOpenError()

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await operation()
            except Exception as e:
                if not is_retryable(e):
                    self.reset()
                    raise

                self._record_failure()

                if attempt == self.max_attempts:
                    logger.warning(
                        "fal.retry.exhausted",
                        operation=operation_name,
                        request_id=request_id,
                        attempts=attempt,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    raise

                delay = self.backoff_delay(attempt)
                logger.info(
                    "fal.retry.scheduled",
                    operation=operation_name,
                    request_id=request_id,
                    attempt=attempt,
                    retry_in_seconds=round(delay, 3),
                    error_type=type(e).__name__,
                )
                await self._sleep(delay)
            else:
                self.reset()
                return result

        # Unreachable: the loop either returns or raises
        raise RuntimeError(f"Unable to execute {operation_name}")

    def backoff_delay(self, attempt: int) -> float:
        exponential = self.base_delay * 2 ** max(0, attempt - 1)
        return min(exponential, self.max_delay) + random.uniform(0, self.max_jitter)

    def reset(self) -> None:
        self.consecutive_failures = 0
        self.circuit_open_until = 0.0

    def _record_failure(self) -> None:
        self.consecutive_failures += 1

        if self.consecutive_failures >= self.failure_threshold:
            self.circuit_open_until = self._clock() + self.open_duration
            logger.error(
                "fal.circuit.opened",
                consecutive_failures=self.consecutive_failures,
                open_seconds=self.open_duration,
            )
