"""
Rule Execution Policies
=======================

Two independent resilience policies for bulk rule runs:

- RetryPolicy retries a single ticket's execution on transient errors
- CircuitBreaker aborts a whole run after consecutive transient failures

The retry policy sees exceptions; the breaker only sees finished outcomes.
"""

import asyncio
import socket
from typing import Awaitable, Callable, Iterable, Iterator, TypeVar

from sqlalchemy.exc import DBAPIError, DisconnectionError

from serviflow.config import ExecutionResult
from serviflow.core.exceptions import TransientInfrastructureError
from serviflow.rules.domain.entities import RuleExecutionOutcome
from serviflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_TRANSIENT_TYPES = (
    ConnectionResetError,
    ConnectionRefusedError,
    TimeoutError,
    asyncio.TimeoutError,
    socket.gaierror,
    DisconnectionError,
    TransientInfrastructureError,
)


def is_transient_error(error: BaseException) -> bool:
    """Connection-level failures that may succeed on a later attempt."""
    if isinstance(error, _TRANSIENT_TYPES):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    return False


class RetryPolicy:
    """
    Retry an async operation on transient errors with linear backoff.

    Attempt ``n`` that fails transiently waits ``delay_seconds * n`` before
    attempt ``n + 1``. Non-transient errors propagate immediately.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        delay_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max(1, max_attempts)
        self.delay_seconds = delay_seconds
        self._sleep = sleep
        self.last_attempts = 0

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            self.last_attempts = attempt
            try:
                return await operation()
            except Exception as e:
                if not is_transient_error(e) or attempt >= self.max_attempts:
                    raise
                logger.warning(
                    "Transient error, retrying",
                    extra={"attempt": attempt, "error": str(e), "error_type": type(e).__name__}
                )
                await self._sleep(self.delay_seconds * attempt)


class CircuitBreaker:
    """
    Circuit breaker over a bulk run.

    States:
    - CLOSED: tickets are attempted
    - OPEN: after ``failure_threshold`` consecutive transient failures; the
      run stops before the next ticket

    There is no half-open state: an opened breaker ends the run.
    """

    def __init__(self, failure_threshold: int = 5):
        self.failure_threshold = failure_threshold
        self._failure_count = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def record(self, outcome: RuleExecutionOutcome) -> None:
        """Count transient failures; anything else resets the counter."""
        if outcome.result == ExecutionResult.FAILURE and outcome.transient:
            self.record_failure()
        else:
            self.record_success()

    def record_success(self) -> None:
        self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._failure_count >= self.failure_threshold and not self._open:
            self._open = True
            logger.warning(
                "Circuit breaker opened",
                extra={"failure_count": self._failure_count}
            )

    def guard(self, items: Iterable[T]) -> Iterator[T]:
        """Yield items until the breaker opens."""
        for item in items:
            if self._open:
                return
            yield item


def chunked(items: list, size: int) -> Iterator[list]:
    size = max(1, size)
    for start in range(0, len(items), size):
        yield items[start:start + size]
