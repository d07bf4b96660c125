import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from chatbridge.models.errors.enums import ErrorKind
from chatbridge.models.errors.models import BridgeRequestError, ClassifiedError
from chatbridge.services.error_classifier import ClassificationContext, ErrorClassifier


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.2

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt after `attempt`, in seconds, without jitter"""
        delay_ms = self.base_delay_ms * self.backoff_multiplier ** (attempt - 1)
        return min(delay_ms, self.max_delay_ms) / 1000.0


@dataclass(frozen=True)
class RetryState:
    attempt: int
    delay_seconds: float
    error: ClassifiedError


RetryListener = Callable[[RetryState], None]


class RetryManager:
    """Runs an async operation with exponential backoff.

    Holds no state between `with_retry` calls; every call starts at attempt 1.
    Cancelling the task that awaits `with_retry` interrupts the backoff sleep,
    so no attempt fires after cancellation.
    """

    def __init__(
        self,
        classifier: ErrorClassifier,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        random_source: Callable[[], float] = random.random,
    ) -> None:
        self._classifier = classifier
        self._sleep = sleep
        self._random = random_source
        self._listeners: list[RetryListener] = []

    def add_retry_listener(self, listener: RetryListener) -> None:
        self._listeners.append(listener)

    def remove_retry_listener(self, listener: RetryListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def compute_delay(self, attempt: int, policy: RetryPolicy, error: ClassifiedError) -> float:
        if error.kind == ErrorKind.RATE_LIMITED and error.retry_after_seconds is not None:
            return min(error.retry_after_seconds, policy.max_delay_ms / 1000)

        delay = policy.delay_for(attempt)
        if policy.jitter_ratio > 0:
            # uniform in [-jitter_ratio, +jitter_ratio]
            delay += delay * policy.jitter_ratio * (self._random() * 2 - 1)
        return max(delay, 0.0)

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        context: ClassificationContext | None = None,
    ) -> T:
        context = context or ClassificationContext()
        attempt = 1

        while True:
            try:
                return await operation()
            except Exception as e:
                error = self._classifier.classify(
                    e,
                    ClassificationContext(online=context.online, attempt=attempt),
                )

                if error.kind == ErrorKind.OFFLINE or not error.retryable:
                    raise BridgeRequestError(error, attempt) from e

                if attempt >= policy.max_attempts:
                    logger.error(
                        "Giving up after %d attempt(s): %s (status=%s, detail=%s)",
                        attempt, error.kind.value, error.status_code, error.detail,
                    )
                    raise BridgeRequestError(error, attempt) from e

                delay = self.compute_delay(attempt, policy, error)
                logger.warning(
                    "Attempt %d/%d failed with %s, retrying in %.2fs",
                    attempt, policy.max_attempts, error.kind.value, delay,
                )
                self._notify(RetryState(attempt=attempt, delay_seconds=delay, error=error))

            await self._sleep(delay)
            attempt += 1

    def _notify(self, state: RetryState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Retry listener failed")
