"""
Retry with exponential backoff and jitter.

Delays grow geometrically per attempt up to max_delay. With jitter on, each
delay is scaled by a random factor in [0.5, 1.0].
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import requests

from trainingpeaks_mcp.sdk.diagnostics import RequestContext
from trainingpeaks_mcp.sdk.errors import (
    TrainingPeaksError,
    budget_exhausted_error,
    cancelled_error,
    classify,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff settings. Delays are in milliseconds."""
    attempts: int = 3
    base_delay: float = 1000
    backoff_factor: float = 2.0
    max_delay: float = 10000
    jitter: bool = True

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")
        if self.max_delay < 0:
            raise ValueError("max_delay must be >= 0")

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Delay in ms to wait after failed attempt number `attempt` (1-indexed)."""
        delay = min(self.base_delay * self.backoff_factor ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay *= 0.5 + rng() * 0.5
        return delay


DEFAULT_RETRY_POLICY = RetryPolicy()


class RetryHandler:
    """
    Runs an operation up to `policy.attempts` times.

    The operation receives the attempt number and either returns a value or
    raises TrainingPeaksError. Raw requests exceptions are classified first.
    Only retryable errors are retried; everything else propagates at once.
    """

    def __init__(
        self,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        log: Optional[logging.Logger] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.policy = policy
        self._log = log or logger
        self._sleep = sleep

    def execute(
        self,
        operation: Callable[[int], T],
        context: Optional[RequestContext] = None,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> T:
        """
        Execute `operation` with retries.

        Args:
            operation: Callable taking the 1-indexed attempt number
            context: Request metadata for logs and error correlation
            cancel: Event set by the caller to abandon the operation
            deadline: time.monotonic() value after which no retry is scheduled

        Returns:
            Whatever `operation` returns on its first successful attempt

        Raises:
            TrainingPeaksError: The last classified error, a cancellation, or
                a timeout when the deadline leaves no room for another attempt
        """
        label = context.describe() if context else "operation"
        attempts = self.policy.attempts

        for attempt in range(1, attempts + 1):
            if cancel is not None and cancel.is_set():
                raise TrainingPeaksError(cancelled_error(context))
            if context is not None:
                context.attempt = attempt

            try:
                return operation(attempt)
            except requests.RequestException as exc:
                failure = TrainingPeaksError(classify(exc, context))
                failure.__cause__ = exc
            except TrainingPeaksError as exc:
                failure = exc

            error = failure.error
            if attempt == attempts or not error.is_retryable:
                self._log.error(
                    f"{label} failed after {attempt}/{attempts} attempt(s): "
                    f"{error.code} {error.message} (retryable={error.is_retryable})"
                )
                raise failure

            delay_ms = self.policy.delay_for(attempt)
            self._log.warning(
                f"{label} attempt {attempt}/{attempts} failed with {error.code} "
                f"({error.message}); retrying in {round(delay_ms)}ms"
            )

            delay = delay_ms / 1000
            if deadline is not None and time.monotonic() + delay >= deadline:
                self._log.error(f"{label} timeout budget exhausted after {attempt} attempt(s)")
                raise TrainingPeaksError(budget_exhausted_error(context, attempt)) from failure

            self._wait(delay, cancel, context)

        # attempts >= 1, so the loop always returns or raises
        raise AssertionError("unreachable")

    def _wait(self, seconds: float, cancel: Optional[threading.Event], context: Optional[RequestContext]):
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            if cancel.wait(seconds):
                raise TrainingPeaksError(cancelled_error(context))
        else:
            time.sleep(seconds)
