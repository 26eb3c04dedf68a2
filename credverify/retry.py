"""
Failure handling for the collaborators around the verification pipeline.

Two tools live here:
- exponential_backoff: retries maintenance work (the periodic sweep) on
  transient database errors. It is never applied to a user's attempt; a
  failed OCR call fails the attempt and the user appeals.
- CircuitBreaker: stops calling an OCR service that keeps failing so new
  attempts fail fast with a clear reason instead of waiting on timeouts.
"""

import functools
import time
from typing import Callable, Optional, Tuple, Type

# Substrings of error messages that point at the service or the store, not the document.
TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "connection",
    "temporary failure",
    "service unavailable",
    "database is locked",
    "503",
    "502",
    "500",
    "429",
)

# Status codes an OCR service returns when it is overloaded or down.
TRANSIENT_HTTP_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class RetryError(Exception):
    """A sweep step kept failing after every retry; the last error is the cause."""


class CircuitOpenError(Exception):
    """The OCR service is cut off; the caller fails the attempt without calling it."""

    def __init__(self, retry_after: float):
        super().__init__(f"OCR circuit is open, next trial call in {retry_after:.0f}s")
        self.retry_after = retry_after


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
):
    """
    Retry a sweep step on the given exceptions, doubling the pause each time.

    Args:
        max_retries: Retries after the first call (0 runs the step once)
        base_delay: Pause before the first retry, in seconds
        max_delay: Upper bound for any single pause
        exponential_base: Growth factor applied to the pause after each retry
        exceptions: Errors that trigger a retry; anything else propagates at once
        on_retry: Called as on_retry(retry_number, error, pause) before sleeping

    Example:
        @exponential_backoff(max_retries=3, base_delay=0.5, exceptions=(OperationalError,))
        def expire_rows(session_factory, now):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            pause = base_delay
            retries = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if retries >= max_retries:
                        raise RetryError(f"{func.__name__} failed after {retries + 1} attempts: {e}") from e
                    retries += 1
                    wait = min(pause, max_delay)
                    if on_retry:
                        on_retry(retries, e, wait)
                    time.sleep(wait)
                    pause *= exponential_base

        return wrapper
    return decorator


class CircuitBreaker:
    """
    Guards the OCR service.

    CLOSED lets calls through and counts consecutive failures. At the
    threshold it turns OPEN and refuses calls until ``recovery_timeout``
    has passed; the next call is then a HALF_OPEN trial call whose outcome
    closes or reopens it.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        expected_exception: Type[Exception] = Exception,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.state = self.CLOSED

    def call(self, func: Callable, *args, **kwargs):
        """Run ``func`` unless the circuit is open; raises CircuitOpenError if it is."""
        if self.state == self.OPEN:
            remaining = self._remaining()
            if remaining > 0:
                raise CircuitOpenError(remaining)
            self.state = self.HALF_OPEN

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def _remaining(self) -> float:
        if self.opened_at is None:
            return 0
        return max(0, self.recovery_timeout - (time.monotonic() - self.opened_at))

    def record_success(self):
        self.failure_count = 0
        self.state = self.CLOSED

    def record_failure(self):
        self.failure_count += 1
        self.opened_at = time.monotonic()
        if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.state = self.OPEN

    def reset(self):
        """Close the circuit and forget past failures."""
        self.failure_count = 0
        self.opened_at = None
        self.state = self.CLOSED


def is_transient_error(exception: Exception) -> bool:
    """True when the failure is about the service or store, so an appeal may succeed."""
    message = str(exception).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def should_retry_http_status(status_code: int) -> bool:
    """True for OCR answers that mean "try later" rather than "bad document"."""
    return status_code in TRANSIENT_HTTP_STATUSES
