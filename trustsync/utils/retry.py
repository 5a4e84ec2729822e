"""Bounded polling combinator shared by readiness and liveness checks."""

import logging
import time
from typing import Callable, Optional, Tuple, TypeVar

logger = logging.getLogger("trustsync")

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised when no attempt satisfied the success predicate."""

    def __init__(self, attempts: int, last_result=None, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_result = last_result
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} attempts")


class RetryCancelled(RetryExhausted):
    """Raised when the wait between attempts was interrupted by shutdown."""


def _default_sleep(seconds: float) -> bool:
    time.sleep(seconds)
    return False


def retry(
    operation: Callable[[int], T],
    interval: float,
    max_attempts: int,
    predicate: Callable[[T], bool] = bool,
    sleep: Callable[[float], bool] = _default_sleep,
    retry_on: tuple = (),
) -> Tuple[T, int]:
    """
    Call ``operation`` until ``predicate`` accepts its result.

    Args:
        operation: Callable receiving the 1-based attempt number
        interval: Seconds to wait between attempts (not after the last one)
        max_attempts: Upper bound on attempts
        predicate: Success test applied to each result
        sleep: Wait function; returning True means "stop requested"
            (``threading.Event.wait`` fits this contract)
        retry_on: Exception types treated as a failed attempt instead of
            being propagated

    Returns:
        Tuple of the accepted result and the attempt number it came from

    Raises:
        RetryExhausted: If every attempt failed
        RetryCancelled: If ``sleep`` reported a stop request
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_result = None
    last_error = None
    for attempt in range(1, max_attempts + 1):
        try:
            last_result = operation(attempt)
            last_error = None
            if predicate(last_result):
                return last_result, attempt
        except retry_on as e:
            last_error = e
            logger.debug(f"Attempt {attempt}/{max_attempts} raised: {e}")

        if attempt < max_attempts and sleep(interval):
            raise RetryCancelled(attempt, last_result, last_error)

    raise RetryExhausted(max_attempts, last_result, last_error)
