"""Fixed-delay retry helper shared by every network call."""

import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


def retry_call(
    func: Callable[[int], T],
    attempts: int,
    delay: float,
    is_retryable: Callable[[Exception], bool] = lambda exc: True,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> T:
    """
    Call ``func(attempt)`` until it returns, up to ``attempts`` times.

    Args:
        func: Callable receiving the 1-based attempt number
        attempts: Maximum number of calls
        delay: Seconds to sleep between attempts
        is_retryable: Predicate deciding whether an exception is transient
        sleep: Sleep function (injectable for tests)
        on_retry: Called with (attempt, exception) before sleeping

    Returns:
        The first successful return value

    Raises:
        The last exception once attempts are exhausted, or the first
        exception the predicate rejects
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return func(attempt)
        except Exception as exc:
            if attempt >= attempts or not is_retryable(exc):
                raise
            if on_retry:
                on_retry(attempt, exc)
            sleep(delay)

    raise AssertionError("unreachable")
