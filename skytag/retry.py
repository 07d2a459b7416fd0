"""Retry policies and predicates.

``RetryPolicy`` is the caller-supplied budget for every polling loop and
launch cycle in skytag. ``retry`` wraps a synchronous call with exponential
backoff for transient provider errors.

Example:
    from skytag.retry import retry, on_error_code

    # Retry only when AWS throttles
    @retry(on=on_error_code("RequestLimitExceeded", "Throttling"))
    def describe(client):
        ...

    # Retry with custom predicate
    @retry(on=lambda e: "timeout" in str(e).lower())
    def slow_api_call():
        ...
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

# Type for the retry predicate
type RetryPredicate = Callable[[BaseException], bool]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and fixed delay for a polling loop.

    Args:
        max_attempts: Attempts before giving up. None retries forever.
        period: Seconds between attempts.
    """

    max_attempts: int | None = 10
    period: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1 or None, got {self.max_attempts}")
        if self.period < 0:
            raise ValueError(f"period must be >= 0, got {self.period}")

    @property
    def bounded(self) -> bool:
        return self.max_attempts is not None

    def exhausted(self, attempts: int) -> bool:
        return self.max_attempts is not None and attempts >= self.max_attempts


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    delay = state.next_action.sleep if state.next_action else 0.0
    logger.warning(
        f"Retry {state.attempt_number} of {state.fn.__name__ if state.fn else 'call'} "
        f"after {type(exc).__name__}: {exc}. Waiting {delay:.1f}s..."
    )


def retry[**P, T](
    on: type[BaseException] | tuple[type[BaseException], ...] | RetryPredicate = Exception,
    max_attempts: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator that retries a call with exponential backoff.

    Args:
        on: When to retry. An exception class, a tuple of them, or a predicate.
        max_attempts: Maximum number of attempts (including the first one).
        base_delay: Initial delay in seconds before first retry.
        max_delay: Maximum delay cap in seconds.
        jitter: Whether to add up to 10% random jitter.
    """
    if isinstance(on, type) or isinstance(on, tuple):
        exc_types = on
        should_retry: RetryPredicate = lambda e: isinstance(e, exc_types)
    else:
        should_retry = on

    wait = wait_exponential(multiplier=base_delay, max=max_delay)
    if jitter:
        wait = wait + wait_random(0, base_delay * 0.1)

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            retrying = Retrying(
                retry=retry_if_exception(should_retry),
                stop=stop_after_attempt(max_attempts),
                wait=wait,
                before_sleep=_log_retry,
                reraise=True,
            )
            return retrying(func, *args, **kwargs)

        return wrapper

    return decorator


# =============================================================================
# Common Predicates
# =============================================================================


def on_error_code(*codes: str) -> RetryPredicate:
    """Create a predicate that retries on specific AWS error codes.

    Works with ProviderError and botocore ClientError.
    """

    def predicate(e: BaseException) -> bool:
        code = getattr(e, "code", None)
        if code is None:
            response = getattr(e, "response", None) or {}
            code = response.get("Error", {}).get("Code")
        return code in codes

    return predicate
