"""
Retry decorators with exponential backoff for backend connections

Used around connection establishment for network backends, where a
transient failure (server restarting, connection reset) should not fail a
whole bulk comparison:
- Exponential backoff (base 2.0) capped at max_delay
- +/-25% jitter so parallel table workers do not retry in lockstep
- Optional predicate or exception whitelist deciding what is retryable
- Callback hook for metrics

Usage:
    from utils.retry import retry_database_operation

    @retry_database_operation(max_retries=3, base_delay=0.5)
    def connect(dsn):
        return psycopg2.connect(dsn)
"""

import logging
import random
import time
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)

RetryCallback = Callable[[int, Exception, float], None]


def _backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float,
    jitter: bool,
) -> float:
    delay = min(base_delay * (exponential_base ** attempt), max_delay)
    if jitter:
        jitter_amount = delay * 0.25
        delay = max(0.1, delay + random.uniform(-jitter_amount, jitter_amount))
    return delay


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[RetryCallback] = None,
):
    """
    Decorator that retries a function with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        exponential_base: Base for exponential backoff (default: 2.0)
        jitter: Add random jitter (default: True)
        retryable_exceptions: Exception types to retry (default: all exceptions)
        should_retry: Predicate deciding whether an exception is transient
        on_retry: Callback(attempt, exception, delay) called before each retry

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable) -> Callable:
        func_name = getattr(func, "__name__", "function")

        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    retryable = True
                    if retryable_exceptions and not isinstance(e, retryable_exceptions):
                        retryable = False
                    if should_retry is not None and not should_retry(e):
                        retryable = False

                    if not retryable:
                        logger.error(
                            f"Non-retryable error in {func_name}: {type(e).__name__}: {e}"
                        )
                        raise

                    if attempt == max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded for {func_name}: "
                            f"{type(e).__name__}: {e}"
                        )
                        raise

                    delay = _backoff_delay(attempt, base_delay, max_delay, exponential_base, jitter)

                    logger.warning(
                        f"Attempt {attempt + 1}/{max_retries} failed for {func_name}: "
                        f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
                    )

                    if on_retry:
                        try:
                            on_retry(attempt + 1, e, delay)
                        except Exception as callback_error:
                            logger.error(f"Error in retry callback: {callback_error}")

                    time.sleep(delay)

            raise RuntimeError(f"Unexpected exit from retry loop in {func_name}")

        return wrapper
    return decorator


RETRYABLE_MESSAGE_PATTERNS = (
    "connection",
    "timeout",
    "timed out",
    "deadlock",
    "could not connect",
    "server closed the connection",
    "terminating connection",
    "connection refused",
    "connection reset",
    "broken pipe",
    "network",
    "communication link failure",
    "database is locked",
)

RETRYABLE_EXCEPTION_NAMES = frozenset({
    "connectionerror",
    "timeouterror",
    "operationalerror",
    "interfaceerror",
})


def is_retryable_db_exception(exception: Exception) -> bool:
    """
    Determine if a database exception looks transient

    Connection loss, timeouts, deadlocks and lock contention are retryable;
    syntax errors and constraint violations are not.

    Args:
        exception: The exception to check

    Returns:
        True if the exception is retryable, False otherwise
    """
    message = str(exception).lower()
    type_name = type(exception).__name__.lower()

    if type_name in RETRYABLE_EXCEPTION_NAMES:
        return True

    return any(pattern in message for pattern in RETRYABLE_MESSAGE_PATTERNS)


def retry_database_operation(
    max_retries: int = 3,
    base_delay: float = 1.0,
    on_retry: Optional[RetryCallback] = None,
):
    """
    Convenience decorator for database operations with transient-error filtering

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        on_retry: Callback(attempt, exception, delay) called on each retry
    """
    return retry_with_backoff(
        max_retries=max_retries,
        base_delay=base_delay,
        should_retry=is_retryable_db_exception,
        on_retry=on_retry,
    )
