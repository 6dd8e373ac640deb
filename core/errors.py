"""Retry and error-wrapping decorators."""

import functools
import logging
from typing import Any, Callable, Optional, Type, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_with_logging(
    *,
    max_attempts: int = 3,
    min_delay: float = 2.0,
    max_delay: float = 10.0,
    exception_types: tuple = (Exception,),
    error_class: Type[ExternalServiceError] = ExternalServiceError,
    service_name: Optional[str] = None,
    log_callback: Optional[Callable] = None,
) -> Callable:
    """
    Decorator to retry a function with exponential backoff and logging.

    Exceptions outside ``exception_types`` propagate untouched. When every
    attempt fails the last error is wrapped in ``error_class``.

    Args:
        max_attempts: Maximum number of attempts
        min_delay: Minimum delay in seconds
        max_delay: Maximum delay in seconds
        exception_types: Tuple of exception types to retry on
        error_class: Exception raised once attempts are exhausted
        service_name: Name reported on the raised error (defaults to function name)
        log_callback: Optional callback invoked with (name, error) on final failure

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = service_name or func.__name__

        def _log_retry(retry_state) -> None:
            logger.warning(
                "%s failed (attempt %s/%s): %s. Retrying...",
                name,
                retry_state.attempt_number,
                max_attempts,
                retry_state.outcome.exception(),
            )

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            retrying = Retrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=min_delay, min=min_delay, max=max_delay),
                retry=retry_if_exception_type(exception_types),
                before_sleep=_log_retry,
            )
            try:
                return retrying(func, *args, **kwargs)
            except RetryError as e:
                original_error = e.last_attempt.exception()
                logger.error(
                    "%s failed after %s attempts: %s", name, max_attempts, original_error
                )
                if log_callback:
                    log_callback(name, original_error)
                raise error_class(
                    message=str(original_error),
                    service_name=name,
                    original_error=original_error,
                ) from original_error

        return wrapper

    return decorator
