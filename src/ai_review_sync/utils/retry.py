"""
Exponential backoff for calls against the hosting platform.
"""
import logging
import time
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 10.0


def _is_retryable(error: Exception) -> bool:
    # Errors that know whether they are transient say so; anything else is retried
    return getattr(error, "retryable", True)


def retry_call(
    func: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    description: str = "",
) -> T:
    """
    Calls `func` until it succeeds, sleeping `base_delay * exponential_base ** n`
    seconds (capped at `max_delay`) between attempts.

    Errors carrying `retryable = False` are raised immediately. After the last
    attempt the final error is raised unchanged.
    """
    name = description or getattr(func, "__name__", "call")
    max_attempts = max(1, max_attempts)

    for attempt in range(max_attempts):
        try:
            result = func()
            if attempt > 0:
                logger.info(f"{name} succeeded on attempt {attempt + 1}/{max_attempts}")
            return result
        except exceptions as e:
            if not _is_retryable(e):
                logger.debug(f"{name} failed with a non-retryable error: {e}")
                raise
            if attempt == max_attempts - 1:
                logger.error(f"{name} failed after {max_attempts} attempts: {e}")
                raise

            delay = min(base_delay * (exponential_base ** attempt), max_delay)
            logger.warning(
                f"{name} failed on attempt {attempt + 1}/{max_attempts}: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            time.sleep(delay)
