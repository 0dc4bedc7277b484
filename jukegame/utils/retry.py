"""Retry logic with exponential backoff for catalog calls"""

import logging
import time
from typing import Callable, Optional, Type, Tuple
from functools import wraps


logger = logging.getLogger(__name__)


def retry_with_backoff(
    func: Optional[Callable] = None,
    max_retries: int = 2,
    initial_delay: float = 0.25,
    backoff_factor: float = 2.0,
    max_delay: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    retry_if: Optional[Callable[[Exception], bool]] = None,
) -> Callable:
    """Retry a function with exponential backoff.

    Can be used as a decorator or called directly. Delays are kept short
    because callers run inside request handlers with a hard time budget.

    Args:
        func: Function to retry (when used as decorator without arguments)
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        backoff_factor: Multiplier for delay on each retry
        max_delay: Upper bound for a single delay
        exceptions: Tuple of exceptions to catch and retry
        retry_if: Optional predicate; exceptions it rejects are raised immediately

    Returns:
        Decorated function or decorator

    Example:
        @retry_with_backoff(max_retries=2, exceptions=(requests.RequestException,))
        def fetch():
            pass
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def wrapper(*args, **kwargs):
            delay = initial_delay

            for attempt in range(max_retries + 1):
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    if retry_if is not None and not retry_if(e):
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "%s failed after %d attempts: %s", f.__name__, max_retries + 1, e
                        )
                        raise
                    logger.warning(
                        "%s failed (attempt %d/%d): %s. Retrying in %.2fs...",
                        f.__name__, attempt + 1, max_retries + 1, e, delay
                    )
                    time.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)

        return wrapper

    # Support both @retry_with_backoff and @retry_with_backoff()
    if func is not None:
        return decorator(func)
    return decorator
