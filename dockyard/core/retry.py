"""Retry decorator for calls to flaky outside services (VPN CLI, mail APIs)."""
import functools
import time
from typing import Optional, Tuple, Type

from dockyard.core.logger import get_logger

logger = get_logger(__name__)


def retry(
    *,
    exceptions: Tuple[Type[Exception], ...],
    max_attempts: int = 3,
    delay: float = 2.0,
    backoff: float = 2.0,
    action: Optional[str] = None,
):
    """Retry a call that raises one of the given transient errors.

    Only the listed exceptions are retried; anything else propagates on the
    first attempt. After the last attempt the error is re-raised.

    Args:
        exceptions: Exception types that mean "try again"
        max_attempts: Maximum number of attempts
        delay: Initial delay in seconds between attempts
        backoff: Multiplier applied to the delay after each attempt (1.0 = fixed interval)
        action: Human readable name used in log lines (defaults to the function name)

    Example:
        @retry(exceptions=(VpnError,), max_attempts=3, delay=5, backoff=1.0, action="VPN connect")
        def connect(country):
            ...
    """

    def decorator(func):
        label = action or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(f"{label} failed after {max_attempts} attempts: {e}")
                        raise

                    logger.warning(
                        f"{label} failed (attempt {attempt}/{max_attempts}), "
                        f"retrying in {current_delay:.1f}s: {e}"
                    )
                    time.sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator
