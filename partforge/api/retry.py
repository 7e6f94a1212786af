# partforge/api/retry.py
"""
Retry policy for lock timeouts at the HTTP boundary.

The core never retries. Adapters may re-run a whole operation when it
failed with LockTimeoutError, because that failure rolled everything
back. Validation and constraint failures are never retried.
"""

from typing import Any, Callable

from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from ..logging import get_api_logger
from ..parts.errors import LockTimeoutError
from ..settings import settings

# Backoff between attempts (seconds)
DEFAULT_WAIT_MIN = 0.1
DEFAULT_WAIT_MAX = 2

logger = get_api_logger()


def _log_retry(retry_state):
    exc = retry_state.outcome.exception()
    logger.warning(
        "lock_timeout_retry",
        attempt=retry_state.attempt_number,
        operation=getattr(exc, "operation", None),
        entity_id=getattr(exc, "entity_id", None),
    )


def call_with_lock_retry(fn: Callable[..., Any], *args, **kwargs) -> Any:
    """
    Call a writer operation, re-running it on LockTimeoutError.

    Re-raises the last LockTimeoutError once attempts are exhausted.
    """
    retrying = Retrying(
        stop=stop_after_attempt(max(1, settings.lock_retry_attempts)),
        wait=wait_exponential(multiplier=DEFAULT_WAIT_MIN, min=DEFAULT_WAIT_MIN, max=DEFAULT_WAIT_MAX),
        retry=retry_if_exception_type(LockTimeoutError),
        before_sleep=_log_retry,
        reraise=True,  # Re-raise the last exception after retries exhausted
    )
    return retrying(fn, *args, **kwargs)
