"""
Retry decorator for attempt store calls.

The supabase client talks to PostgREST over httpx, so only httpx transport
errors are retried. PostgREST errors (bad filter, constraint violation)
are raised on the first attempt.
Pair with login_guard.utils.circuit_breaker for full resilience.
"""

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
import logging
import httpx

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (
    httpx.ConnectError,
    httpx.TimeoutException,
    httpx.RemoteProtocolError,
)


def retry_on_network_error(max_attempts: int = 3, min_wait: float = 0.25, max_wait: float = 2):
    """Retry decorator for sync store calls.

    Waits stay short: these calls sit on the login path, and the caller
    fails open once retries are exhausted.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
