"""Retry policies with exponential backoff for source clients."""

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    """Log each retry with the error that triggered it."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrying_after_error",
        attempt=retry_state.attempt_number,
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc) if exc else None,
    )


def http_retrying(attempts: int = 3, wait=None) -> AsyncRetrying:
    """Retry policy for HTTP calls: transport errors and timeouts only.

    HTTP status errors are not retried here; 401 handling lives in the client.

    Args:
        attempts: Total attempts including the first
        wait: tenacity wait strategy, defaults to 1s, 2s, 4s... capped at 10s
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait if wait is not None else wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        before_sleep=_log_before_sleep,
        reraise=True,
    )


def scrape_retrying(attempts: int = 3, wait=None) -> AsyncRetrying:
    """Retry policy for browser scraping: any exception, 1s base doubling.

    Args:
        attempts: Total attempts including the first
        wait: tenacity wait strategy, defaults to 1s, 2s, 4s...
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait if wait is not None else wait_exponential(multiplier=1, max=30),
        retry=retry_if_exception_type(Exception),
        before_sleep=_log_before_sleep,
        reraise=True,
    )
