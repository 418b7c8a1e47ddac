"""Retry policies built on tenacity."""

import logging

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from pricescout.core.exceptions import NavigationTimeout

logger = structlog.get_logger(__name__)


def _log_navigation_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "navigation_retry_with_new_identity",
        attempt=retry_state.attempt_number,
        platform=getattr(exc, "platform", None),
        url=getattr(exc, "url", None),
    )


def navigation_retry(attempts: int = 2, wait_seconds: float = 2.0) -> AsyncRetrying:
    """Retry controller for one driver operation.

    Only NavigationTimeout is retried. Every attempt is expected to open a
    new crawl session, so a retry always runs under a new identity.
    Challenge failures propagate on the first occurrence.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(wait_seconds),
        retry=retry_if_exception_type(NavigationTimeout),
        before_sleep=_log_navigation_retry,
        reraise=True,
    )


# Reusable retry decorator for outbound JSON API calls (httpx)
http_retry = retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type(
        (
            httpx.ConnectError,
            httpx.ReadTimeout,
            httpx.ConnectTimeout,
        )
    ),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
