"""
Retry helper for verification provider calls using tenacity.

Transient failures (network errors, timeouts, 5xx, 429, 408) are retried with
exponential backoff; other 4xx responses fail fast. Attempts and waits come
from settings (EXTERNAL_API_RETRY_*).
"""

import logging
import httpx

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
    retry_if_exception as tenacity_retry_if_exception,
)

from ..core.config import settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429}


def _is_retryable_http_error(exception: BaseException) -> bool:
    """
    Determine if an HTTP error should be retried.

    Network-level errors are always retried. Status errors are retried on
    5xx, 429 and 408; any other 4xx is a permanent provider rejection.
    """
    if isinstance(exception, (httpx.TimeoutException, httpx.NetworkError)):
        return True

    if isinstance(exception, httpx.HTTPStatusError):
        status_code = exception.response.status_code
        if 500 <= status_code < 600:
            return True
        return status_code in RETRYABLE_STATUS_CODES

    return False


def retry_external_api(service_name: str = "external_api"):
    """
    Create a tenacity AsyncRetrying instance for provider API calls.

    Usage:
        async for attempt in retry_external_api("oho"):
            with attempt:
                response = await client.post(url, json=payload)
                response.raise_for_status()

    Args:
        service_name: Provider name, used in retry log lines

    Returns:
        AsyncRetrying instance; the last exception is re-raised when attempts
        are exhausted
    """
    retry_logger = logging.getLogger(f"{__name__}.{service_name}")
    return AsyncRetrying(
        stop=stop_after_attempt(settings.EXTERNAL_API_RETRY_ATTEMPTS),
        # With multiplier=1.0, min=0.5s, max=2.0s: 0.5s -> 1.0s -> 2.0s
        wait=wait_exponential(
            multiplier=settings.EXTERNAL_API_RETRY_MULTIPLIER,
            min=settings.EXTERNAL_API_RETRY_MIN_WAIT,
            max=settings.EXTERNAL_API_RETRY_MAX_WAIT,
        ),
        retry=retry_if_exception_type(
            (
                httpx.TimeoutException,
                httpx.NetworkError,
                httpx.HTTPStatusError,  # 4xx vs 5xx filtered below
            )
        )
        & tenacity_retry_if_exception(_is_retryable_http_error),
        before_sleep=before_sleep_log(retry_logger, logging.WARNING),
        reraise=True,
    )
