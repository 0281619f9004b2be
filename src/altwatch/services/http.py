"""HTTP helper utilities for resilient requests."""

from __future__ import annotations

import asyncio
import email.utils
import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx

from altwatch.core.exceptions import TransportError
from altwatch.services.backoff import BackoffPolicy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVER_ERROR_MIN = 500


def parse_retry_after_seconds(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header (delta-seconds or HTTP date)."""
    if value is None:
        return None
    stripped = value.strip()
    if not stripped:
        return None

    try:
        seconds = float(stripped)
    except ValueError:
        seconds = None

    if seconds is not None:
        if math.isfinite(seconds) and seconds >= 0:
            return seconds
        return None

    try:
        parsed = email.utils.parsedate_to_datetime(stripped)
    except (TypeError, ValueError, OSError):
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)

    delta = (parsed - datetime.now(UTC)).total_seconds()
    return max(delta, 0.0)


def retry_after_from_response(response: httpx.Response) -> float | None:
    """Return the ``Retry-After`` hint of a response, if any."""
    return parse_retry_after_seconds(response.headers.get("retry-after"))


@dataclass(frozen=True, slots=True)
class RetryOptions:
    """Configuration for HTTP retry behavior.

    Only idempotent reads should be retried; writes use ``retries=0``.
    """

    retries: int = 2
    timeout_seconds: float = 30.0
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)


async def request_with_retries(
    request_factory: Callable[[], Awaitable[httpx.Response]],
    *,
    options: RetryOptions | None = None,
    log_context: str = "",
) -> httpx.Response:
    """Run a request with a timeout and bounded retries for transient failures.

    Returns the last response (which may still carry a retryable status once
    retries are exhausted).

    Raises:
        TransportError: When every attempt timed out or failed to connect.

    """
    retry_options = options or RetryOptions()
    context_suffix = f" for {log_context}" if log_context else ""

    for attempt in range(retry_options.retries + 1):
        try:
            async with asyncio.timeout(retry_options.timeout_seconds):
                response = await request_factory()
        except (TimeoutError, httpx.TimeoutException, httpx.RequestError) as exc:
            if attempt < retry_options.retries:
                logger.warning(
                    "Transient HTTP error%s, retrying (%s/%s): %r",
                    context_suffix,
                    attempt + 1,
                    retry_options.retries,
                    exc,
                )
                await asyncio.sleep(retry_options.backoff.delay(attempt))
                continue
            message = f"HTTP request failed{context_suffix}: {exc!r}"
            raise TransportError(message) from exc

        if (
            response.status_code in retry_options.retryable_statuses
            and attempt < retry_options.retries
        ):
            logger.warning(
                "Transient HTTP %s%s, retrying (%s/%s)",
                response.status_code,
                context_suffix,
                attempt + 1,
                retry_options.retries,
            )
            retry_after = retry_after_from_response(response)
            await response.aclose()
            delay = retry_options.backoff.delay(attempt)
            if retry_after is not None:
                delay = min(retry_after, retry_options.backoff.cap)
            await asyncio.sleep(delay)
            continue

        return response

    message = "request_with_retries exhausted without a response"
    raise RuntimeError(message)
