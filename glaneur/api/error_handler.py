"""Error taxonomy for lookup sources and media fetches."""

from typing import Tuple
from enum import Enum
import asyncio
import logging

import httpx

from glaneur.scanner.errors import HashError

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Categorize errors for the pipeline's retry logic."""
    NOT_FOUND = "not_found"    # source knows the ROM is absent - fall through
    TRANSIENT = "transient"    # network, provider, decode I/O - retry the sweep
    FATAL = "fatal"            # retrying cannot help - fail the ROM
    CANCELLED = "cancelled"    # run is shutting down


class SourceError(Exception):
    """Base exception for lookup source errors."""
    pass


class NotFoundError(SourceError):
    """The source affirmatively does not know this ROM."""
    pass


class TransientSourceError(SourceError):
    """Temporary failure (network, timeouts, 5xx, rate limits)."""
    pass


class FatalSourceError(SourceError):
    """Non-retryable failure (bad request, rejected credentials)."""
    pass


class ScrapeCancelled(Exception):
    """Raised when the shutdown event fires while waiting or working."""
    pass


HTTP_STATUS_MESSAGES = {
    400: "Malformed request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not found",
    408: "Request timeout",
    429: "Too many requests",
    500: "Internal server error",
    502: "Bad gateway",
    503: "Service unavailable",
    504: "Gateway timeout",
}


def get_error_message(status_code: int) -> str:
    """
    Get user-friendly error message for HTTP status code.

    Args:
        status_code: HTTP status code

    Returns:
        Error message string
    """
    return HTTP_STATUS_MESSAGES.get(
        status_code,
        f"Unknown error (HTTP {status_code})"
    )


def handle_http_status(status_code: int, context: str = "") -> None:
    """
    Raise the source error matching an HTTP status code.

    Raises:
        NotFoundError: For 404
        TransientSourceError: For 408, 429 and 5xx
        FatalSourceError: For any other 4xx
    """
    if status_code < 400:
        return

    msg = get_error_message(status_code)
    if context:
        msg = f"{msg} ({context})"

    if status_code == 404:
        raise NotFoundError(msg)
    elif status_code in (408, 429) or status_code >= 500:
        raise TransientSourceError(msg)
    else:
        raise FatalSourceError(msg)


def categorize_error(exception: BaseException) -> Tuple[BaseException, ErrorCategory]:
    """
    Categorize an error for the pipeline's retry logic.

    Unknown exceptions count as transient so the bounded retry applies.

    Args:
        exception: Exception to categorize

    Returns:
        Tuple of (exception, ErrorCategory)
    """
    if isinstance(exception, (ScrapeCancelled, asyncio.CancelledError)):
        return (exception, ErrorCategory.CANCELLED)

    if isinstance(exception, NotFoundError):
        return (exception, ErrorCategory.NOT_FOUND)

    if isinstance(exception, FatalSourceError):
        return (exception, ErrorCategory.FATAL)

    # Hash results are cached, so another sweep would see the same error
    if isinstance(exception, HashError):
        return (exception, ErrorCategory.FATAL)

    if isinstance(exception, TransientSourceError):
        return (exception, ErrorCategory.TRANSIENT)

    if isinstance(exception, httpx.HTTPStatusError):
        try:
            handle_http_status(exception.response.status_code, str(exception.request.url))
        except SourceError as e:
            return (exception, categorize_error(e)[1])

    if isinstance(exception, httpx.TransportError):
        return (exception, ErrorCategory.TRANSIENT)

    return (exception, ErrorCategory.TRANSIENT)
