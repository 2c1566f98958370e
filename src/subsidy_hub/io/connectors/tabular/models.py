"""
Error taxonomy for the upstream tabular source.

Retry policy by type:
- QuotaExceededError: retried with exponential backoff and jitter
- TransientNetworkError: retried immediately, a bounded number of times
- NotFoundError / PermissionDeniedError / MalformedRangeError: never retried
- GatewayTimeoutError: a raw call ran past its deadline
"""

from typing import Optional


class TabularSourceError(Exception):
    """Base exception for tabular source failures."""

    def __init__(self, message: str, range_ref: Optional[str] = None) -> None:
        self.range_ref = range_ref
        if range_ref:
            message = f"{message} (range='{range_ref}')"
        super().__init__(message)


class QuotaExceededError(TabularSourceError):
    """The upstream rejected the call because of its rate limit."""


class TransientNetworkError(TabularSourceError):
    """Connection reset, DNS hiccup or similar short-lived failure."""


class NotFoundError(TabularSourceError):
    """The spreadsheet or sheet tab does not exist."""


class PermissionDeniedError(TabularSourceError):
    """The service account cannot read the spreadsheet."""


class MalformedRangeError(TabularSourceError):
    """The range reference cannot be parsed or the response shape is wrong."""


class GatewayTimeoutError(TabularSourceError):
    """A raw call did not finish before its deadline."""


QUOTA_MESSAGE_MARKERS = ("Quota exceeded", "RESOURCE_EXHAUSTED", "rateLimitExceeded")


def is_quota_exceeded(error: BaseException) -> bool:
    """
    Detect a quota / rate-limit failure from any error raised by a source.

    Recognises QuotaExceededError, HTTP 429 carried as ``code``/``status`` or on
    ``error.response``, and the marker strings the spreadsheet API puts in its
    error messages.
    """
    if isinstance(error, QuotaExceededError):
        return True
    for attr in ("code", "status", "status_code"):
        if getattr(error, attr, None) == 429:
            return True
    response = getattr(error, "response", None)
    if response is not None:
        for attr in ("status", "status_code"):
            if getattr(response, attr, None) == 429:
                return True
    message = str(error)
    return any(marker in message for marker in QUOTA_MESSAGE_MARKERS)


def is_transient(error: BaseException) -> bool:
    """True for network failures worth an immediate retry."""
    return isinstance(error, (TransientNetworkError, ConnectionError))
