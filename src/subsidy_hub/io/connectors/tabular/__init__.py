"""
Tabular source connector package.
"""

from .models import (
    GatewayTimeoutError,
    MalformedRangeError,
    NotFoundError,
    PermissionDeniedError,
    QuotaExceededError,
    TabularSourceError,
    TransientNetworkError,
    is_quota_exceeded,
    is_transient,
)
from .source import Rows, TabularSource
from .transport import RateLimitedTransport

__all__ = [
    "TabularSource",
    "Rows",
    "RateLimitedTransport",
    "TabularSourceError",
    "QuotaExceededError",
    "TransientNetworkError",
    "NotFoundError",
    "PermissionDeniedError",
    "MalformedRangeError",
    "GatewayTimeoutError",
    "is_quota_exceeded",
    "is_transient",
]
