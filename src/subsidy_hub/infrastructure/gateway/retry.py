"""Bounded immediate retry for short-lived failures."""

from typing import Callable, TypeVar

from subsidy_hub.io.connectors.tabular.models import is_transient
from subsidy_hub.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def call_with_immediate_retry(
    fn: Callable[[], T],
    attempts: int = 3,
    retry_on: Callable[[BaseException], bool] = is_transient,
    description: str = "",
) -> T:
    """
    Call ``fn`` up to ``attempts`` times with no delay between attempts.

    Only errors accepted by ``retry_on`` are retried; anything else, and the
    last retryable error, propagates unchanged.

    Args:
        fn: Zero-argument callable.
        attempts: Total number of calls allowed (at least 1).
        retry_on: Predicate selecting retryable errors.
        description: Label for logs.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:
            if not retry_on(e) or attempt == attempts:
                raise
            logger.info(
                "retry.transient_failure",
                call=description,
                attempt=attempt,
                max_attempts=attempts,
                error=str(e),
            )

    raise RuntimeError("unreachable")
