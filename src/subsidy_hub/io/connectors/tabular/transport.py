"""
Rate-limited raw-call transport for the tabular source.

Handles admission (bounded concurrency), global call spacing, per-call
deadlines and quota retries. Caching and request de-duplication live one
layer up, in ``subsidy_hub.infrastructure.gateway``.
"""

import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Callable, Optional, TypeVar

from subsidy_hub.config.settings import get_settings

from .models import GatewayTimeoutError, QuotaExceededError, is_quota_exceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitedTransport:
    """
    Executes raw upstream calls under the upstream's global rate limit.

    Guarantees:
    - at most ``max_concurrent`` raw calls are admitted at once
    - at least ``min_interval`` seconds between the starts of any two raw
      calls, across all keys and threads
    - every raw call is abandoned after ``call_timeout`` seconds
    - quota failures are retried ``max_retries`` times with exponential
      backoff plus jitter; every other failure propagates immediately
    """

    def __init__(
        self,
        *,
        max_concurrent: Optional[int] = None,
        min_interval: Optional[float] = None,
        call_timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_jitter: Optional[float] = None,
        backoff_cap: Optional[float] = None,
    ):
        """
        Initialize the transport; unset arguments fall back to settings.

        Args:
            max_concurrent: Raw calls admitted at once.
            min_interval: Seconds between two raw call starts.
            call_timeout: Deadline in seconds for one raw call.
            max_retries: Retries after a quota failure.
            backoff_base: First backoff delay in seconds (doubles per attempt).
            backoff_jitter: Upper bound of the uniform jitter in seconds.
            backoff_cap: Maximum backoff delay in seconds.
        """
        self.settings = get_settings()

        self.max_concurrent = (
            max_concurrent
            if max_concurrent is not None
            else self.settings.gateway_max_concurrent
        )
        self.min_interval = (
            min_interval
            if min_interval is not None
            else self.settings.gateway_min_interval_seconds
        )
        self.call_timeout = (
            call_timeout
            if call_timeout is not None
            else self.settings.gateway_call_timeout_seconds
        )
        self.max_retries = (
            max_retries if max_retries is not None else self.settings.gateway_max_retries
        )
        self.backoff_base = (
            backoff_base
            if backoff_base is not None
            else self.settings.gateway_backoff_base_seconds
        )
        self.backoff_jitter = (
            backoff_jitter
            if backoff_jitter is not None
            else self.settings.gateway_backoff_jitter_seconds
        )
        self.backoff_cap = (
            backoff_cap if backoff_cap is not None else self.settings.gateway_backoff_cap_seconds
        )
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._admission = threading.BoundedSemaphore(self.max_concurrent)
        self._spacing_lock = threading.Lock()
        self._next_slot = 0.0
        self._call_pool = ThreadPoolExecutor(
            max_workers=self.max_concurrent, thread_name_prefix="tabular-call"
        )
        self.calls_started = 0

        logger.info(
            "Tabular transport initialized",
            extra={
                "max_concurrent": self.max_concurrent,
                "min_interval": self.min_interval,
                "call_timeout": self.call_timeout,
                "max_retries": self.max_retries,
            },
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1``."""
        delay = self.backoff_base * (2**attempt) + random.uniform(0, self.backoff_jitter)
        return min(delay, self.backoff_cap)

    def _wait_for_slot(self) -> None:
        """
        Reserve the next call slot and sleep until it opens.

        Slots are handed out under a lock so concurrent callers queue up
        behind each other instead of all waking at the same instant.
        """
        with self._spacing_lock:
            now = time.monotonic()
            wait = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self.min_interval
            self.calls_started += 1

        if wait > 0:
            logger.debug(
                "Call spacing enforced, sleeping",
                extra={"sleep_seconds": round(wait, 3)},
            )
            time.sleep(wait)

    def _call_with_deadline(self, fn: Callable[[], T], description: str) -> T:
        future = self._call_pool.submit(fn)
        try:
            return future.result(timeout=self.call_timeout)
        except FuturesTimeoutError:
            if future.done():
                # The call itself raised a timeout before the deadline
                raise
            logger.warning(
                "Raw call exceeded deadline",
                extra={"call": description, "call_timeout": self.call_timeout},
            )
            raise GatewayTimeoutError(
                f"Raw call exceeded {self.call_timeout}s deadline", range_ref=description or None
            ) from None

    def execute(self, fn: Callable[[], T], description: str = "") -> T:
        """
        Run one raw call with admission, spacing, deadline and quota retries.

        Args:
            fn: Zero-argument callable performing the upstream request.
            description: Short label for logs (usually the cache key).

        Returns:
            Whatever ``fn`` returns.

        Raises:
            QuotaExceededError: Quota failures persisted after all retries.
            GatewayTimeoutError: The call ran past its deadline.
            Exception: Any non-quota error raised by ``fn``, unchanged.
        """
        with self._admission:
            for attempt in range(self.max_retries + 1):
                self._wait_for_slot()
                try:
                    return self._call_with_deadline(fn, description)
                except Exception as e:
                    if not is_quota_exceeded(e):
                        raise
                    if attempt < self.max_retries:
                        delay = self.backoff_delay(attempt)
                        logger.warning(
                            "Upstream quota exceeded, backing off",
                            extra={
                                "call": description,
                                "attempt": attempt + 1,
                                "max_attempts": self.max_retries + 1,
                                "delay_seconds": round(delay, 2),
                            },
                        )
                        time.sleep(delay)
                        continue
                    logger.error(
                        "Upstream quota exceeded, retries exhausted",
                        extra={"call": description, "attempts": attempt + 1},
                    )
                    if isinstance(e, QuotaExceededError):
                        raise
                    raise QuotaExceededError(
                        f"Quota exceeded, retries exhausted: {e}"
                    ) from e

        # Should not reach here, but for completeness
        raise QuotaExceededError("Quota exceeded for unknown reason")

    def close(self) -> None:
        """Stop accepting raw calls; running calls finish on their own."""
        self._call_pool.shutdown(wait=False)
