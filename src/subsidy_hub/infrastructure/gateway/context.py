"""
Shared mutable state of a RateLimitedGateway.

GatewayContext owns everything the gateway mutates: the cache, the in-flight
future map, the set of keys being refreshed in the background, the refresh
executor and the throttled failure log. Contexts are created and reset
explicitly and passed by reference, so independent gateways (one per test,
one per tenant) never share state.

Every read-then-write sequence against this state must hold ``lock``.
"""

import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

from subsidy_hub.utils.log_throttle import LogThrottle
from subsidy_hub.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """A cached upstream result and the clock reading when it was stored."""

    value: Any
    stored_at: float


class GatewayContext:
    """
    Cache, in-flight and refresh bookkeeping for one gateway.

    Attributes:
        clock: Monotonic time source (injectable for tests).
        max_entries: Cache capacity; the oldest entry is evicted first.
        lock: Guards cache, in_flight and refreshing.
        cache: key -> CacheEntry, in insertion order.
        in_flight: key -> Future shared by every caller waiting on a fetch.
        refreshing: keys with a background refresh running.
        failure_log: Per-key throttle for background refresh failure logs.
    """

    def __init__(
        self,
        *,
        max_entries: int = 200,
        refresh_workers: int = 2,
        failure_log_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.clock = clock
        self.max_entries = max_entries
        self.refresh_workers = refresh_workers
        self.lock = threading.Lock()
        self.cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.in_flight: Dict[str, Future] = {}
        self.refreshing: Set[str] = set()
        self.failure_log = LogThrottle(interval=failure_log_interval, clock=clock)
        self._refresh_futures: Set[Future] = set()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "GatewayContext":
        options: Dict[str, Any] = {
            "max_entries": settings.cache_max_entries,
            "refresh_workers": settings.refresh_workers,
            "failure_log_interval": settings.refresh_failure_log_interval_seconds,
        }
        options.update(overrides)
        return cls(**options)

    # ----------------------------------------------------------------- cache

    def store(self, key: str, value: Any) -> None:
        """Write a cache entry. Caller must hold ``lock``."""
        self.cache.pop(key, None)
        self.cache[key] = CacheEntry(value=value, stored_at=self.clock())
        while len(self.cache) > self.max_entries:
            evicted, _ = self.cache.popitem(last=False)
            logger.debug("gateway.cache_evicted", key=evicted)

    # ------------------------------------------------------- refresh executor

    def submit_refresh(self, fn: Callable[..., None], *args: Any) -> Future:
        """Run a background refresh; nobody waits on it."""
        with self.lock:
            if self._closed:
                raise RuntimeError("GatewayContext is closed")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.refresh_workers,
                    thread_name_prefix="gateway-refresh",
                )
            future = self._executor.submit(fn, *args)
            self._refresh_futures.add(future)
        future.add_done_callback(self._forget_refresh)
        return future

    def _forget_refresh(self, future: Future) -> None:
        with self.lock:
            self._refresh_futures.discard(future)

    def wait_for_refreshes(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every submitted background refresh has finished.

        Returns:
            True if all refreshes finished within ``timeout``.
        """
        with self.lock:
            pending = set(self._refresh_futures)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    # -------------------------------------------------------------- lifecycle

    def reset(self) -> None:
        """Forget cached values, in-flight markers and log throttling."""
        with self.lock:
            self.cache.clear()
            self.in_flight.clear()
            self.refreshing.clear()
        self.failure_log.reset()

    def close(self, wait_for_refreshes: bool = False) -> None:
        """Shut the refresh executor down; running refreshes still complete."""
        with self.lock:
            self._closed = True
            executor = self._executor
            self._executor = None
        if executor is not None:
            executor.shutdown(wait=wait_for_refreshes)
