"""
Stale-while-revalidate, single-flight gateway to the rate-limited source.

Every upstream read in the pricing core goes through
``RateLimitedGateway.schedule``:

1. Fresh cache entry -> returned immediately.
2. Stale entry (past the fresh TTL, within the stale TTL) -> returned
   immediately; one background refresh is started if none is running.
3. Missing or expired entry -> callers for the same key share one fetch.
   A background refresh still running for the key counts as that fetch.

Raw calls are executed by RateLimitedTransport, which enforces concurrency,
call spacing, per-call deadlines and quota backoff.
"""

from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional, TypeVar

from subsidy_hub.config.settings import get_settings
from subsidy_hub.io.connectors.tabular.transport import RateLimitedTransport
from subsidy_hub.utils.logging import get_logger

from .context import GatewayContext

logger = get_logger(__name__)

T = TypeVar("T")


class RateLimitedGateway:
    """
    Mediates all access to an external rate-limited tabular source.

    Attributes:
        context: Shared cache / in-flight state (see GatewayContext).
        transport: Raw call executor.
        fresh_ttl: Default seconds an entry is served without refresh.
        stale_ttl: Default seconds an entry may be served at all.

    Example:
        >>> gateway = RateLimitedGateway()
        >>> rows = gateway.schedule("get:SK_지원금!A1:C300", lambda: source.get("SK_지원금!A1:C300"))
    """

    def __init__(
        self,
        context: Optional[GatewayContext] = None,
        transport: Optional[RateLimitedTransport] = None,
        *,
        fresh_ttl: Optional[float] = None,
        stale_ttl: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.context = context or GatewayContext.from_settings(settings)
        self.transport = transport or RateLimitedTransport()
        self.fresh_ttl = (
            fresh_ttl if fresh_ttl is not None else settings.cache_fresh_ttl_seconds
        )
        self.stale_ttl = (
            stale_ttl if stale_ttl is not None else settings.cache_stale_ttl_seconds
        )
        if self.stale_ttl < self.fresh_ttl:
            raise ValueError("stale_ttl must be greater than or equal to fresh_ttl")

        self.stats: Dict[str, int] = {
            "fresh_hits": 0,
            "stale_hits": 0,
            "joined": 0,
            "fetches": 0,
            "refreshes": 0,
            "refresh_failures": 0,
        }

    def schedule(
        self,
        key: str,
        fetch_fn: Callable[[], T],
        *,
        fresh_ttl: Optional[float] = None,
        stale_ttl: Optional[float] = None,
    ) -> T:
        """
        Return the value for ``key``, fetching through the transport if needed.

        Args:
            key: Cache key; one upstream request shape per key.
            fetch_fn: Zero-argument callable performing the raw request.
            fresh_ttl: Per-call override of the fresh window.
            stale_ttl: Per-call override of the stale window.

        Raises:
            Whatever the raw fetch raised, for the foreground fetch and every
            caller that joined it. A background refresh failure is raised
            only to callers whose entry expired while it ran; stale hits
            never see it.
        """
        fresh_ttl = self.fresh_ttl if fresh_ttl is None else fresh_ttl
        stale_ttl = self.stale_ttl if stale_ttl is None else stale_ttl
        ctx = self.context

        refresh_future: Optional[Future] = None
        with ctx.lock:
            entry = ctx.cache.get(key)
            if entry is not None:
                age = ctx.clock() - entry.stored_at
                if age <= fresh_ttl:
                    self.stats["fresh_hits"] += 1
                    return entry.value
                if age <= stale_ttl:
                    self.stats["stale_hits"] += 1
                    if key not in ctx.refreshing and key not in ctx.in_flight:
                        # Callers arriving after expiry join this refresh
                        refresh_future = Future()
                        ctx.in_flight[key] = refresh_future
                        ctx.refreshing.add(key)
                    stale_value = entry.value
                else:
                    del ctx.cache[key]
                    entry = None

            if entry is None:
                future = ctx.in_flight.get(key)
                owner = future is None
                if owner:
                    future = Future()
                    ctx.in_flight[key] = future
                    self.stats["fetches"] += 1
                else:
                    self.stats["joined"] += 1

        if entry is not None:
            if refresh_future is not None:
                self._start_refresh(key, fetch_fn, refresh_future)
            return stale_value

        if not owner:
            logger.debug("gateway.joined_in_flight", key=key)
            return future.result()
        return self._fetch(key, fetch_fn, future)

    def _settle_failure(self, key: str, future: Future, error: BaseException) -> None:
        """Clear the in-flight and refresh markers, then fail every joiner."""
        with self.context.lock:
            if self.context.in_flight.get(key) is future:
                del self.context.in_flight[key]
            self.context.refreshing.discard(key)
        future.set_exception(error)

    def _settle_success(self, key: str, future: Future, value: Any) -> None:
        with self.context.lock:
            self.context.store(key, value)
            if self.context.in_flight.get(key) is future:
                del self.context.in_flight[key]
            self.context.refreshing.discard(key)
        future.set_result(value)

    def _fetch(self, key: str, fetch_fn: Callable[[], T], future: Future) -> T:
        try:
            value = self.transport.execute(fetch_fn, description=key)
        except BaseException as e:
            self._settle_failure(key, future, e)
            logger.warning(
                "gateway.fetch_failed", key=key, error=str(e), error_type=type(e).__name__
            )
            raise

        self._settle_success(key, future, value)
        return value

    def _start_refresh(self, key: str, fetch_fn: Callable[[], Any], future: Future) -> None:
        try:
            self.context.submit_refresh(self._refresh, key, fetch_fn, future)
        except RuntimeError as e:
            self._settle_failure(key, future, e)
            logger.warning("gateway.refresh_not_started", key=key, error=str(e))

    def _refresh(self, key: str, fetch_fn: Callable[[], Any], future: Future) -> None:
        ctx = self.context
        try:
            value = self.transport.execute(fetch_fn, description=key)
        except Exception as e:
            with ctx.lock:
                self.stats["refresh_failures"] += 1
            self._settle_failure(key, future, e)
            if ctx.failure_log.should_log(key):
                logger.warning(
                    "gateway.background_refresh_failed",
                    key=key,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            return
        except BaseException as e:
            self._settle_failure(key, future, e)
            raise

        with ctx.lock:
            self.stats["refreshes"] += 1
        self._settle_success(key, future, value)
        logger.debug("gateway.background_refresh_done", key=key)

    # ------------------------------------------------------------ management

    def invalidate(self, key: str) -> bool:
        """Drop one cache entry. Returns True if it existed."""
        with self.context.lock:
            return self.context.cache.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every cache entry whose key starts with ``prefix``."""
        with self.context.lock:
            doomed = [k for k in self.context.cache if k.startswith(prefix)]
            for k in doomed:
                del self.context.cache[k]
        if doomed:
            logger.info("gateway.cache_invalidated", prefix=prefix, count=len(doomed))
        return len(doomed)

    def status(self) -> Dict[str, int]:
        """Cache health snapshot: fresh / stale / expired entry counts."""
        ctx = self.context
        with ctx.lock:
            now = ctx.clock()
            ages = [now - entry.stored_at for entry in ctx.cache.values()]
            in_flight = len(ctx.in_flight)
            refreshing = len(ctx.refreshing)
        fresh = sum(1 for age in ages if age <= self.fresh_ttl)
        stale = sum(1 for age in ages if self.fresh_ttl < age <= self.stale_ttl)
        return {
            "total": len(ages),
            "fresh": fresh,
            "stale": stale,
            "expired": len(ages) - fresh - stale,
            "in_flight": in_flight,
            "refreshing": refreshing,
        }

    def close(self) -> None:
        self.context.close()
        self.transport.close()
