"""
Gateway-backed reads from a TabularSource.

Every read is scheduled through RateLimitedGateway, so repeated reads of the
same range within the fresh window never reach the upstream and concurrent
reads of the same range share one raw call.
"""

from typing import List, Sequence

from subsidy_hub.io.connectors.tabular.models import MalformedRangeError
from subsidy_hub.io.connectors.tabular.source import Rows, TabularSource

from .gateway import RateLimitedGateway

GET_KEY_PREFIX = "get:"
BATCH_KEY_PREFIX = "batch:"


class TabularGatewayClient:
    """Reads ranges from ``source`` through ``gateway``."""

    def __init__(self, source: TabularSource, gateway: RateLimitedGateway) -> None:
        self.source = source
        self.gateway = gateway

    def get_rows(self, range_ref: str) -> Rows:
        """Read one range (header row included)."""
        return self.gateway.schedule(
            f"{GET_KEY_PREFIX}{range_ref}", lambda: self.source.get(range_ref)
        )

    def batch_get_rows(self, range_refs: Sequence[str]) -> List[Rows]:
        """
        Read several ranges in one upstream call.

        Raises:
            MalformedRangeError: The source returned a result list that is not
                aligned with ``range_refs``.
        """
        refs = list(range_refs)
        if not refs:
            return []
        key = BATCH_KEY_PREFIX + "|".join(refs)
        results = self.gateway.schedule(key, lambda: self.source.batch_get(refs))
        if len(results) != len(refs):
            self.gateway.invalidate(key)
            raise MalformedRangeError(
                f"batch_get returned {len(results)} results for {len(refs)} ranges",
                range_ref="|".join(refs),
            )
        return list(results)

    def invalidate_range(self, range_ref: str) -> bool:
        return self.gateway.invalidate(f"{GET_KEY_PREFIX}{range_ref}")
