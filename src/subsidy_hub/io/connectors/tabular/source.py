"""
TabularSource capability consumed by the pricing core.

Concrete adapters (the spreadsheet API client, a relational store export)
live outside this package. They only need to satisfy this protocol and raise
the errors from ``subsidy_hub.io.connectors.tabular.models``, or errors that
``is_quota_exceeded`` recognises.
"""

from typing import Any, List, Protocol, Sequence

Rows = List[List[Any]]


class TabularSource(Protocol):
    """Read access to a rate-limited tabular data source."""

    def get(self, range_ref: str) -> Rows:
        """
        Read one range. The first row is the header row.

        Args:
            range_ref: Range reference such as ``"SK_지원금!A1:C300"``.
        """
        ...

    def batch_get(self, range_refs: Sequence[str]) -> List[Rows]:
        """Read several ranges; results are aligned with ``range_refs``."""
        ...
