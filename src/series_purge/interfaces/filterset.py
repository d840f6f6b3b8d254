"""Protocol definition for the series filter."""

from __future__ import annotations

from typing import Protocol

from ..core.types import SeriesKey


class SeriesFilter(Protocol):
    """Exact-match set of series keys scheduled for deletion."""

    def __contains__(self, key: SeriesKey) -> bool:
        """Return True if blocks of this series must be dropped."""
        ...

    def __len__(self) -> int:
        """Return number of keys in the filter."""
        ...
