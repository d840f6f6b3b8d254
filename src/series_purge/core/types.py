"""Common type definitions for series purge.

Defines fundamental types used across all components.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple

# Core primitive types
CompositeKey = bytes
SeriesKey = str
Timestamp = int  # nanoseconds since epoch
Tag = tuple[str, str]


class Block(NamedTuple):
    """One stored block: composite key, time range and opaque payload."""
    key: CompositeKey
    min_time: Timestamp
    max_time: Timestamp
    payload: bytes


class IndexEntry(NamedTuple):
    """Location of a block inside a segment file."""
    key: CompositeKey
    min_time: Timestamp
    max_time: Timestamp
    offset: int
    size: int


class DeletionUnit(NamedTuple):
    """A (database, retention policy) pair grouping segment files."""
    database: str
    retention_policy: str

    def __str__(self) -> str:
        return f"{self.database}/{self.retention_policy}"


class SegmentLocation(NamedTuple):
    """A segment file classified by its place in the data directory."""
    database: str
    retention_policy: str
    path: str

    @property
    def unit(self) -> DeletionUnit:
        return DeletionUnit(self.database, self.retention_policy)


@dataclass
class RewriteResult:
    """Outcome of rewriting a single segment file."""

    path: str
    blocks_read: int = 0
    blocks_dropped: int = 0
    bytes_dropped: int = 0
    replaced: bool = False


@dataclass
class UnitFailure:
    """A deletion unit whose processing stopped on an error."""

    unit: DeletionUnit
    path: str
    error: Exception


@dataclass
class PurgeReport:
    """Totals accumulated over a whole run."""

    units: list[DeletionUnit] = field(default_factory=list)
    results: list[RewriteResult] = field(default_factory=list)
    failures: list[UnitFailure] = field(default_factory=list)

    @property
    def blocks_dropped(self) -> int:
        return sum(r.blocks_dropped for r in self.results)

    @property
    def files_replaced(self) -> int:
        return sum(1 for r in self.results if r.replaced)

    @property
    def ok(self) -> bool:
        return not self.failures
