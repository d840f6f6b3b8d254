"""Protocol definitions for segment files."""

from __future__ import annotations
from typing import Protocol, Iterator
from ..core.types import Block, CompositeKey, IndexEntry, Timestamp


class SegmentReader(Protocol):
    """Protocol for reading blocks from an immutable segment."""
    
    path: str
    
    def blocks(self) -> Iterator[Block]:
        """Lazily yield blocks in on-disk order.
        
        Finite and not restartable without reopening the reader.
        """
        ...
    
    def index(self) -> list[IndexEntry]:
        """Return index entries in on-disk order."""
        ...
    
    def close(self) -> None:
        """Release file descriptors."""
        ...
    
    def __enter__(self) -> SegmentReader:
        ...
    
    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        ...


class SegmentWriter(Protocol):
    """Protocol for writing a new segment."""
    
    path: str
    
    def write_block(self, key: CompositeKey, min_time: Timestamp, max_time: Timestamp, payload: bytes) -> None:
        """Append a block verbatim (keys must be added in sorted order)."""
        ...
    
    def write_index(self) -> None:
        """Write the index and footer after the last block."""
        ...
    
    def close(self) -> None:
        """Flush and release file descriptors."""
        ...
    
    def abort(self) -> None:
        """Close and remove any partial output."""
        ...
