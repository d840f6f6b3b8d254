"""Series purge - offline deletion of whole series from segment files."""

from .core.config import PurgeConfig
from .core.errors import (
    PurgeError,
    StorageIOError,
    StructuralError,
    SegmentReadError,
    SegmentWriteError,
    KeyParseError,
)
from .core.purger import SeriesPurger
from .core.types import Block, DeletionUnit, PurgeReport, RewriteResult, SegmentLocation
from .components.filterset import SeriesFilterSet
from .components.locator import SegmentLocator
from .components.rewriter import BlockRewriter, rewrite_segment

__all__ = [
    "PurgeConfig",
    "PurgeError",
    "StorageIOError",
    "StructuralError",
    "SegmentReadError",
    "SegmentWriteError",
    "KeyParseError",
    "SeriesPurger",
    "Block",
    "DeletionUnit",
    "PurgeReport",
    "RewriteResult",
    "SegmentLocation",
    "SeriesFilterSet",
    "SegmentLocator",
    "BlockRewriter",
    "rewrite_segment",
]
