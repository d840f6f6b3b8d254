"""Protocol definitions for series purge collaborators."""

from .filterset import SeriesFilter
from .segment import SegmentReader, SegmentWriter

__all__ = ["SeriesFilter", "SegmentReader", "SegmentWriter"]
