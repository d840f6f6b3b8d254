"""Exception hierarchy for series purge.

Defines all custom exceptions used throughout the implementation.
"""

from __future__ import annotations


class PurgeError(Exception):
    """Base exception for all series purge errors."""
    pass


class StorageIOError(PurgeError):
    """Raised when opening, reading, writing or renaming a file fails."""
    pass


class StructuralError(PurgeError):
    """Raised when a segment sits at an unexpected depth in the data directory."""
    pass


class SegmentReadError(PurgeError):
    """Raised when a segment header, index or block cannot be decoded."""
    pass


class SegmentWriteError(PurgeError):
    """Raised when a replacement segment cannot be written or finalized."""
    pass


class KeyParseError(PurgeError):
    """Raised when a composite or series key is malformed."""
    pass
