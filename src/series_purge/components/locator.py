"""Segment locator.

Walks a data directory laid out as ``<database>/<retention policy>/...`` and
groups segment files into deletion units.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path, PurePath

from sortedcontainers import SortedDict, SortedSet

from ..core.config import SEGMENT_EXTENSION
from ..core.errors import StorageIOError, StructuralError
from ..core.types import SegmentLocation

logger = logging.getLogger(__name__)


def _raise_walk_error(err: OSError) -> None:
    raise StorageIOError(f"Failed walking {err.filename}: {err}") from err


class SegmentLocator:
    """Find segment files below a data directory.

    Args:
        root: Data directory
        database: Only include this database (None or "" = all)
        retention_policy: Only include this retention policy (None or "" = all)
        extension: Segment file extension without the dot

    Invariants:
        - The walk is read-only and does not follow symlinks
        - Any walk error aborts the whole operation
        - Paths within a unit are ordered lexicographically
    """

    def __init__(
        self,
        root: str | Path,
        database: str | None = None,
        retention_policy: str | None = None,
        extension: str = SEGMENT_EXTENSION,
    ):
        self.root = Path(root)
        self.database = database or None
        self.retention_policy = retention_policy or None
        self.suffix = "." + extension

    def walk(self) -> Iterator[SegmentLocation]:
        """Yield every matching segment file as a typed location record.

        Raises:
            StorageIOError: If a directory cannot be listed
            StructuralError: If a segment lies above the retention policy level
        """
        for dirpath, dirnames, filenames in os.walk(self.root, onerror=_raise_walk_error):
            dirnames.sort()
            for name in sorted(filenames):
                path = Path(dirpath) / name
                if path.suffix != self.suffix or path.is_symlink() or not path.is_file():
                    continue

                parts = PurePath(os.path.relpath(path, self.root)).parts
                if len(parts) < 3:
                    raise StructuralError(f"Invalid directory structure for {path}")

                database, retention_policy = parts[0], parts[1]
                if self.database is not None and database != self.database:
                    continue
                if self.retention_policy is not None and retention_policy != self.retention_policy:
                    continue

                yield SegmentLocation(database, retention_policy, str(path))

    def locate(self) -> SortedDict:
        """Group segment files by deletion unit.

        Returns:
            SortedDict mapping DeletionUnit to a SortedSet of paths. Nothing
            is returned if the walk fails part way.
        """
        if not self.root.is_dir():
            raise StorageIOError(f"Data directory {self.root} does not exist or is not a directory")

        units: SortedDict = SortedDict()
        for location in self.walk():
            units.setdefault(location.unit, SortedSet()).add(location.path)

        logger.info(
            f"Located {sum(len(p) for p in units.values())} segment files "
            f"in {len(units)} units under {self.root}"
        )
        return units
