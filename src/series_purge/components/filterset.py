"""Series filter set loaded from a newline-delimited file."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from ..core.errors import StorageIOError
from ..core.types import SeriesKey

logger = logging.getLogger(__name__)


class SeriesFilterSet:
    """Immutable set of series keys whose blocks are to be dropped.

    Args:
        keys: Series keys to delete
        sanitize: Exclude keys containing non-printable characters

    Invariants:
        - Membership is an exact string match
        - Contents never change after construction
    """

    def __init__(self, keys: Iterable[SeriesKey], sanitize: bool = False):
        accepted = set()
        excluded = set()
        for key in keys:
            if sanitize and not key.isprintable():
                excluded.add(key)
            else:
                accepted.add(key)

        for key in sorted(excluded):
            logger.warning(f"Ignoring series key with non-printable characters: {key!r}")

        self._keys: frozenset[SeriesKey] = frozenset(accepted)
        self.excluded: frozenset[SeriesKey] = frozenset(excluded)

    @classmethod
    def load(cls, path: str | Path, sanitize: bool = False) -> SeriesFilterSet:
        """Load one key per line; lines are taken verbatim minus the terminator.

        Raises:
            StorageIOError: If the file cannot be opened or read
        """
        try:
            with open(path, "rb") as f:
                keys = [_decode_line(line) for line in f]
        except OSError as e:
            raise StorageIOError(f"Unable to read series file {path}: {e}") from e

        filter_set = cls(keys, sanitize=sanitize)
        logger.info(f"Loaded {len(filter_set)} series keys from {path}")
        return filter_set

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[SeriesKey]:
        return iter(self._keys)


def _decode_line(line: bytes) -> SeriesKey:
    """Strip a trailing newline (and carriage return) and decode."""
    if line.endswith(b"\n"):
        line = line[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line.decode("utf-8", errors="surrogateescape")
