"""Block rewriter.

Rewrites one segment without the blocks of the series being deleted and
atomically swaps the result over the original file.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ..core.errors import SegmentWriteError, StorageIOError
from ..core.types import RewriteResult, Timestamp
from ..interfaces.filterset import SeriesFilter
from ..interfaces.segment import SegmentReader, SegmentWriter
from .keys import series_key_of
from .segment import SimpleSegmentReader, SimpleSegmentWriter, index_spill_path

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".rewriting.tmp"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def temp_path_for(path: str | Path) -> Path:
    """Return the deterministic temporary output path for a segment."""
    return Path(str(path) + TEMP_SUFFIX)


def format_timestamp(ts: Timestamp) -> str:
    """Format nanoseconds since epoch as RFC3339 with trimmed nanoseconds."""
    seconds, nanos = divmod(ts, 1_000_000_000)
    text = (_EPOCH + timedelta(seconds=seconds)).strftime("%Y-%m-%dT%H:%M:%S")
    if nanos:
        text += f".{nanos:09d}".rstrip("0")
    return text + "Z"


def _remove_stale(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        raise StorageIOError(f"Unable to remove stale temporary file {path}: {e}") from e


class BlockRewriter:
    """Drop every block whose series key is in the filter.

    Args:
        filter_set: Series keys to delete
        skip_unchanged: Leave the original untouched when nothing matches
        dry_run: Only count matching blocks, never write
        reader_factory: Opens a segment for reading
        writer_factory: Creates a segment writer

    Invariants:
        - Retained blocks keep their order, time range and payload bytes
        - The original is replaced only after the new index is finalized
        - A failed rewrite leaves the original authoritative
    """

    def __init__(
        self,
        filter_set: SeriesFilter,
        skip_unchanged: bool = True,
        dry_run: bool = False,
        reader_factory: Callable[[str], SegmentReader] = SimpleSegmentReader,
        writer_factory: Callable[[str], SegmentWriter] = SimpleSegmentWriter,
    ):
        self.filter_set = filter_set
        self.skip_unchanged = skip_unchanged
        self.dry_run = dry_run
        self._open_reader = reader_factory
        self._open_writer = writer_factory

    def rewrite(self, path: str | Path) -> RewriteResult:
        """Rewrite a segment without the filtered series.

        Returns:
            RewriteResult; ``blocks_dropped`` is the dropped-block count

        Raises:
            SegmentReadError: If the segment or one of its blocks is unreadable
            SegmentWriteError: If the replacement cannot be written
            KeyParseError: If a composite key is malformed
            StorageIOError: If temp cleanup or the final rename fails
        """
        path = str(path)
        result = RewriteResult(path=path)

        with self._open_reader(path) as reader:
            if self.dry_run:
                for block in reader.blocks():
                    result.blocks_read += 1
                    if series_key_of(block.key) in self.filter_set:
                        result.blocks_dropped += 1
                        result.bytes_dropped += len(block.payload)
                return result

            output_path = temp_path_for(path)
            _remove_stale(output_path)
            _remove_stale(index_spill_path(output_path))

            if self.skip_unchanged and not self._any_match(reader):
                result.blocks_read = len(reader.index())
                logger.debug(f"No blocks matched in {path}, leaving it untouched")
                return result

            logger.debug(f"Creating temporary file '{output_path}'")
            try:
                writer = self._open_writer(str(output_path))
            except OSError as e:
                raise SegmentWriteError(f"Unable to create {output_path}: {e}") from e

            try:
                self._copy_blocks(reader, writer, result)
                writer.write_index()
                writer.close()
            except Exception:
                logger.error(f"Rewrite of {path} failed, discarding {output_path}")
                writer.abort()
                raise

        try:
            os.replace(output_path, path)
        except OSError as e:
            raise StorageIOError(f"Unable to replace {path} with {output_path}: {e}") from e

        result.replaced = True
        logger.info(f"Rewrote {path}: dropped {result.blocks_dropped} of {result.blocks_read} blocks")
        return result

    def _any_match(self, reader: SegmentReader) -> bool:
        """Check index keys only, without reading payloads."""
        return any(series_key_of(entry.key) in self.filter_set for entry in reader.index())

    def _copy_blocks(self, reader: SegmentReader, writer: SegmentWriter, result: RewriteResult) -> None:
        for block in reader.blocks():
            result.blocks_read += 1
            if series_key_of(block.key) in self.filter_set:
                logger.info(
                    f"deleting block: {block.key.decode('utf-8', errors='replace')} "
                    f"({format_timestamp(block.min_time)}-{format_timestamp(block.max_time)}) "
                    f"sz={len(block.payload)}"
                )
                result.blocks_dropped += 1
                result.bytes_dropped += len(block.payload)
                continue

            writer.write_block(block.key, block.min_time, block.max_time, block.payload)


def rewrite_segment(path: str | Path, filter_set: SeriesFilter) -> int:
    """Rewrite one segment and return the number of dropped blocks."""
    return BlockRewriter(filter_set).rewrite(path).blocks_dropped
