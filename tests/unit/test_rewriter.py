"""Unit tests for the block rewriter."""

import logging
import shutil
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from series_purge.components.filterset import SeriesFilterSet
from series_purge.components.rewriter import (
    BlockRewriter,
    format_timestamp,
    rewrite_segment,
    temp_path_for,
)
from series_purge.components.segment import (
    SimpleSegmentReader,
    SimpleSegmentWriter,
    index_spill_path,
)
from series_purge.core.errors import (
    KeyParseError,
    SegmentReadError,
    SegmentWriteError,
    StorageIOError,
)
from series_purge.core.types import Block


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield tmpdir
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def segment_path(temp_dir):
    """Create a segment with several series and fields."""
    path = Path(temp_dir) / "000000001-000000001.segment"
    write_segment(path, BLOCKS)
    return path


BLOCKS = [
    Block(b"cpu,host=a#!~#idle", 1_000_000_000, 1_999_999_999, b"idle-a"),
    Block(b"cpu,host=a#!~#usage", 1_000_000_000, 1_999_999_999, b"usage-a-1"),
    Block(b"cpu,host=a#!~#usage", 2_000_000_000, 2_999_999_999, b"usage-a-2"),
    Block(b"cpu,host=b#!~#usage", 1_000_000_000, 1_999_999_999, b"usage-b"),
    Block(b"mem,host=a#!~#free", 1_000_000_000, 1_999_999_999, b"\x00free-a\xff"),
]


def write_segment(path, blocks):
    writer = SimpleSegmentWriter(path)
    for block in blocks:
        writer.write_block(*block)
    writer.write_index()
    writer.close()


def read_blocks(path):
    with SimpleSegmentReader(path) as reader:
        return list(reader.blocks())


def assert_no_temp_files(path):
    assert not temp_path_for(path).exists()
    assert not index_spill_path(temp_path_for(path)).exists()


def test_rewrite_drops_every_field_of_series(segment_path):
    """Test all blocks of a series are dropped regardless of field."""
    result = BlockRewriter(SeriesFilterSet(["cpu,host=a"])).rewrite(segment_path)

    assert result.blocks_read == 5
    assert result.blocks_dropped == 3
    assert result.bytes_dropped == len(b"idle-a") + len(b"usage-a-1") + len(b"usage-a-2")
    assert result.replaced is True
    assert read_blocks(segment_path) == [BLOCKS[3], BLOCKS[4]]
    assert_no_temp_files(segment_path)


def test_rewrite_keeps_order_and_bytes(segment_path):
    """Test retained blocks keep their order, times and payloads."""
    BlockRewriter(SeriesFilterSet(["cpu,host=b"])).rewrite(segment_path)

    assert read_blocks(segment_path) == [b for b in BLOCKS if not b.key.startswith(b"cpu,host=b")]


def test_rewrite_multiple_series(segment_path):
    """Test several series can be removed in one pass."""
    result = BlockRewriter(SeriesFilterSet(["cpu,host=b", "mem,host=a"])).rewrite(segment_path)

    assert result.blocks_dropped == 2
    assert read_blocks(segment_path) == BLOCKS[:3]


def test_rewrite_requires_exact_match(segment_path):
    """Test a key differing by one tag value drops nothing."""
    original = segment_path.read_bytes()

    result = BlockRewriter(SeriesFilterSet(["cpu,host=c", "cpu,host=a,region=eu", "cpu"])).rewrite(segment_path)

    assert result.blocks_dropped == 0
    assert result.replaced is False
    assert segment_path.read_bytes() == original
    assert_no_temp_files(segment_path)


def test_rewrite_is_idempotent(segment_path):
    """Test a second pass with the same filter drops nothing."""
    rewriter = BlockRewriter(SeriesFilterSet(["cpu,host=a"]))
    rewriter.rewrite(segment_path)
    after_first = segment_path.read_bytes()

    second = rewriter.rewrite(segment_path)

    assert second.blocks_dropped == 0
    assert segment_path.read_bytes() == after_first


def test_rewrite_without_skip_unchanged_is_byte_identical(segment_path):
    """Test forcing a rewrite with nothing to drop reproduces the file."""
    original = segment_path.read_bytes()

    result = BlockRewriter(SeriesFilterSet([]), skip_unchanged=False).rewrite(segment_path)

    assert result.replaced is True
    assert segment_path.read_bytes() == original
    assert_no_temp_files(segment_path)


def test_rewrite_all_blocks_dropped(temp_dir):
    """Test dropping every block leaves a valid empty segment."""
    path = Path(temp_dir) / "only-cpu.segment"
    write_segment(path, BLOCKS[:3])

    result = rewrite_segment(path, SeriesFilterSet(["cpu,host=a"]))

    assert result == 3
    assert read_blocks(path) == []


def test_rewrite_drops_tagless_series(temp_dir):
    """Test a tagless series is matched by its key with the trailing comma."""
    path = Path(temp_dir) / "tagless.segment"
    write_segment(path, [Block(b"cpu#!~#value", 1_000_000_000, 1_999_999_999, b"v")])

    untouched = BlockRewriter(SeriesFilterSet(["cpu"])).rewrite(path)
    dropped = BlockRewriter(SeriesFilterSet(["cpu,"])).rewrite(path)

    assert untouched.blocks_dropped == 0
    assert dropped.blocks_dropped == 1
    assert read_blocks(path) == []


def test_rewrite_without_matches_never_opens_writer(segment_path):
    """Test an unmatched segment is skipped before any temp file is written."""
    original = segment_path.read_bytes()
    writer_factory = MagicMock()

    result = BlockRewriter(SeriesFilterSet(["disk,host=z"]), writer_factory=writer_factory).rewrite(segment_path)

    writer_factory.assert_not_called()
    assert result.blocks_read == 5
    assert result.blocks_dropped == 0
    assert result.replaced is False
    assert segment_path.read_bytes() == original
    assert_no_temp_files(segment_path)


def test_rewrite_removes_stale_temp_files(segment_path):
    """Test leftovers from an aborted run are cleared first."""
    temp_path_for(segment_path).write_bytes(b"garbage from an earlier run")
    index_spill_path(temp_path_for(segment_path)).write_bytes(b"stale index")

    result = BlockRewriter(SeriesFilterSet(["mem,host=a"])).rewrite(segment_path)

    assert result.blocks_dropped == 1
    assert read_blocks(segment_path) == BLOCKS[:4]
    assert_no_temp_files(segment_path)


def test_rewrite_index_failure_keeps_original(segment_path):
    """Test a failure finalizing the index leaves the original intact."""
    original = segment_path.read_bytes()

    with patch.object(SimpleSegmentWriter, "write_index", side_effect=SegmentWriteError("disk full")):
        with pytest.raises(SegmentWriteError, match="disk full"):
            BlockRewriter(SeriesFilterSet(["cpu,host=a"])).rewrite(segment_path)

    assert segment_path.read_bytes() == original
    assert read_blocks(segment_path) == BLOCKS
    assert_no_temp_files(segment_path)


class FailingWriter(SimpleSegmentWriter):
    """Writer that fails after accepting one block."""

    def write_block(self, key, min_time, max_time, payload):
        if self.block_count >= 1:
            raise SegmentWriteError(f"Failed writing block to {self.path}: No space left on device")
        super().write_block(key, min_time, max_time, payload)


def test_rewrite_interrupted_mid_stream_keeps_original(segment_path):
    """Test a failure while copying blocks leaves the original intact."""
    original = segment_path.read_bytes()
    rewriter = BlockRewriter(SeriesFilterSet(["cpu,host=a"]), writer_factory=FailingWriter)

    with pytest.raises(SegmentWriteError, match="No space left"):
        rewriter.rewrite(segment_path)

    assert segment_path.read_bytes() == original
    assert_no_temp_files(segment_path)


def test_rewrite_writer_open_oserror(segment_path):
    """Test an OSError creating the writer surfaces as SegmentWriteError."""
    def refuse(path):
        raise PermissionError(13, "Permission denied", path)

    with pytest.raises(SegmentWriteError):
        BlockRewriter(SeriesFilterSet(["cpu,host=a"]), writer_factory=refuse).rewrite(segment_path)

    assert read_blocks(segment_path) == BLOCKS


def test_rewrite_rename_failure(segment_path):
    """Test a failed rename raises StorageIOError and keeps the original."""
    original = segment_path.read_bytes()

    with patch("series_purge.components.rewriter.os.replace", side_effect=OSError("cross-device link")):
        with pytest.raises(StorageIOError, match=str(segment_path.name)):
            BlockRewriter(SeriesFilterSet(["cpu,host=a"])).rewrite(segment_path)

    assert segment_path.read_bytes() == original


def test_rewrite_unreadable_segment(temp_dir):
    """Test a corrupt segment raises SegmentReadError and creates nothing."""
    path = Path(temp_dir) / "broken.segment"
    path.write_bytes(b"\x00" * 64)

    with pytest.raises(SegmentReadError, match="broken.segment"):
        BlockRewriter(SeriesFilterSet(["cpu,host=a"])).rewrite(path)

    assert path.read_bytes() == b"\x00" * 64
    assert_no_temp_files(path)


def test_rewrite_malformed_key(temp_dir):
    """Test a malformed composite key aborts the rewrite of that file."""
    path = Path(temp_dir) / "badkey.segment"
    write_segment(path, [Block(b"cpu,host", 0, 1, b"bad"), Block(b"cpu,host=a#!~#v", 0, 1, b"ok")])
    original = path.read_bytes()

    with pytest.raises(KeyParseError):
        BlockRewriter(SeriesFilterSet(["cpu,host=a"])).rewrite(path)

    assert path.read_bytes() == original
    assert_no_temp_files(path)


def test_dry_run_counts_without_writing(segment_path):
    """Test dry run reports matches but leaves everything untouched."""
    original = segment_path.read_bytes()

    result = BlockRewriter(SeriesFilterSet(["cpu,host=a"]), dry_run=True).rewrite(segment_path)

    assert result.blocks_dropped == 3
    assert result.replaced is False
    assert segment_path.read_bytes() == original
    assert_no_temp_files(segment_path)


def test_dropped_blocks_are_logged(segment_path, caplog):
    """Test each dropped block is logged with key, time range and size."""
    with caplog.at_level(logging.INFO, logger="series_purge"):
        BlockRewriter(SeriesFilterSet(["cpu,host=b"])).rewrite(segment_path)

    assert (
        "deleting block: cpu,host=b#!~#usage "
        "(1970-01-01T00:00:01Z-1970-01-01T00:00:01.999999999Z) sz=7"
    ) in caplog.text


def test_format_timestamp():
    """Test RFC3339 formatting with trimmed fractional seconds."""
    assert format_timestamp(0) == "1970-01-01T00:00:00Z"
    assert format_timestamp(1_500_000_000) == "1970-01-01T00:00:01.5Z"
    assert format_timestamp(-1) == "1969-12-31T23:59:59.999999999Z"
    assert format_timestamp(1_700_000_000_123_000_000) == "2023-11-14T22:13:20.123Z"
