"""Segment file reader and writer.

A segment is an immutable sequence of blocks followed by an index and a
fixed-size footer.
"""

from __future__ import annotations

import logging
import os
import struct
import zlib
from collections.abc import Iterator
from pathlib import Path

from ..core.errors import SegmentReadError, SegmentWriteError
from ..core.types import Block, CompositeKey, IndexEntry, Timestamp

logger = logging.getLogger(__name__)

# File format:
# [magic(4B)][version(1B)]
# blocks: [key_len(2B)][key][min_ts(8B)][max_ts(8B)][payload_len(4B)][payload][crc32(4B)]
# index:  [key_len(2B)][key][min_ts(8B)][max_ts(8B)][offset(8B)][size(4B)] per block
# footer: [index_offset(8B)][block_count(8B)][index_crc32(4B)]
MAGIC = 0x5345474D  # "SEGM"
VERSION = 1

HEADER = struct.Struct("<IB")
KEY_LEN = struct.Struct("<H")
TIME_RANGE = struct.Struct("<qq")
PAYLOAD_LEN = struct.Struct("<I")
CRC = struct.Struct("<I")
INDEX_TAIL = struct.Struct("<qqQI")
FOOTER = struct.Struct("<QQI")

MAX_KEY_LEN = 0xFFFF
MAX_PAYLOAD_LEN = 0xFFFFFFFF
INDEX_SPILL_SUFFIX = ".idx.tmp"
COPY_CHUNK = 64 * 1024


def index_spill_path(path: str | Path) -> Path:
    """Return the sibling file a writer spills index entries into."""
    return Path(str(path) + INDEX_SPILL_SUFFIX)


class SimpleSegmentWriter:
    """Write blocks to a new segment file.

    Index entries are spilled to a sibling ``.idx.tmp`` file while blocks are
    written and copied behind the last block by ``write_index``.

    Args:
        path: Path of the segment to create (truncated if present)

    Invariants:
        - Keys must be added in non-decreasing order
        - Block bytes are written exactly as given
        - The file is only a valid segment after write_index
    """

    def __init__(self, path: str | Path):
        self.path = str(path)
        self.index_path = index_spill_path(path)
        self._fd = None
        self._index_fd = None

        try:
            self._fd = open(self.path, "wb")
            self._index_fd = open(self.index_path, "w+b")
            self._fd.write(HEADER.pack(MAGIC, VERSION))
        except OSError as e:
            self.abort()
            raise SegmentWriteError(f"Unable to create segment {self.path}: {e}") from e

        self._count = 0
        self._last_key: CompositeKey | None = None
        self._index_written = False

    def write_block(
        self, key: CompositeKey, min_time: Timestamp, max_time: Timestamp, payload: bytes
    ) -> None:
        """Append a block verbatim (keys must be added in sorted order)."""
        if self._fd is None or self._index_written:
            raise SegmentWriteError(f"Segment {self.path} is not open for blocks")
        if not key or len(key) > MAX_KEY_LEN:
            raise SegmentWriteError(f"Invalid key length {len(key)} for {self.path}")
        if len(payload) > MAX_PAYLOAD_LEN:
            raise SegmentWriteError(f"Payload too large ({len(payload)} bytes) for {self.path}")
        if self._last_key is not None and key < self._last_key:
            raise SegmentWriteError(f"Keys must be added in sorted order: {self._last_key!r} > {key!r}")
        if min_time > max_time:
            raise SegmentWriteError(f"Invalid time range {min_time}-{max_time} for key {key!r}")

        record = (
            KEY_LEN.pack(len(key))
            + key
            + TIME_RANGE.pack(min_time, max_time)
            + PAYLOAD_LEN.pack(len(payload))
            + payload
            + CRC.pack(zlib.crc32(payload))
        )

        try:
            offset = self._fd.tell()
            self._fd.write(record)
            self._index_fd.write(
                KEY_LEN.pack(len(key)) + key + INDEX_TAIL.pack(min_time, max_time, offset, len(record))
            )
        except OSError as e:
            raise SegmentWriteError(f"Failed writing block to {self.path}: {e}") from e

        self._count += 1
        self._last_key = key

    def write_index(self) -> None:
        """Copy the spilled index behind the blocks, then write the footer."""
        if self._fd is None:
            raise SegmentWriteError(f"Segment {self.path} is closed")
        if self._index_written:
            raise SegmentWriteError(f"Index already written for {self.path}")

        try:
            index_offset = self._fd.tell()
            crc = 0
            self._index_fd.flush()
            self._index_fd.seek(0)
            while True:
                chunk = self._index_fd.read(COPY_CHUNK)
                if not chunk:
                    break
                crc = zlib.crc32(chunk, crc)
                self._fd.write(chunk)

            self._fd.write(FOOTER.pack(index_offset, self._count, crc))
            self._fd.flush()
            os.fsync(self._fd.fileno())
        except OSError as e:
            raise SegmentWriteError(f"Failed writing index to {self.path}: {e}") from e

        self._index_written = True
        logger.debug(f"Wrote index for {self.path}: {self._count} blocks")

    def close(self) -> None:
        """Release file descriptors and remove the index spill file."""
        try:
            if self._fd:
                self._fd.close()
            if self._index_fd:
                self._index_fd.close()
            self._fd = None
            self._index_fd = None
            self.index_path.unlink(missing_ok=True)
        except OSError as e:
            raise SegmentWriteError(f"Failed closing segment {self.path}: {e}") from e

    def abort(self) -> None:
        """Close and delete the partially written segment."""
        try:
            self.close()
        finally:
            Path(self.path).unlink(missing_ok=True)

    @property
    def block_count(self) -> int:
        return self._count

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.abort()
        else:
            self.close()
        return False


class SimpleSegmentReader:
    """Read blocks from an immutable segment file.

    The header, footer and index are validated when the reader is opened.
    Block payload checksums are verified lazily while iterating.

    Args:
        path: Path of the segment to read
    """

    def __init__(self, path: str | Path):
        self.path = str(path)
        self._fd = None

        try:
            self._fd = open(self.path, "rb")
            self._index = self._load_index()
        except OSError as e:
            self.close()
            raise SegmentReadError(f"Unable to read {self.path}: {e}") from e
        except SegmentReadError:
            self.close()
            raise

    def _load_index(self) -> list[IndexEntry]:
        header = self._fd.read(HEADER.size)
        if len(header) < HEADER.size:
            raise SegmentReadError(f"Unable to read {self.path}: truncated header")
        magic, version = HEADER.unpack(header)
        if magic != MAGIC:
            raise SegmentReadError(f"Unable to read {self.path}: invalid magic {magic:x}")
        if version != VERSION:
            raise SegmentReadError(f"Unable to read {self.path}: unsupported version {version}")

        size = self._fd.seek(0, os.SEEK_END)
        if size < HEADER.size + FOOTER.size:
            raise SegmentReadError(f"Unable to read {self.path}: missing footer")
        self._fd.seek(size - FOOTER.size)
        index_offset, count, stored_crc = FOOTER.unpack(self._fd.read(FOOTER.size))

        index_end = size - FOOTER.size
        if not HEADER.size <= index_offset <= index_end:
            raise SegmentReadError(f"Unable to read {self.path}: index offset {index_offset} out of range")

        self._fd.seek(index_offset)
        data = self._fd.read(index_end - index_offset)
        if zlib.crc32(data) != stored_crc:
            raise SegmentReadError(f"Unable to read {self.path}: index checksum mismatch")

        entries = []
        pos = 0
        while pos < len(data):
            try:
                (key_len,) = KEY_LEN.unpack_from(data, pos)
                pos += KEY_LEN.size
                key = data[pos:pos + key_len]
                pos += key_len
                min_ts, max_ts, offset, block_size = INDEX_TAIL.unpack_from(data, pos)
                pos += INDEX_TAIL.size
            except struct.error as e:
                raise SegmentReadError(f"Unable to read {self.path}: truncated index entry") from e
            if offset + block_size > index_offset:
                raise SegmentReadError(f"Unable to read {self.path}: block at {offset} overlaps index")
            entries.append(IndexEntry(key, min_ts, max_ts, offset, block_size))

        if len(entries) != count:
            raise SegmentReadError(
                f"Unable to read {self.path}: index has {len(entries)} entries, footer says {count}"
            )
        return entries

    def index(self) -> list[IndexEntry]:
        """Return index entries in on-disk order."""
        return list(self._index)

    def blocks(self) -> Iterator[Block]:
        """Lazily yield blocks in on-disk order."""
        for entry in self._index:
            if self._fd is None:
                raise SegmentReadError(f"Segment {self.path} is closed")
            try:
                self._fd.seek(entry.offset)
                record = self._fd.read(entry.size)
            except OSError as e:
                raise SegmentReadError(f"Failed reading block at {entry.offset} in {self.path}: {e}") from e
            yield self._decode_block(entry, record)

    def _decode_block(self, entry: IndexEntry, record: bytes) -> Block:
        try:
            (key_len,) = KEY_LEN.unpack_from(record, 0)
            pos = KEY_LEN.size
            key = record[pos:pos + key_len]
            pos += key_len
            min_ts, max_ts = TIME_RANGE.unpack_from(record, pos)
            pos += TIME_RANGE.size
            (payload_len,) = PAYLOAD_LEN.unpack_from(record, pos)
            pos += PAYLOAD_LEN.size
            payload = record[pos:pos + payload_len]
            pos += payload_len
            (stored_crc,) = CRC.unpack_from(record, pos)
        except struct.error as e:
            raise SegmentReadError(f"Truncated block at {entry.offset} in {self.path}") from e

        if key != entry.key or len(payload) != payload_len:
            raise SegmentReadError(f"Block at {entry.offset} in {self.path} does not match index")
        if zlib.crc32(payload) != stored_crc:
            raise SegmentReadError(f"Checksum mismatch for block {key!r} in {self.path}")
        return Block(key, min_ts, max_ts, payload)

    def __len__(self) -> int:
        return len(self._index)

    def close(self) -> None:
        """Release file descriptors."""
        if self._fd:
            self._fd.close()
            self._fd = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
