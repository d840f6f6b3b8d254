"""Configuration for series purge.

Defines all tunable parameters for a purge run.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_DATA_DIR = "/var/lib/tsdb/data"
SEGMENT_EXTENSION = "segment"


@dataclass
class PurgeConfig:
    """Configuration parameters for a series purge run.

    Attributes:
        data_dir: Root of the database/retention_policy/... hierarchy
        series_file: Path to the newline-delimited list of series keys to delete
        database: Only process this database (None = all)
        retention_policy: Only process this retention policy (None = all)
        sanitize: Exclude series keys with non-printable characters from the filter
        keep_going: On a segment error, skip the rest of that unit and continue
        dry_run: Count matching blocks without writing anything
        skip_unchanged: Leave segments with no matching blocks untouched
        segment_extension: File extension (without dot) identifying segments
    """

    data_dir: str
    series_file: str
    database: str | None = None
    retention_policy: str | None = None
    sanitize: bool = False
    keep_going: bool = False
    dry_run: bool = False
    skip_unchanged: bool = True
    segment_extension: str = SEGMENT_EXTENSION
