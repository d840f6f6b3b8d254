# Command-line entry point: parses flags into a PurgeConfig and runs SeriesPurger.
from __future__ import annotations

import argparse
import logging
import sys

from series_purge.core.config import DEFAULT_DATA_DIR, PurgeConfig
from series_purge.core.errors import PurgeError
from series_purge.core.purger import SeriesPurger

USAGE_EPILOG = """\
The series file holds one series key per line, e.g. 'cpu,host=a,region=eu'.
Every block of a listed series is removed from every matching segment.
This cannot be undone; stop the database before running.
"""


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="series-purge",
        description="Delete whole series from segment files on disk",
        epilog=USAGE_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument(
        "--data-dir", default=DEFAULT_DATA_DIR, help="Data storage path"
    )
    p.add_argument("--database", default="", help="Only process this database")
    p.add_argument(
        "--retention", default="", help="Only process this retention policy"
    )
    p.add_argument(
        "--series-file",
        required=True,
        help="Path to the file listing series keys to delete",
    )
    p.add_argument(
        "--sanitize",
        action="store_true",
        help="Ignore series keys containing non-printable characters",
    )
    p.add_argument(
        "--keep-going",
        action="store_true",
        help="On a segment error, skip the rest of that unit and continue",
    )
    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Report how many blocks would be dropped without writing",
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging (repeat for debug)",
    )
    return p


def setup_logging(verbosity: int) -> None:
    """Log to stderr; verbosity 0 = warnings, 1 = info, 2+ = debug."""
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(message)s",
        stream=sys.stderr,
    )


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    config = PurgeConfig(
        data_dir=args.data_dir,
        series_file=args.series_file,
        database=args.database or None,
        retention_policy=args.retention or None,
        sanitize=args.sanitize,
        keep_going=args.keep_going,
        dry_run=args.dry_run,
    )

    try:
        report = SeriesPurger(config).run()
    except PurgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for failure in report.failures:
        print(
            f"Error: unit '{failure.unit}' stopped at {failure.path}: {failure.error}",
            file=sys.stderr,
        )
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
