"""Series purger - main public API.

Orchestrates the filter set, segment locator and block rewriter.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

from .config import PurgeConfig
from .errors import PurgeError
from .types import DeletionUnit, PurgeReport, UnitFailure
from ..components.filterset import SeriesFilterSet
from ..components.locator import SegmentLocator
from ..components.rewriter import BlockRewriter

logger = logging.getLogger(__name__)


class SeriesPurger:
    """Delete whole series from every segment below a data directory.

    Args:
        config: Purge configuration
        out: Sink for progress lines (defaults to stdout)

    Public API:
        - run(): Load the filter, locate segments, rewrite them, report totals

    Invariants:
        - No file is touched unless the filter and the segment list loaded fully
        - Units are processed in sorted order, files within a unit by path
        - Without keep_going the first segment error aborts the run
        - With keep_going an error skips the rest of its unit only
    """

    def __init__(self, config: PurgeConfig, out: TextIO | None = None):
        self.config = config
        self.out = out if out is not None else sys.stdout

    def _print(self, message: str) -> None:
        print(message, file=self.out)

    def run(self) -> PurgeReport:
        """Execute the purge and return the accumulated report."""
        cfg = self.config
        filter_set = SeriesFilterSet.load(cfg.series_file, sanitize=cfg.sanitize)
        for key in sorted(filter_set):
            logger.debug(f"Series to delete: {key}")

        units = SegmentLocator(
            cfg.data_dir,
            database=cfg.database,
            retention_policy=cfg.retention_policy,
            extension=cfg.segment_extension,
        ).locate()

        rewriter = BlockRewriter(
            filter_set, skip_unchanged=cfg.skip_unchanged, dry_run=cfg.dry_run
        )

        report = PurgeReport()
        for unit, paths in units.items():
            self._print(f"Processing segment files for '{unit}'")
            report.units.append(unit)
            self._process_unit(rewriter, unit, list(paths), report)

        action = "Would drop" if cfg.dry_run else "Dropped"
        self._print(
            f"{action} '{report.blocks_dropped}' blocks from {len(report.results)} segment file(s)"
        )
        if report.failures:
            logger.warning(f"{len(report.failures)} unit(s) did not complete")
        return report

    def _process_unit(
        self, rewriter: BlockRewriter, unit: DeletionUnit, paths: list[str], report: PurgeReport
    ) -> None:
        for path in paths:
            self._print(f"Processing data for segment file '{path}'")
            try:
                result = rewriter.rewrite(path)
            except PurgeError as e:
                if not self.config.keep_going:
                    raise
                logger.error(f"Skipping rest of unit {unit} after error in {path}: {e}")
                report.failures.append(UnitFailure(unit=unit, path=path, error=e))
                return

            report.results.append(result)
            action = "Would drop" if self.config.dry_run else "Dropped"
            self._print(f"{action} '{result.blocks_dropped}' total blocks")
