"""
Batch Migrator

Transforms source records into property rows and writes them with one
idempotent upsert per window of records.

Key Concepts:
- Window: `batch_size` consecutive records; the unit of one upsert statement
- Containment: a record that fails to transform is errored alone; an upsert
  that fails errors its window only and the run continues
- Idempotence: rows are keyed by `external_id`, so rerunning the same input
  converges to the same table state
"""

import logging
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from itertools import islice
from typing import Optional

from ..common.concurrency import bounded_map
from ..common.config_loader import MigrationConfig
from ..common.db_operations import PROPERTIES_TABLE, DatabaseError, RelationalStore
from ..common.report import ErrorEntry, PhaseStats
from ..normalizer.fields import parse_timestamp
from ..normalizer.property_transform import NormalizationError, build_property_row
from ..resolver.dimension_resolver import DimensionResolver
from ..source_extractor.base import SourceRecord

logger = logging.getLogger(__name__)

PHASE = "migrate"


@dataclass
class WindowResult:
    stats: PhaseStats = field(default_factory=PhaseStats)
    errors: list[ErrorEntry] = field(default_factory=list)
    written: dict[str, int] = field(default_factory=dict)

    def fail(self, external_id: Optional[str], message: str) -> None:
        self.stats.errored += 1
        self.errors.append(ErrorEntry(phase=PHASE, external_id=external_id, message=message))


def _windows(records: Iterable[SourceRecord], size: int) -> Iterator[list[SourceRecord]]:
    iterator = iter(records)
    while True:
        window = list(islice(iterator, size))
        if not window:
            return
        yield window


class BatchMigrator:
    """
    Upserts property rows in concurrent windows.

    After `migrate` returns, `id_map` maps every written (or unchanged)
    external id to its property id, and `errors` lists every failed record.
    `stats` holds the counts of every finished window, also when `migrate`
    was interrupted by a failing record source.

    Example:
        >>> migrator = BatchMigrator(store, resolver, config)
        >>> stats = migrator.migrate(extractor.extract())
        >>> stats.succeeded, len(migrator.id_map)
        (3228, 3228)
    """

    def __init__(self, store: RelationalStore, resolver: DimensionResolver, config: MigrationConfig):
        self.store = store
        self.resolver = resolver
        self.config = config
        self.id_map: dict[str, int] = {}
        self.errors: list[ErrorEntry] = []
        self.stats = PhaseStats()

    def migrate(
        self,
        records: Iterable[SourceRecord],
        batch_size: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        dry_run: bool = False,
    ) -> PhaseStats:
        """
        Migrate all records.

        Args:
            records: Source records (consumed lazily)
            batch_size: Records per upsert (default: configured batch_size)
            cancel_event: When set, no new window is started
            dry_run: Build rows without writing anything

        Returns:
            PhaseStats for the primary migration

        Raises:
            Exception: Whatever `records` raises while being read, after the
                       windows already submitted have finished
        """
        size = batch_size or self.config.migration.batch_size
        workers = self.config.migration.max_workers
        stats = self.stats = PhaseStats()

        logger.info(
            "Starting primary migration",
            extra={"batch_size": size, "max_workers": workers, "dry_run": dry_run},
        )

        def run_window(window: list[SourceRecord]) -> WindowResult:
            return self._migrate_window(window, dry_run)

        for window, result, error in bounded_map(
            run_window, _windows(records, size), workers, cancel_event
        ):
            if error is not None:
                logger.error(
                    "Unexpected error migrating window",
                    extra={"records": len(window), "error": str(error), "error_type": type(error).__name__},
                )
                result = WindowResult()
                result.stats.attempted = len(window)
                for record in window:
                    result.fail(record.external_id, f"Unexpected error: {error}")

            stats.merge(result.stats)
            self.errors.extend(result.errors)
            self.id_map.update(result.written)

        logger.info(
            "Primary migration completed",
            extra={
                "attempted": stats.attempted,
                "succeeded": stats.succeeded,
                "skipped": stats.skipped,
                "errored": stats.errored,
            },
        )
        return stats

    def _unchanged(self, records: dict[str, SourceRecord]) -> dict[str, int]:
        """Return ``external_id -> id`` for records whose stored version is current."""
        try:
            existing = self.store.select_in(
                PROPERTIES_TABLE,
                "external_id",
                list(records),
                ["id", "external_id", "source_updated_at"],
            )
        except DatabaseError as e:
            logger.warning("Could not check for unchanged records", extra={"error": str(e)})
            return {}

        unchanged = {}
        for row in existing:
            record = records.get(row["external_id"])
            if record is None or not record.updated_at or row.get("source_updated_at") is None:
                continue
            if row["source_updated_at"] == parse_timestamp(record.updated_at):
                unchanged[row["external_id"]] = row["id"]
        return unchanged

    def _migrate_window(self, window: list[SourceRecord], dry_run: bool) -> WindowResult:
        result = WindowResult()
        result.stats.attempted = len(window)

        # Last occurrence of an external id wins within a window
        latest: dict[str, SourceRecord] = {}
        for record in window:
            if not record.external_id:
                result.fail(None, "Source document has no $id")
                continue
            if record.external_id in latest:
                result.stats.skipped += 1
                del latest[record.external_id]
            latest[record.external_id] = record

        if self.config.migration.skip_unchanged and not dry_run and latest:
            unchanged = self._unchanged(latest)
            for external_id, property_id in unchanged.items():
                del latest[external_id]
                result.written[external_id] = property_id
            result.stats.skipped += len(unchanged)

        rows = []
        for external_id, record in latest.items():
            try:
                rows.append(build_property_row(record, self.resolver, self.config.defaults))
            except NormalizationError as e:
                logger.warning(
                    "Failed to transform record",
                    extra={"external_id": external_id, "error": str(e)},
                )
                result.fail(external_id, str(e))
            except Exception as e:
                logger.error(
                    "Unexpected error transforming record",
                    extra={"external_id": external_id, "error": str(e), "error_type": type(e).__name__},
                )
                result.fail(external_id, f"{type(e).__name__}: {e}")

        if not rows:
            return result

        if dry_run:
            logger.debug(f"DRY RUN: Would upsert {len(rows)} properties")
            result.stats.succeeded += len(rows)
            return result

        try:
            written = self.store.upsert(PROPERTIES_TABLE, rows, conflict_key="external_id")
        except DatabaseError as e:
            logger.error(
                "Batch upsert failed, marking window as errored",
                extra={"rows": len(rows), "error": str(e)},
            )
            for row in rows:
                result.fail(row["external_id"], f"Batch upsert failed: {e}")
            return result

        for row in written:
            result.written[row["external_id"]] = row["id"]
        result.stats.succeeded += len(rows)

        logger.debug(f"Upserted {len(rows)} properties")
        return result
