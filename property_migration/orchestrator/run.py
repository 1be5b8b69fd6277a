"""
Migration run state machine.

A run moves through its phases strictly in order:

    IDLE -> EXTRACTING -> RESOLVING_DIMENSIONS -> MIGRATING_PRIMARY
         -> LINKING_MEDIA -> VALIDATING -> DONE

Phases never interleave: media linking only starts once every primary row has
been written, so parent lookups always see their property. A failure to reach
either collaborator during EXTRACTING is fatal and no later phase runs; any
other failure is contained to the record or window it hit and ends up in the
report.
"""

import logging
import threading
import time
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Optional

from ..common.concurrency import bounded_map
from ..common.config_loader import VALID_PHASES, MigrationConfig
from ..common.db_operations import DatabaseError, RelationalStore
from ..common.report import MigrationReport, PhaseStats
from ..media_linker.linker import MediaLinker
from ..migrator.batch_migrator import BatchMigrator
from ..resolver.dimension_resolver import DimensionResolver
from ..source_extractor.base import SourceAdapter, SourceRecord
from ..source_extractor.extractor import ExtractionError, SourceExtractor
from .validation import Validator

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "IDLE"
    EXTRACTING = "EXTRACTING"
    RESOLVING_DIMENSIONS = "RESOLVING_DIMENSIONS"
    MIGRATING_PRIMARY = "MIGRATING_PRIMARY"
    LINKING_MEDIA = "LINKING_MEDIA"
    VALIDATING = "VALIDATING"
    DONE = "DONE"


class FatalMigrationError(Exception):
    """Raised when the run cannot continue at all."""
    pass


class MigrationRun:
    """
    One end-to-end migration.

    Args:
        store: Relational store shared by every component
        adapter: Source adapter
        config: Migration configuration
        phases: Phases to run (subset of resolve, migrate, media, validate)
        dry_run: Read everything, write nothing
        limit: Stop after this many source records
        cancel_event: Cooperative cancellation flag (set by signal handlers)

    Example:
        >>> report = MigrationRun(store, MockAdapter(num_documents=10), config).execute()
        >>> report.state
        'DONE'
    """

    def __init__(
        self,
        store: RelationalStore,
        adapter: SourceAdapter,
        config: MigrationConfig,
        phases: Sequence[str] = VALID_PHASES,
        dry_run: bool = False,
        limit: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        unknown = set(phases) - set(VALID_PHASES)
        if unknown:
            raise ValueError(f"Unknown phases: {sorted(unknown)}")

        self.store = store
        self.adapter = adapter
        self.config = config
        self.phases = tuple(phases)
        self.dry_run = dry_run
        self.limit = limit
        self.cancel_event = cancel_event or threading.Event()

        self.extractor = SourceExtractor(
            adapter,
            page_size=config.source.page_size,
            pagination=config.source.pagination,
        )
        self.resolver = DimensionResolver(store, config, read_only=dry_run)
        self.migrator = BatchMigrator(store, self.resolver, config)
        self.linker = MediaLinker(store, config)
        self.validator = Validator(store, config.validation)

        self.state = RunState.IDLE
        self.report = MigrationReport(
            error_sample_size=config.migration.error_sample_size,
            dry_run=dry_run,
        )
        self._materialized: Optional[list[SourceRecord]] = None

    def _transition(self, state: RunState) -> None:
        logger.info("Run state %s -> %s", self.state.value, state.value)
        self.state = state
        self.report.state = state.value

    def _cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def _records(self) -> Iterable[SourceRecord]:
        """Records for one phase: the materialized list, or a fresh extraction."""
        if self._materialized is not None:
            return self._materialized
        return self.extractor.extract(limit=self.limit, cancel_event=self.cancel_event)

    def _preflight(self) -> None:
        try:
            self.store.ping()
        except Exception as e:
            raise FatalMigrationError(f"Relational store unreachable: {e}") from e
        try:
            self.adapter.ping()
        except Exception as e:
            raise FatalMigrationError(f"Source unreachable: {e}") from e
        logger.info("Preflight checks passed", extra={"source": self.adapter.source_name})

    def _extract(self) -> None:
        self._transition(RunState.EXTRACTING)
        self._preflight()

        if not self.config.source.materialize:
            return

        started = time.monotonic()
        self._materialized = list(self._records())
        stats = self.report.phase("extract")
        stats.attempted = stats.succeeded = len(self._materialized)
        logger.info(
            "Source records materialized",
            extra={"records": len(self._materialized), "duration_seconds": round(time.monotonic() - started, 2)},
        )

    def _resolve_dimensions(self) -> None:
        self._transition(RunState.RESOLVING_DIMENSIONS)
        stats = self.report.phase("resolve")

        for record, _, error in bounded_map(
            self.resolver.resolve_record,
            self._records(),
            self.config.migration.max_workers,
            self.cancel_event,
        ):
            stats.attempted += 1
            if error is None:
                stats.succeeded += 1
            else:
                stats.errored += 1
                self.report.record_error("resolve", record.external_id, f"{type(error).__name__}: {error}")

        logger.info("Dimension pre-scan completed", extra=stats.to_dict())

    def _migrate(self) -> None:
        self._transition(RunState.MIGRATING_PRIMARY)
        try:
            self.migrator.migrate(
                self._records(),
                cancel_event=self.cancel_event,
                dry_run=self.dry_run,
            )
        finally:
            # Counts of committed windows are kept even when the source fails
            self.report.phases["migrate"] = self.migrator.stats
            self.report.add_errors(self.migrator.errors)

    def _link_media(self) -> None:
        self._transition(RunState.LINKING_MEDIA)
        try:
            self.linker.link_all(
                self._records(),
                id_map=self.migrator.id_map,
                cancel_event=self.cancel_event,
                dry_run=self.dry_run,
            )
        finally:
            self.report.phases["media"] = self.linker.stats
            self.report.add_errors(self.linker.errors)

    def _expected_count(self) -> Optional[int]:
        if self.config.validation.expected_count:
            return self.config.validation.expected_count
        for phase in ("extract", "migrate", "resolve", "media"):
            stats: Optional[PhaseStats] = self.report.phases.get(phase)
            if stats and stats.attempted:
                return stats.attempted
        return None

    def _validate(self) -> None:
        self._transition(RunState.VALIDATING)
        try:
            self.report.validation = self.validator.validate(self._expected_count())
        except DatabaseError as e:
            logger.error("Validation failed", extra={"error": str(e)})
            self.report.validation = {"status": "error", "error": str(e)}
            self.report.record_error("validate", None, str(e))

    def execute(self) -> MigrationReport:
        """
        Run every selected phase and return the report.

        Never raises for data or store problems; a fatal condition is reported
        in ``report.fatal_error`` and leaves ``report.state`` where it halted.
        """
        steps = (
            ("resolve", self._resolve_dimensions),
            ("migrate", self._migrate),
            ("media", self._link_media),
            ("validate", self._validate),
        )

        logger.info(
            "Starting migration run",
            extra={"phases": list(self.phases), "dry_run": self.dry_run, "limit": self.limit},
        )

        try:
            self._extract()
            for name, step in steps:
                if self._cancelled():
                    logger.warning("Run cancelled, skipping remaining phases")
                    break
                if name in self.phases:
                    step()
            else:
                if not self._cancelled():
                    self._transition(RunState.DONE)
        except FatalMigrationError as e:
            logger.error("Fatal error, halting run", extra={"state": self.state.value, "error": str(e)})
            self.report.fatal_error = str(e)
        except ExtractionError as e:
            logger.error("Source extraction failed, halting run", extra={"state": self.state.value, "error": str(e)})
            self.report.fatal_error = str(e)
        finally:
            self.report.cancelled = self._cancelled()
            self.report.dimension_stats = self.resolver.stats()
            self.report.review_queue = self.resolver.review_queue()
            self.report.finish()

        logger.info(
            "Migration run finished",
            extra={
                "state": self.report.state,
                "duration_seconds": round(self.report.duration_seconds, 2),
                "error_count": self.report.error_count,
                "cancelled": self.report.cancelled,
            },
        )
        return self.report
