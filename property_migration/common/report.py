"""
Run report model.

Every phase contributes a `PhaseStats` block and a list of `ErrorEntry` items
to a single `MigrationReport`. The report is the only output of a run: it is
logged at the end, optionally written to disk as JSON and used by the CLI to
pick an exit code.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_ERROR_SAMPLE_SIZE = 20


@dataclass
class PhaseStats:
    """Counters for one phase. ``attempted = succeeded + skipped + errored``."""

    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    errored: int = 0

    def merge(self, other: "PhaseStats") -> None:
        self.attempted += other.attempted
        self.succeeded += other.succeeded
        self.skipped += other.skipped
        self.errored += other.errored

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class ErrorEntry:
    """A single failed unit of work."""

    phase: str
    external_id: Optional[str]
    message: str


@dataclass
class MigrationReport:
    """
    Aggregated outcome of a migration run.

    Only the first `error_sample_size` errors are kept verbatim; `error_count`
    always holds the full total.
    """

    error_sample_size: int = DEFAULT_ERROR_SAMPLE_SIZE
    phases: dict[str, PhaseStats] = field(default_factory=dict)
    errors: list[ErrorEntry] = field(default_factory=list)
    error_count: int = 0
    dimension_stats: dict[str, dict[str, int]] = field(default_factory=dict)
    review_queue: list[dict[str, Any]] = field(default_factory=list)
    validation: Optional[dict[str, Any]] = None
    state: str = "IDLE"
    fatal_error: Optional[str] = None
    cancelled: bool = False
    dry_run: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def phase(self, name: str) -> PhaseStats:
        """Return (creating if needed) the stats block of a phase."""
        return self.phases.setdefault(name, PhaseStats())

    def record_error(self, phase: str, external_id: Optional[str], message: str) -> None:
        self.error_count += 1
        if len(self.errors) < self.error_sample_size:
            self.errors.append(ErrorEntry(phase=phase, external_id=external_id, message=message))

    def add_errors(self, entries: list[ErrorEntry]) -> None:
        for entry in entries:
            self.record_error(entry.phase, entry.external_id, entry.message)

    def finish(self) -> None:
        self.finished_at = datetime.now(timezone.utc)

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "fatal_error": self.fatal_error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "phases": {name: stats.to_dict() for name, stats in self.phases.items()},
            "error_count": self.error_count,
            "errors": [asdict(entry) for entry in self.errors],
            "dimensions": self.dimension_stats,
            "review_queue": self.review_queue,
            "validation": self.validation,
        }

    def write_json(self, path: str) -> None:
        """Write the report to `path`, creating parent directories."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as handle:
            json.dump(self.to_dict(), handle, indent=2, default=str)
        logger.info("Migration report written", extra={"report_path": str(target)})
