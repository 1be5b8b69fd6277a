"""
Post-migration validation.

Read-only checks over the target schema. Nothing here writes or rolls back:
a low success rate only marks the run for review.
"""

import logging
from typing import Any, Optional

from ..common.config_loader import ValidationSettings
from ..common.db_operations import IMAGES_TABLE, PROPERTIES_TABLE, VIDEOS_TABLE, RelationalStore
from ..resolver.dimension_resolver import KINDS

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_NEEDS_REVIEW = "needs_review"


class Validator:
    """Counts rows, checks references and computes the success rate."""

    def __init__(self, store: RelationalStore, settings: ValidationSettings):
        self.store = store
        self.settings = settings

    def validate(self, expected_count: Optional[int] = None) -> dict[str, Any]:
        """
        Run all checks.

        Args:
            expected_count: Number of properties the run should have produced
                            (configured expectation, else records attempted)

        Returns:
            Validation block for the run report. ``success_rate`` is
            ``properties / expected_count``; it is None when there is no
            expectation, in which case any migrated property counts as success.

        Raises:
            DatabaseError: If a check query fails
        """
        tables = [PROPERTIES_TABLE] + [kind.table for kind in KINDS.values()] + [IMAGES_TABLE, VIDEOS_TABLE]
        counts = {table: self.store.count(table) for table in tables}
        property_count = counts[PROPERTIES_TABLE]

        without_area = self.store.count(PROPERTIES_TABLE, {"area_id": None})
        orphans = {
            IMAGES_TABLE: self.store.count_orphans(IMAGES_TABLE, "property_id", PROPERTIES_TABLE),
            VIDEOS_TABLE: self.store.count_orphans(VIDEOS_TABLE, "property_id", PROPERTIES_TABLE),
        }
        sample = self.store.sample_properties(self.settings.sample_size)

        if expected_count:
            success_rate: Optional[float] = round(property_count / expected_count, 4)
            passed = success_rate >= self.settings.success_threshold
        else:
            success_rate = None
            passed = property_count > 0

        result = {
            "status": STATUS_SUCCESS if passed else STATUS_NEEDS_REVIEW,
            "counts": counts,
            "properties_without_area": without_area,
            "orphan_media": orphans,
            "sample": sample,
            "expected_count": expected_count,
            "success_rate": success_rate,
            "success_threshold": self.settings.success_threshold,
        }

        log = logger.info if passed else logger.warning
        log(
            "Validation finished",
            extra={
                "status": result["status"],
                "properties": property_count,
                "expected": expected_count,
                "success_rate": success_rate,
                "properties_without_area": without_area,
            },
        )
        return result
