"""
Dimension resolution (lookup-or-create).

Every dimension kind (region, area, category, type, compound, contact) is a
table with a surrogate ``id`` and a unique ``natural_key`` column holding the
canonical form of the free-text value. Resolving a value:

1. Empty value -> None
2. Canonicalize to the natural key
3. In-process cache hit -> cached id
4. Row with that natural key exists -> its id (cached)
5. Otherwise insert a new row -> new id (cached)
6. Insert lost a race on the unique constraint -> re-read and return the
   winner's id

The lock only guards the cache dictionaries; it is never held across a
database call. Two workers may both miss the cache and both try to insert the
same key: the database's unique constraint lets exactly one win and step 6
makes the loser converge on the same id.
"""

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

from ..common.config_loader import MigrationConfig
from ..common.db_operations import DatabaseError, RelationalStore, UniqueViolationError
from ..normalizer.fields import canonicalize, clean_phone, truncate
from ..normalizer.property_transform import split_compound_title
from ..source_extractor.base import SourceRecord
from .lexicon import RegionLexicon, TypeCategoryLexicon

logger = logging.getLogger(__name__)

DISPLAY_MAX_LENGTH = 255
NATURAL_KEY_MAX_LENGTH = 255
CONTACT_NAME_MAX_LENGTH = 100
STAT_KEYS = ("cache_hits", "found", "created", "conflicts", "failed", "would_create")


@dataclass(frozen=True)
class DimensionKind:
    name: str
    table: str
    display_column: str
    parent_column: Optional[str] = None


KINDS: dict[str, DimensionKind] = {
    "region": DimensionKind("region", "regions", "region_name", "country_id"),
    "area": DimensionKind("area", "areas", "area_name", "region_id"),
    "category": DimensionKind("category", "property_categories", "category_name"),
    "type": DimensionKind("type", "property_types", "type_name", "category_id"),
    "compound": DimensionKind("compound", "compounds", "compound_name", "area_id"),
    "contact": DimensionKind("contact", "contacts", "contact_name"),
}


def natural_key(value: Any) -> str:
    """Canonical form of `value`, capped to the natural_key column width."""
    return canonicalize(value)[:NATURAL_KEY_MAX_LENGTH].rstrip()


@dataclass(frozen=True)
class ResolvedDimensions:
    """Dimension ids for one record; None where a value was absent or unresolvable."""

    area_id: Optional[int] = None
    category_id: Optional[int] = None
    type_id: Optional[int] = None
    compound_id: Optional[int] = None
    contact_id: Optional[int] = None


class DimensionResolver:
    """
    Resolves free-text dimension values to ids, creating rows on first sight.

    One instance is shared by every worker of a run; its caches live exactly
    as long as the instance.

    Args:
        store: Relational store
        config: Migration configuration (default ids, lexicons, aliases)
        read_only: When True nothing is written; misses are counted as
                   ``would_create`` and resolve to None
    """

    def __init__(self, store: RelationalStore, config: MigrationConfig, read_only: bool = False):
        self.store = store
        self.config = config
        self.read_only = read_only
        self.region_lexicon = RegionLexicon(
            config.regions.lexicon,
            default=config.regions.default,
            fuzzy_threshold=config.regions.fuzzy_threshold,
        )
        self.type_lexicon = TypeCategoryLexicon(
            config.categories.type_lexicon, default=config.categories.default
        )
        self._category_aliases = {
            natural_key(alias): natural_key(target)
            for alias, target in config.categories.aliases.items()
        }

        self._lock = threading.Lock()
        self._caches: dict[str, dict[str, int]] = {kind: {} for kind in KINDS}
        self._stats: dict[str, dict[str, int]] = {
            kind: dict.fromkeys(STAT_KEYS, 0) for kind in KINDS
        }
        self._would_create: dict[str, set[str]] = {kind: set() for kind in KINDS}
        self._review_queue: dict[str, dict[str, Any]] = {}

    def _count(self, kind: str, stat: str) -> None:
        with self._lock:
            self._stats[kind][stat] += 1

    def _cached(self, kind: str, key: str) -> Optional[int]:
        with self._lock:
            cached = self._caches[kind].get(key)
            if cached is not None:
                self._stats[kind]["cache_hits"] += 1
            return cached

    def _remember(self, kind: str, key: str, dimension_id: int, stat: str) -> int:
        """Cache an id; the first id stored for a key wins."""
        with self._lock:
            stored = self._caches[kind].setdefault(key, dimension_id)
            self._stats[kind][stat] += 1
            return stored

    def resolve(
        self,
        kind: str,
        raw_value: Any,
        *,
        display: Optional[str] = None,
        parent_id: Optional[int] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> Optional[int]:
        """
        Resolve one value of a dimension kind to its id.

        Args:
            kind: One of ``KINDS``
            raw_value: Free-text value from the source
            display: Display name written on creation (default: the trimmed raw value)
            parent_id: Parent dimension id written on creation
            extra: Additional columns written on creation

        Returns:
            Dimension id, or None when the value is empty, when the store
            fails, or in read-only mode when the row does not exist yet
        """
        kind_def = KINDS[kind]
        key = natural_key(raw_value)
        if not key:
            return None

        cached = self._cached(kind, key)
        if cached is not None:
            return cached

        try:
            row = self.store.select_one(kind_def.table, {"natural_key": key})
            if row is not None:
                return self._remember(kind, key, row["id"], "found")

            if self.read_only:
                with self._lock:
                    if key not in self._would_create[kind]:
                        self._would_create[kind].add(key)
                        self._stats[kind]["would_create"] += 1
                return None

            new_row: dict[str, Any] = {
                "natural_key": key,
                kind_def.display_column: truncate(display or " ".join(str(raw_value).split()), DISPLAY_MAX_LENGTH),
            }
            if kind_def.parent_column and parent_id is not None:
                new_row[kind_def.parent_column] = parent_id
            if extra:
                new_row.update(extra)

            try:
                created = self.store.insert_one(kind_def.table, new_row)
            except UniqueViolationError:
                # Another worker created the same key first
                winner = self.store.select_one(kind_def.table, {"natural_key": key})
                if winner is None:
                    logger.error(
                        "Dimension conflict but no row found on re-read",
                        extra={"kind": kind, "natural_key": key},
                    )
                    self._count(kind, "failed")
                    return None
                logger.debug(
                    "Dimension created concurrently, using existing row",
                    extra={"kind": kind, "natural_key": key, "id": winner["id"]},
                )
                return self._remember(kind, key, winner["id"], "conflicts")

            logger.debug(
                "Created dimension row",
                extra={"kind": kind, "natural_key": key, "id": created["id"]},
            )
            return self._remember(kind, key, created["id"], "created")

        except DatabaseError as e:
            logger.warning(
                "Failed to resolve dimension value",
                extra={"kind": kind, "natural_key": key, "error": str(e)},
            )
            self._count(kind, "failed")
            return None

    def resolve_region(self, region: Optional[str]) -> Optional[int]:
        return self.resolve("region", region, parent_id=self.config.defaults.country_id)

    def resolve_area(self, area: Optional[str]) -> Optional[int]:
        """
        Resolve an area, inferring its region from the lexicon on creation.

        Areas whose region was not an exact lexicon match are created with
        ``needs_review = true`` and listed in the review queue.
        """
        key = natural_key(area)
        if not key:
            return None

        cached = self._cached("area", key)
        if cached is not None:
            return cached

        match = self.region_lexicon.match(area)
        region_id = self.resolve_region(match.region)
        area_id = self.resolve(
            "area",
            area,
            parent_id=region_id,
            extra={"region_confidence": match.confidence, "needs_review": match.needs_review},
        )

        if match.needs_review:
            with self._lock:
                self._review_queue.setdefault(
                    key,
                    {
                        "area": " ".join(str(area).split()),
                        "natural_key": key,
                        "region": match.region,
                        "confidence": match.confidence,
                        "score": round(match.score, 1),
                        "area_id": area_id,
                    },
                )
        return area_id

    def resolve_category(self, category: Optional[str]) -> Optional[int]:
        key = natural_key(category)
        if not key:
            return None
        key = self._category_aliases.get(key, key)
        return self.resolve("category", key, display=key.title())

    def resolve_type(self, type_name: Optional[str], category_id: Optional[int] = None) -> Optional[int]:
        """Resolve a property type; its category is guessed when not given."""
        key = natural_key(type_name)
        if not key:
            return None

        cached = self._cached("type", key)
        if cached is not None:
            return cached

        if category_id is None:
            category_id = self.resolve_category(self.type_lexicon.guess(type_name))
        return self.resolve("type", type_name, parent_id=category_id)

    def resolve_compound(self, compound: Optional[str], area_id: Optional[int] = None) -> Optional[int]:
        return self.resolve("compound", compound, parent_id=area_id)

    def resolve_contact(
        self, name: Optional[str], mobile: Optional[str] = None, tel: Optional[str] = None
    ) -> Optional[int]:
        """
        Resolve a contact.

        The natural key is the cleaned phone number (mobile, else landline),
        else the contact's canonical name.
        """
        primary_phone = clean_phone(mobile)
        secondary_phone = clean_phone(tel)
        identity = primary_phone or secondary_phone or name
        if not natural_key(identity):
            return None

        display = name.strip() if name and name.strip() else (primary_phone or secondary_phone)
        return self.resolve(
            "contact",
            identity,
            display=truncate(display, CONTACT_NAME_MAX_LENGTH),
            extra={
                "primary_phone": primary_phone,
                "secondary_phone": secondary_phone,
                "contact_type": "owner",
            },
        )

    def resolve_record(self, record: SourceRecord) -> ResolvedDimensions:
        """Resolve every dimension referenced by one source record."""
        area_id = self.resolve_area(record.text("area"))

        category_id = self.resolve_category(record.text("category"))
        type_id = self.resolve_type(record.text("type"), category_id=category_id)

        _, compound_name = split_compound_title(record.text("compoundName"))
        compound_id = self.resolve_compound(compound_name, area_id=area_id)

        contact_id = self.resolve_contact(
            record.text("name"), record.text("mobileNo"), record.text("tel")
        )

        return ResolvedDimensions(
            area_id=area_id,
            category_id=category_id,
            type_id=type_id,
            compound_id=compound_id,
            contact_id=contact_id,
        )

    def stats(self) -> dict[str, dict[str, int]]:
        """Per-kind counters: cache_hits, found, created, conflicts, failed, would_create."""
        with self._lock:
            return {kind: dict(counters) for kind, counters in self._stats.items()}

    def review_queue(self) -> list[dict[str, Any]]:
        """Areas whose region was inferred with less than exact confidence."""
        with self._lock:
            return sorted(self._review_queue.values(), key=lambda item: item["natural_key"])
