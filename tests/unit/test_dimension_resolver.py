"""
Unit tests for DimensionResolver.

Uses the in-memory store, which enforces the same unique natural keys as the
real schema, so lookup-or-create, conflict recovery and concurrent
deduplication can be checked without a database.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from property_migration.resolver.dimension_resolver import DimensionResolver
from tests.fakes import InMemoryStore


class TestResolve:
    """Tests for the generic lookup-or-create path."""

    @pytest.mark.parametrize("value", [None, "", "   ", "--"])
    def test_empty_value_resolves_to_none(self, resolver, memory_store, value):
        assert resolver.resolve("compound", value) is None
        assert memory_store.calls["select_one"] == 0

    def test_creates_row_on_first_sight(self, resolver, memory_store):
        compound_id = resolver.resolve("compound", "  Palm   Hills ", parent_id=3)

        rows = memory_store.rows("compounds")
        assert len(rows) == 1
        assert rows[0]["id"] == compound_id
        assert rows[0]["natural_key"] == "palm hills"
        assert rows[0]["compound_name"] == "Palm Hills"
        assert rows[0]["area_id"] == 3
        assert resolver.stats()["compound"]["created"] == 1

    def test_long_value_fits_key_and_display_columns(self, resolver, memory_store):
        value = "Palm Hills " * 30

        first = resolver.resolve("compound", value)
        second = resolver.resolve("compound", value.upper())

        row = memory_store.rows("compounds")[0]
        assert first == second
        assert len(memory_store.rows("compounds")) == 1
        assert len(row["natural_key"]) <= 255
        assert not row["natural_key"].endswith(" ")
        assert len(row["compound_name"]) <= 255
        assert resolver.stats()["compound"]["cache_hits"] == 1

    def test_variants_share_one_row(self, resolver, memory_store):
        first = resolver.resolve("compound", "Palm Hills")
        second = resolver.resolve("compound", "  PALM hills ")

        assert first == second
        assert len(memory_store.rows("compounds")) == 1
        assert resolver.stats()["compound"]["cache_hits"] == 1

    def test_existing_row_is_found_by_cold_resolver(self, memory_store, migration_config):
        existing = memory_store.seed("compounds", {"natural_key": "mivida", "compound_name": "Mivida"})
        resolver = DimensionResolver(memory_store, migration_config)

        assert resolver.resolve("compound", "Mivida") == existing
        assert memory_store.calls["insert_one"] == 0
        assert resolver.stats()["compound"]["found"] == 1

    def test_lost_insert_race_returns_winner_id(self, resolver, memory_store):
        winner = {}

        def concurrent_creator(table, row):
            if table == "compounds" and not winner:
                winner["id"] = memory_store.seed(
                    table, {"natural_key": row["natural_key"], "compound_name": "Winner"}
                )

        memory_store.before_insert = concurrent_creator

        resolved = resolver.resolve("compound", "Hyde Park")

        assert resolved == winner["id"]
        assert len(memory_store.rows("compounds")) == 1
        assert resolver.stats()["compound"]["conflicts"] == 1

    def test_store_failure_resolves_to_none(self, resolver, memory_store):
        memory_store.fail_select = lambda table, filters: table == "compounds"

        assert resolver.resolve("compound", "Marassi") is None
        assert resolver.stats()["compound"]["failed"] == 1
        assert memory_store.rows("compounds") == []


class TestReadOnly:
    """Tests for read-only (dry run) resolution."""

    def test_nothing_is_written(self, memory_store, migration_config):
        resolver = DimensionResolver(memory_store, migration_config, read_only=True)

        assert resolver.resolve("compound", "Mivida") is None
        assert resolver.resolve("compound", " mivida ") is None
        assert resolver.resolve("compound", "Uptown Cairo") is None

        assert memory_store.calls["insert_one"] == 0
        assert resolver.stats()["compound"]["would_create"] == 2

    def test_existing_rows_are_still_found(self, memory_store, migration_config):
        existing = memory_store.seed("compounds", {"natural_key": "mivida", "compound_name": "Mivida"})
        resolver = DimensionResolver(memory_store, migration_config, read_only=True)

        assert resolver.resolve("compound", "Mivida") == existing


class TestAreaResolution:
    """Tests for areas and their inferred regions."""

    def test_area_is_linked_to_inferred_region(self, resolver, memory_store):
        area_id = resolver.resolve_area("  New Cairo  ")

        area = memory_store.find("areas", id=area_id)[0]
        region = memory_store.find("regions", id=area["region_id"])[0]
        assert area["area_name"] == "New Cairo"
        assert area["region_confidence"] == "exact"
        assert area["needs_review"] is False
        assert region["natural_key"] == "new cairo"
        assert region["country_id"] == 1
        assert resolver.review_queue() == []

    def test_area_variants_share_one_row(self, resolver, memory_store):
        assert resolver.resolve_area("  New Cairo  ") == resolver.resolve_area("new cairo")
        assert len(memory_store.rows("areas")) == 1
        assert len(memory_store.rows("regions")) == 1

    def test_long_area_is_created_with_capped_key(self, resolver, memory_store):
        area_id = resolver.resolve_area("x" * 300)

        area = memory_store.find("areas", id=area_id)[0]
        assert area["natural_key"] == "x" * 255
        assert resolver.resolve_area("X" * 300) == area_id
        assert resolver.review_queue()[0]["natural_key"] == "x" * 255

    def test_unmatched_area_is_queued_for_review(self, resolver, memory_store):
        area_id = resolver.resolve_area("Zamalek")

        area = memory_store.find("areas", id=area_id)[0]
        assert area["needs_review"] is True
        assert area["region_confidence"] == "default"
        queue = resolver.review_queue()
        assert [item["natural_key"] for item in queue] == ["zamalek"]
        assert queue[0]["region"] == "cairo"
        assert queue[0]["area_id"] == area_id


class TestCategoryAndType:
    """Tests for categories, aliases and type categories."""

    def test_alias_maps_to_canonical_category(self, resolver, memory_store):
        assert resolver.resolve_category("Residentail") == resolver.resolve_category("residential")

        rows = memory_store.rows("property_categories")
        assert len(rows) == 1
        assert rows[0]["category_name"] == "Residential"

    def test_type_category_is_guessed_when_missing(self, resolver, memory_store):
        type_id = resolver.resolve_type("Twin House")

        type_row = memory_store.find("property_types", id=type_id)[0]
        category = memory_store.find("property_categories", id=type_row["category_id"])[0]
        assert category["natural_key"] == "villa"

    def test_explicit_category_is_used(self, resolver, memory_store):
        category_id = resolver.resolve_category("Commercial")
        type_id = resolver.resolve_type("Apartment", category_id=category_id)

        assert memory_store.find("property_types", id=type_id)[0]["category_id"] == category_id


class TestContactResolution:
    """Tests for contacts keyed by phone or name."""

    def test_contact_keyed_by_mobile(self, resolver, memory_store):
        first = resolver.resolve_contact("Ahmed Hassan", "+20 100 123-4567")
        second = resolver.resolve_contact("A. Hassan", "+201001234567")

        assert first == second
        contact = memory_store.rows("contacts")[0]
        assert contact["primary_phone"] == "+201001234567"
        assert contact["contact_name"] == "Ahmed Hassan"
        assert contact["contact_type"] == "owner"

    def test_landline_used_without_mobile(self, resolver, memory_store):
        resolver.resolve_contact("Office", None, "02 2345 6789")

        assert memory_store.rows("contacts")[0]["natural_key"] == "0223456789"

    def test_name_used_without_phones(self, resolver, memory_store):
        first = resolver.resolve_contact("Mona Fathy")
        second = resolver.resolve_contact("  mona   FATHY ")

        assert first == second
        assert memory_store.rows("contacts")[0]["natural_key"] == "mona fathy"

    def test_no_identity_resolves_to_none(self, resolver, memory_store):
        assert resolver.resolve_contact(None, None, None) is None
        assert resolver.resolve_contact("  ", "n/a") is None
        assert memory_store.rows("contacts") == []


class TestResolveRecord:
    """Tests for resolving every dimension of one record."""

    def test_all_dimensions_resolved(self, resolver, memory_store, sample_record):
        dims = resolver.resolve_record(sample_record)

        assert None not in (dims.area_id, dims.category_id, dims.type_id, dims.compound_id, dims.contact_id)
        compound = memory_store.find("compounds", id=dims.compound_id)[0]
        assert compound["natural_key"] == "mivida"
        assert compound["area_id"] == dims.area_id

    def test_resolving_twice_creates_nothing_new(self, resolver, memory_store, sample_record):
        resolver.resolve_record(sample_record)
        before = {table: len(rows) for table, rows in memory_store.tables.items()}

        resolver.resolve_record(sample_record)

        assert {table: len(rows) for table, rows in memory_store.tables.items()} == before


class TestConcurrentResolution:
    """Concurrent workers must converge on one row per natural key."""

    def test_parallel_first_sight_creates_one_row(self, migration_config):
        store = InMemoryStore()
        # Widen the window between lookup and insert
        store.before_insert = lambda table, row: time.sleep(0.005)
        resolver = DimensionResolver(store, migration_config)
        start = threading.Barrier(8)

        def resolve(value):
            start.wait()
            return resolver.resolve_area(value)

        values = ["New Cairo", "  new cairo", "NEW CAIRO ", "new  cairo"] * 2
        with ThreadPoolExecutor(max_workers=8) as executor:
            ids = list(executor.map(resolve, values))

        assert len(set(ids)) == 1
        assert len(store.rows("areas")) == 1
        assert len(store.rows("regions")) == 1

    def test_separate_resolvers_share_rows(self, memory_store, migration_config):
        first = DimensionResolver(memory_store, migration_config)
        second = DimensionResolver(memory_store, migration_config)

        assert first.resolve_area("Maadi") == second.resolve_area("maadi")
        assert len(memory_store.rows("areas")) == 1


# ============================================================================
# Mark all tests as unit tests
# ============================================================================

pytestmark = pytest.mark.unit
