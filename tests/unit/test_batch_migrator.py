"""
Unit tests for BatchMigrator.

Covers idempotent reruns, dimension deduplication regardless of batching,
clamping of out-of-range values and containment of failed windows.
"""

import threading
from decimal import Decimal

import pytest

from property_migration.migrator.batch_migrator import BatchMigrator
from property_migration.resolver.dimension_resolver import DimensionResolver
from property_migration.source_extractor.base import SourceRecord
from tests.fakes import InMemoryStore, make_document


def records_for(documents):
    return [SourceRecord.from_document(doc) for doc in documents]


def run_migration(store, config, documents, **kwargs):
    resolver = DimensionResolver(store, config, read_only=kwargs.get("dry_run", False))
    migrator = BatchMigrator(store, resolver, config)
    stats = migrator.migrate(records_for(documents), **kwargs)
    return migrator, stats


def table_snapshot(store, table, key):
    return sorted(store.rows(table), key=lambda row: row[key])


class TestMigrate:
    """Tests for the primary migration."""

    def test_all_records_are_written(self, memory_store, migration_config):
        documents = [make_document(i) for i in range(12)]

        migrator, stats = run_migration(memory_store, migration_config, documents)

        assert stats.to_dict() == {"attempted": 12, "succeeded": 12, "skipped": 0, "errored": 0}
        assert len(memory_store.rows("properties")) == 12
        assert set(migrator.id_map) == {doc["$id"] for doc in documents}
        assert migrator.errors == []

    def test_rerun_converges_to_same_state(self, memory_store, migration_config):
        documents = [make_document(i) for i in range(12)]

        first, _ = run_migration(memory_store, migration_config, documents)
        snapshot = {
            table: table_snapshot(memory_store, table, "id") for table in list(memory_store.tables)
        }
        second, stats = run_migration(memory_store, migration_config, documents)

        assert stats.succeeded == 12
        assert second.id_map == first.id_map
        for table, rows in snapshot.items():
            assert table_snapshot(memory_store, table, "id") == rows

    @pytest.mark.parametrize("batch_size", [1, 3, 50])
    @pytest.mark.parametrize("max_workers", [1, 4])
    def test_dimensions_deduplicated_regardless_of_batching(self, migration_config, batch_size, max_workers):
        store = InMemoryStore()
        migration_config.migration.max_workers = max_workers
        documents = [make_document(i) for i in range(20)]

        _, stats = run_migration(store, migration_config, documents, batch_size=batch_size)

        assert stats.succeeded == 20
        # "New Cairo" and "new cairo" are one area
        assert sorted(row["natural_key"] for row in store.rows("areas")) == [
            "maadi",
            "new cairo",
            "sheikh zayed",
        ]
        assert len(store.rows("property_types")) == 2
        assert len(store.rows("contacts")) == 5

    def test_out_of_range_values_do_not_fail_the_batch(self, memory_store, migration_config):
        documents = [make_document(i) for i in range(5)]
        documents[2].update(totalPrice="999999999999", rooms="45")

        _, stats = run_migration(memory_store, migration_config, documents)

        assert stats.succeeded == 5
        row = memory_store.find("properties", external_id=documents[2]["$id"])[0]
        assert row["price"] == Decimal("99999999.00")
        assert row["bedrooms"] == 20

    def test_failed_upsert_errors_only_its_window(self, memory_store, migration_config):
        documents = [make_document(i) for i in range(12)]
        poisoned = documents[3]["$id"]
        memory_store.fail_upsert = lambda table, rows: any(r.get("external_id") == poisoned for r in rows)

        migrator, stats = run_migration(memory_store, migration_config, documents, batch_size=5)

        assert stats.to_dict() == {"attempted": 12, "succeeded": 7, "skipped": 0, "errored": 5}
        assert len(memory_store.rows("properties")) == 7
        assert {error.external_id for error in migrator.errors} == {doc["$id"] for doc in documents[:5]}
        assert all(error.phase == "migrate" for error in migrator.errors)
        assert poisoned not in migrator.id_map

    def test_record_without_id_is_errored_alone(self, memory_store, migration_config):
        documents = [make_document(i) for i in range(3)]
        documents[1]["$id"] = None

        migrator, stats = run_migration(memory_store, migration_config, documents)

        assert stats.succeeded == 2
        assert stats.errored == 1
        assert migrator.errors[0].external_id is None

    def test_last_duplicate_in_window_wins(self, memory_store, migration_config):
        documents = [
            make_document(0, description="first"),
            make_document(1),
            make_document(0, description="second"),
        ]

        _, stats = run_migration(memory_store, migration_config, documents, batch_size=10)

        assert stats.to_dict() == {"attempted": 3, "succeeded": 2, "skipped": 1, "errored": 0}
        row = memory_store.find("properties", external_id="doc000000")[0]
        assert row["description"] == "second"

    def test_dry_run_writes_nothing(self, memory_store, migration_config):
        documents = [make_document(i) for i in range(8)]

        migrator, stats = run_migration(memory_store, migration_config, documents, dry_run=True)

        assert stats.succeeded == 8
        assert memory_store.calls["upsert"] == 0
        assert memory_store.calls["insert_one"] == 0
        assert memory_store.rows("properties") == []
        assert migrator.id_map == {}

    def test_unchanged_records_are_skipped(self, memory_store, migration_config):
        documents = [make_document(i) for i in range(6)]
        first, _ = run_migration(memory_store, migration_config, documents)

        migration_config.migration.skip_unchanged = True
        documents[0]["$updatedAt"] = "2024-06-01T00:00:00.000+00:00"
        second, stats = run_migration(memory_store, migration_config, documents)

        assert stats.to_dict() == {"attempted": 6, "succeeded": 1, "skipped": 5, "errored": 0}
        assert second.id_map == first.id_map

    def test_cancelled_before_start_does_nothing(self, memory_store, migration_config):
        cancel = threading.Event()
        cancel.set()

        _, stats = run_migration(
            memory_store, migration_config, [make_document(i) for i in range(5)], cancel_event=cancel
        )

        assert stats.attempted == 0
        assert memory_store.rows("properties") == []

    def test_records_consumed_lazily(self, memory_store, migration_config):
        def generate():
            for i in range(9):
                yield SourceRecord.from_document(make_document(i))

        resolver = DimensionResolver(memory_store, migration_config)
        stats = BatchMigrator(memory_store, resolver, migration_config).migrate(generate(), batch_size=2)

        assert stats.succeeded == 9


# ============================================================================
# Mark all tests as unit tests
# ============================================================================

pytestmark = pytest.mark.unit
