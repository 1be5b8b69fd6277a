"""
Unit tests for the property row transformation.

The resolver is replaced by a stub so only field mapping, clamping and
default handling are exercised here.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from property_migration.common.config_loader import DefaultIds
from property_migration.normalizer.property_transform import (
    NormalizationError,
    build_property_row,
    derive_title,
    normalize_listing_status,
    normalize_listing_type,
    split_compound_title,
    synthesize_property_code,
)
from property_migration.resolver.dimension_resolver import ResolvedDimensions
from property_migration.source_extractor.base import SourceRecord


class StubResolver:
    def __init__(self, dims=None):
        self.dims = dims or ResolvedDimensions(
            area_id=11, category_id=12, type_id=13, compound_id=14, contact_id=15
        )
        self.calls = 0

    def resolve_record(self, record):
        self.calls += 1
        return self.dims


class TestPropertyCode:
    """Tests for synthesize_property_code."""

    def test_derived_from_external_id(self):
        assert synthesize_property_code("65a1f0c2e4b0d9a1b2c3") == "PROP_D9A1B2C3"

    def test_explicit_number_wins(self):
        assert synthesize_property_code("65a1f0c2e4b0d9a1b2c3", " P-1001 ") == "P-1001"

    def test_blank_number_is_ignored(self):
        assert synthesize_property_code("abc", "   ") == "PROP_ABC"

    def test_custom_format(self):
        assert synthesize_property_code("65a1f0c2e4b0d9a1b2c3", prefix="EG-", suffix_length=4) == "EG-B2C3"


class TestCompoundTitle:
    """Tests for split_compound_title and derive_title."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Apartment in Mivida", ("Apartment", "Mivida")),
            ("Villa - Palm Hills - Phase 2", ("Villa", "Palm Hills")),
            ("Chalet at Marassi", ("Chalet", "Marassi")),
            ("Mivida", ("Mivida", None)),
            ("", (None, None)),
            (None, (None, None)),
        ],
    )
    def test_split(self, value, expected):
        assert split_compound_title(value) == expected

    def test_long_text_without_delimiter_is_shortened(self):
        text = "x" * 80
        title, compound = split_compound_title(text)
        assert title == "x" * 50 + "..."
        assert compound is None

    def test_title_fallbacks(self):
        assert derive_title("Apartment", "Nice view", "PROP_1") == "Apartment"
        assert derive_title(None, "d" * 300, "PROP_1") == "d" * 200
        assert derive_title(None, None, "PROP_1") == "Property PROP_1"


class TestListingFields:
    """Tests for listing type and status normalization."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("For Rent", "Rent"),
            ("RENT", "Rent"),
            ("For Sale", "Sale"),
            ("إيجار", "Rent"),
            ("للبيع", "Sale"),
            ("Lease option", "Lease opti"),
            (None, None),
            ("", None),
        ],
    )
    def test_listing_type(self, value, expected):
        assert normalize_listing_type(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("available", "Available"),
            ("  SOLD ", "Sold"),
            ("Rented", "Rented"),
            ("Under offer", "Under offer"),
            (None, None),
        ],
    )
    def test_listing_status(self, value, expected):
        assert normalize_listing_status(value) == expected


class TestBuildPropertyRow:
    """Tests for build_property_row."""

    def test_maps_every_field(self, sample_record):
        row = build_property_row(sample_record, StubResolver(), DefaultIds())

        assert row["external_id"] == "65a1f0c2e4b0d9a1b2c3"
        assert row["property_code"] == "PROP_D9A1B2C3"
        assert row["title"] == "Apartment"
        assert row["compound_name"] == "Mivida"
        assert row["price"] == Decimal("15000000.00")
        assert row["down_payment"] == Decimal("1500000.00")
        assert row["price_per_meter"] == Decimal("90909.00")
        assert row["building_area"] == Decimal("165.00")
        assert row["land_area"] is None
        assert row["bedrooms"] == 3
        assert row["bathrooms"] == 2
        assert row["floor_number"] == "5th floor"
        assert row["installment_plan"] == {"years": 8, "quarterly": True}
        assert row["listing_type"] == "Sale"
        assert row["listing_status"] == "Available"
        assert row["currency"] == "EGP"
        assert row["inside_compound"] is True
        assert row["featured_home"] is True
        assert row["is_liked"] is False
        assert row["offered_by"] == "Owner"
        assert row["phase_name"] == "Phase 2"
        assert row["source_created_at"] == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_uses_resolved_dimension_ids(self, sample_record):
        row = build_property_row(sample_record, StubResolver(), DefaultIds())

        assert (row["area_id"], row["category_id"], row["type_id"]) == (11, 12, 13)
        assert row["compound_id"] == 14
        assert row["primary_contact_id"] == 15

    def test_unresolved_dimensions_fall_back_to_defaults(self, sample_record):
        defaults = DefaultIds(area_id=99, category_id=7, type_id=8)
        row = build_property_row(sample_record, StubResolver(ResolvedDimensions()), defaults)

        assert (row["area_id"], row["category_id"], row["type_id"]) == (99, 7, 8)
        assert row["compound_id"] is None
        assert row["primary_contact_id"] is None

    def test_out_of_range_values_are_clamped(self, sample_property_document):
        sample_property_document.update(rooms="45", bathrooms="-1", totalPrice="999999999999")
        record = SourceRecord.from_document(sample_property_document)

        row = build_property_row(record, StubResolver(), DefaultIds())

        assert row["bedrooms"] == 20
        assert row["bathrooms"] == 0
        assert row["price"] == Decimal("99999999.00")

    def test_missing_currency_uses_default(self, sample_property_document):
        sample_property_document["currency"] = "  "
        record = SourceRecord.from_document(sample_property_document)

        row = build_property_row(record, StubResolver(), DefaultIds(currency="USD"))

        assert row["currency"] == "USD"

    def test_title_falls_back_to_description(self, sample_property_document):
        sample_property_document["compoundName"] = None
        record = SourceRecord.from_document(sample_property_document)

        row = build_property_row(record, StubResolver(), DefaultIds())

        assert row["title"] == "Corner apartment with open view, fully finished"
        assert row["compound_name"] is None

    def test_document_without_id_is_rejected(self, sample_property_document):
        sample_property_document["$id"] = ""
        record = SourceRecord.from_document(sample_property_document)
        resolver = StubResolver()

        with pytest.raises(NormalizationError):
            build_property_row(record, resolver, DefaultIds())
        assert resolver.calls == 0

    def test_same_input_builds_same_row(self, sample_record):
        first = build_property_row(sample_record, StubResolver(), DefaultIds())
        second = build_property_row(sample_record, StubResolver(), DefaultIds())

        assert first == second


# ============================================================================
# Mark all tests as unit tests
# ============================================================================

pytestmark = pytest.mark.unit
