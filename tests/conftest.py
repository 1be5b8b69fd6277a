"""
Pytest configuration and shared fixtures

This file contains test fixtures that can be used across all tests.
Fixtures are reusable components that set up test preconditions.

Learn more: https://docs.pytest.org/en/stable/fixture.html
"""

import json
import os

import pytest

from property_migration.common.config_loader import MigrationConfig
from property_migration.resolver.dimension_resolver import DimensionResolver
from property_migration.source_extractor.base import SourceRecord
from tests.fakes import InMemoryStore


@pytest.fixture(scope="session")
def test_database_url():
    """
    Provide the database URL for integration tests.

    Integration tests only run against a dedicated database named by
    MIGRATION_TEST_DATABASE_URL; they are skipped otherwise.

    Scope: session (created once per test run)
    """
    url = os.getenv("MIGRATION_TEST_DATABASE_URL")
    if not url:
        pytest.skip("MIGRATION_TEST_DATABASE_URL not set")
    return url


@pytest.fixture(scope="function")
def migration_config() -> MigrationConfig:
    """
    Provide a default configuration with small, test-friendly batches.

    Scope: function (created fresh for each test)
    """
    config = MigrationConfig()
    config.migration.batch_size = 5
    config.migration.max_workers = 2
    config.source.page_size = 10
    return config


@pytest.fixture(scope="function")
def memory_store() -> InMemoryStore:
    """Provide an empty in-memory relational store."""
    return InMemoryStore()


@pytest.fixture(scope="function")
def resolver(memory_store, migration_config) -> DimensionResolver:
    """Provide a writing resolver bound to the in-memory store."""
    return DimensionResolver(memory_store, migration_config)


@pytest.fixture(scope="function")
def sample_property_document() -> dict:
    """
    Provide a sample Appwrite property document for testing.

    Mirrors the loose typing of the real collection: numbers as strings with
    units, arrays as JSON strings, booleans as free text.

    Scope: function (created fresh for each test)

    Returns:
        dict: Sample property document
    """
    return {
        "$id": "65a1f0c2e4b0d9a1b2c3",
        "$createdAt": "2024-01-15T10:30:00.000+00:00",
        "$updatedAt": "2024-03-01T08:00:00.000+00:00",
        "propertyNumber": None,
        "compoundName": "Apartment in Mivida",
        "description": "Corner apartment with open view, fully finished",
        "area": "  New Cairo  ",
        "category": "Residentail",
        "type": "Apartment",
        "name": "Ahmed Hassan",
        "mobileNo": "+20 100 123-4567",
        "tel": "02 2345 6789",
        "unitFor": "For Sale",
        "status": "available",
        "rooms": "3",
        "bathrooms": "2",
        "theFloors": "5th floor",
        "landArea": "",
        "building": "165 sqm",
        "totalPrice": "15,000,000 EGP",
        "currency": "EGP",
        "downPayment": "1,500,000",
        "PricePerMeter": "90,909",
        "monthly": "125000",
        "installment": '{"years": 8, "quarterly": true}',
        "activity": "Residential",
        "propertyOfferedBy": "Owner",
        "inOrOutSideCompound": "Inside",
        "phase": "Phase 2",
        "liked": False,
        "inHome": "yes",
        "propertyImage": json.dumps(
            [
                {"id": "img1", "fileUrl": "https://cdn.example.com/img1.jpg", "fileSize": 120000, "mimeType": "image/jpeg"},
                {"id": "img2", "fileUrl": "https://cdn.example.com/img2.png", "mimeType": "image/png"},
            ]
        ),
        "videos": json.dumps([{"url": "https://youtu.be/abc123", "title": "Tour"}]),
    }


@pytest.fixture(scope="function")
def sample_record(sample_property_document) -> SourceRecord:
    return SourceRecord.from_document(sample_property_document)


# Mark tests based on their type for selective running
def pytest_configure(config):
    """
    Register custom pytest markers.

    This allows us to run specific test categories:
    - pytest -m unit        (run only unit tests)
    - pytest -m integration (run only integration tests)
    - pytest -m "not slow"  (skip slow tests)
    """
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test (isolated, fast)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (requires services)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (>1 second)"
    )
