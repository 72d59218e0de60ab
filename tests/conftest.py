"""Pytest configuration and fixtures for SMS Ledger tests."""

from pathlib import Path

import pytest

from smsledger.categorizer import CategorizationEngine
from smsledger.defaults import seed_defaults
from smsledger.patterns import PatternRegistry
from smsledger.pipeline import ExtractionPipeline
from smsledger.store import CategorizationStore
from tests.factories import TestDataFactory


@pytest.fixture
def registry() -> PatternRegistry:
    """Provide a registry seeded with the built-in bank patterns."""
    return TestDataFactory.create_registry()


@pytest.fixture
def pipeline(registry: PatternRegistry):
    """Provide a pipeline over the default registry."""
    with ExtractionPipeline(registry) as pipeline:
        yield pipeline


@pytest.fixture
def store():
    """Provide an in-memory store seeded with default categories and keywords."""
    with CategorizationStore() as store:
        seed_defaults(store)
        yield store


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Return a path for an on-disk store."""
    return tmp_path / "categories.db"


@pytest.fixture
def engine(store: CategorizationStore) -> CategorizationEngine:
    """Provide a categorization engine over the seeded store."""
    return CategorizationEngine(store)
