"""Pytest configuration and fixtures for the ingredient library tests."""

import random

import pytest

from ingredient_library.models.ingredient import Ingredient
from ingredient_library.services.database import (
    create_database_engine,
    create_session_factory,
    init_database,
)
from ingredient_library.utils.config import DataSourceConfig


def _ingredient(**overrides):
    data = {
        "id": "INGR-X",
        "name": "Test Ingredient",
        "category": "Essential Oils",
        "family": "Citrus",
        "status": "Active",
        "type": "Natural",
        "supplier": "Givaudan",
        "cost_per_kg": 100.0,
        "stock": 100,
        "favorite": False,
    }
    data.update(overrides)
    return Ingredient(**data)


@pytest.fixture
def make_ingredient():
    """Provide a factory for Ingredient records with sensible defaults."""
    return _ingredient


@pytest.fixture
def catalog():
    """Provide a small catalog with parents, children and one orphan.

    Roots (input order): INGR-001, INGR-002, INGR-003, INGR-004, INGR-009
    Children: INGR-001-A and INGR-001-B under INGR-001, INGR-002-A under INGR-002
    Orphan: INGR-009 points at a parent that does not exist
    """
    return [
        _ingredient(
            id="INGR-001",
            name="Bergamot Essential Oil",
            cost_per_kg=125.5,
            stock=150,
            favorite=True,
            cas_number="8007-75-8",
            ifra_limit_pct=0.4,
            allergens=["Limonene", "Linalool"],
        ),
        _ingredient(
            id="INGR-001-A",
            name="Bergamot FCF",
            cost_per_kg=145.75,
            stock=75,
            allergens=["Limonene"],
            parent_id="INGR-001",
        ),
        _ingredient(
            id="INGR-001-B",
            name="Bergamot Expressed",
            status="Inactive",
            cost_per_kg=118.25,
            stock=0,
            parent_id="INGR-001",
        ),
        _ingredient(
            id="INGR-002",
            name="Lemon Essential Oil",
            supplier="Firmenich",
            cost_per_kg=89.75,
            stock=200,
            favorite=True,
            allergens=["Limonene", "Citral"],
        ),
        _ingredient(
            id="INGR-002-A",
            name="Lemon Terpenes",
            category="Terpenes",
            supplier="Firmenich",
            cost_per_kg=45.5,
            stock=300,
            allergens=["Limonene"],
            parent_id="INGR-002",
        ),
        _ingredient(
            id="INGR-003",
            name="Iso E Super",
            category="Aroma Chemicals",
            family="Woody",
            status="Inactive",
            type="Synthetic",
            supplier="IFF",
            cost_per_kg=42.0,
            stock=0,
        ),
        _ingredient(
            id="INGR-004",
            name="Jasmine Sambac Absolute",
            category="Absolutes",
            family="Floral",
            status="Limited",
            supplier="Firmenich",
            cost_per_kg=3200.0,
            stock=8,
            favorite=True,
            allergens=["Benzyl Acetate", "Linalool"],
        ),
        _ingredient(
            id="INGR-009",
            name="Vetiver Heart",
            family="Woody",
            supplier="Symrise",
            cost_per_kg=310.0,
            stock=49,
            parent_id="INGR-MISSING",
        ),
    ]


@pytest.fixture(scope="function")
def session_factory():
    """Provide a session factory bound to a fresh in-memory database.

    This fixture:
    1. Creates an in-memory SQLite engine
    2. Creates all tables
    3. Disposes of the engine after the test completes
    """
    engine = create_database_engine("sqlite:///:memory:")
    init_database(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def fast_data_source():
    """Provide a database data source config that retries without sleeping."""
    return DataSourceConfig(type="database", retry_attempts=3, retry_delay=0, retry_max_delay=0)


def _tangled_catalog(seed, size=12):
    rng = random.Random(seed)
    pool = [f"T-{n}" for n in range(size // 2)]
    parents = pool + [None, None, "T-MISSING"]
    return [
        _ingredient(
            id=rng.choice(pool),
            name=f"Tangled {n:02d}",
            supplier=rng.choice(["Givaudan", "Firmenich", "IFF"]),
            status=rng.choice(["Active", "Inactive"]),
            cost_per_kg=rng.randint(0, 300),
            stock=rng.randint(0, 300),
            favorite=rng.random() < 0.5,
            parent_id=rng.choice(parents),
        )
        for n in range(size)
    ]


@pytest.fixture
def make_tangled_catalog():
    """Provide a seeded factory for catalogs with repeated ids, cycles and orphans.

    Ids are drawn from a pool half the catalog size so repeats are common;
    parents are drawn from the same pool, so self-references and cycles occur.
    Names are unique per record.
    """
    return _tangled_catalog
