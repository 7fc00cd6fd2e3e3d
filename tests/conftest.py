"""
Shared fixtures: an in-memory catalog database and a seeded catalog.

Seeded catalog:

    categories   1 (root) -> 3 -> 12
    products     500 in category 12, stocked
                 100 -> 101 -> 102 supersession chain, only 101 stocked
    diagrams     page 7 on base product 100
                 group 20 with member 101
                 prop 30 in group 20, prop 31 in group 20 housed by 102
"""

from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pilot_catalog.database.models import (
    Category,
    Product,
    ProductSupersession,
    DiagramPage,
    DiagramGroup,
    DiagramGroupMember,
    DiagramProp,
    create_all_tables,
)

SEED_TIME = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_all_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def catalog(session):
    """Seed the catalog described in the module docstring."""
    session.add_all([
        Category(category_id=1, parent_id=None, name="Outboard"),
        Category(category_id=3, parent_id=1, name="Fuel System"),
        Category(category_id=12, parent_id=3, name="Carburetors"),
    ])
    session.flush()
    session.add_all([
        Product(product_id=500, sku="CARB-500", category_id=12, inventory=5,
                modified_at=SEED_TIME, cache_updated_at=SEED_TIME),
        Product(product_id=100, sku="PUMP-100", inventory=0,
                modified_at=SEED_TIME, cache_updated_at=SEED_TIME),
        Product(product_id=101, sku="PUMP-101", inventory=3,
                modified_at=SEED_TIME, cache_updated_at=SEED_TIME),
        Product(product_id=102, sku="PUMP-102", inventory=0,
                modified_at=SEED_TIME, cache_updated_at=SEED_TIME),
    ])
    session.flush()
    session.add_all([
        ProductSupersession(product_id=100, superseded_by=101, superseded_at=datetime(2020, 1, 1)),
        ProductSupersession(product_id=101, superseded_by=102, superseded_at=datetime(2022, 1, 1)),
        DiagramPage(page_id=7, base_product_id=100, page_no="A-7", title="Fuel pump"),
        DiagramGroup(group_id=20, name="Pump assembly"),
    ])
    session.flush()
    session.add_all([
        DiagramGroupMember(group_id=20, product_id=101),
        DiagramProp(prop_id=30, group_id=20, name="Gasket"),
        DiagramProp(prop_id=31, group_id=20, housing_product_id=102, name="Housing"),
    ])
    session.commit()
    return session
