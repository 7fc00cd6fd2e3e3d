"""
Tests for the catalog models and database configuration.
"""

import os
from datetime import datetime
from unittest.mock import patch

import pytest

from pilot_catalog.database.config import DatabaseConfig
from pilot_catalog.database.models import (
    Category,
    InvalidationQueueEntry,
    Product,
    ProductImage,
    TRACKED_MODELS,
)
from pilot_catalog.models.enums import EntityKind


class TestModels:
    """Catalog model relationships and defaults."""

    def test_category_parent(self, catalog):
        carburetors = catalog.get(Category, 12)
        assert carburetors.parent.category_id == 3
        assert carburetors.parent.parent.parent is None

    def test_product_defaults(self, session):
        product = Product(sku="NEW-1")
        session.add(product)
        session.commit()

        assert product.inventory == 0
        assert isinstance(product.modified_at, datetime)
        assert product.cache_updated_at is None

    def test_product_images(self, catalog):
        catalog.add(ProductImage(image_id=1, product_id=500, sm_image="carb_sm.jpg"))
        catalog.commit()

        product = catalog.get(Product, 500)
        assert [image.image_id for image in product.images] == [1]
        assert product.category.name == "Carburetors"

    def test_queue_entry_defaults(self, session):
        entry = InvalidationQueueEntry(pattern="/content:1:en", entity_kind="product", entity_id=1)
        session.add(entry)
        session.commit()

        assert entry.batch_id is None
        assert entry.enqueued_at is not None
        assert "/content:1:en" in repr(entry)

    def test_every_entity_kind_is_tracked(self):
        assert set(TRACKED_MODELS) == set(EntityKind)
        for model, pk in TRACKED_MODELS.values():
            assert hasattr(model, "modified_at")
            assert hasattr(model, "cache_updated_at")
            assert pk.class_ is model


class TestDatabaseConfig:
    """Engine and session management."""

    def test_custom_database_url(self):
        config = DatabaseConfig(database_url="sqlite:///:memory:")
        assert config.db_type == "sqlite"
        assert not config._is_initialized

    @patch.dict(os.environ, {"DATABASE_URL": "postgresql://user:pass@db/catalog"})
    def test_database_url_from_env(self):
        config = DatabaseConfig()
        assert config.db_type == "postgresql"
        assert config.get_connection_info()["database_url"] == "db/catalog"

    @patch.dict(os.environ, {
        "DB_TYPE": "mysql",
        "DB_HOST": "db",
        "DB_NAME": "catalog",
        "DB_USER": "catalog",
        "DB_PASSWORD": "secret",
    })
    def test_mysql_url_from_components(self):
        os.environ.pop("DATABASE_URL", None)
        config = DatabaseConfig()
        assert config.database_url == "mysql+pymysql://catalog:secret@db:3306/catalog?charset=utf8mb4"
        assert config.engine_kwargs["pool_pre_ping"] is True

    @patch.dict(os.environ, {"DB_TYPE": "oracle"})
    def test_unsupported_database_type(self):
        os.environ.pop("DATABASE_URL", None)
        with pytest.raises(ValueError):
            DatabaseConfig()

    def test_session_context_commits(self):
        config = DatabaseConfig(database_url="sqlite:///:memory:")
        config.create_tables()

        with config.get_session_context() as session:
            session.add(Category(category_id=1, name="Outboard"))

        with config.get_session_context() as session:
            assert session.get(Category, 1).name == "Outboard"
        assert config.test_connection()
        config.close()

    def test_session_context_rolls_back(self):
        config = DatabaseConfig(database_url="sqlite:///:memory:")
        config.create_tables()

        with pytest.raises(RuntimeError):
            with config.get_session_context() as session:
                session.add(Category(category_id=1, name="Outboard"))
                session.flush()
                raise RuntimeError("abort")

        with config.get_session_context() as session:
            assert session.get(Category, 1) is None
        config.close()
