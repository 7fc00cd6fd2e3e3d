"""
SQLAlchemy models for the catalog tables the invalidation subsystem reads.

This module defines the relational structure pattern generation walks:
- Category: hierarchical category tree behind the product listing views
- Product: catalog parts, their inventory and category
- ProductSupersession: "superseded-by" edges between products
- ProductImage, ProductNote, ProductQA, RepairStory: product-owned content
- DiagramPage, DiagramGroup, DiagramGroupMember, DiagramProp: exploded diagrams
- InvalidationQueueEntry: staged invalidation patterns awaiting eviction

Rows whose changes stale cached responses carry a ``modified_at`` timestamp
and a ``cache_updated_at`` watermark.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship

from ..models.enums import EntityKind

# Create the declarative base for all models
Base = declarative_base()


class CacheTrackedMixin:
    """Change timestamp and cache watermark columns."""

    modified_at = Column(DateTime, nullable=False, default=datetime.now, index=True)
    # Last change timestamp whose cache entries were confirmed evicted
    cache_updated_at = Column(DateTime, nullable=True)


class Category(Base):
    """
    Category model for the product listing tree.

    Root categories have no parent; listing views are cached per category.
    """
    __tablename__ = 'category'

    category_id = Column(Integer, primary_key=True, autoincrement=True)
    parent_id = Column(Integer, ForeignKey('category.category_id'), nullable=True, index=True)
    name = Column(String(100), nullable=False)

    parent = relationship("Category", remote_side=[category_id], lazy="select")

    def __repr__(self):
        return f"<Category(id={self.category_id}, parent={self.parent_id}, name='{self.name}')>"


class Product(CacheTrackedMixin, Base):
    """
    Product model representing a manufacturer part.

    ``inventory`` drives live-product selection along supersession chains.
    """
    __tablename__ = 'products'

    product_id = Column(Integer, primary_key=True, autoincrement=True)
    mfg_account_id = Column(Integer, nullable=True, index=True)
    sku = Column(String(40), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    category_id = Column(Integer, ForeignKey('category.category_id'), nullable=True, index=True)
    inventory = Column(Integer, nullable=False, default=0)

    category = relationship("Category", lazy="select")
    images = relationship("ProductImage", back_populates="product", lazy="select")

    def __repr__(self):
        return f"<Product(id={self.product_id}, sku='{self.sku}', category={self.category_id})>"


class ProductSupersession(Base):
    """A "superseded-by" edge: ``product_id`` was replaced by ``superseded_by``."""
    __tablename__ = 'product_supersession'

    supersession_id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey('products.product_id'), nullable=False, index=True)
    superseded_by = Column(Integer, ForeignKey('products.product_id'), nullable=False, index=True)
    superseded_at = Column(DateTime, nullable=False, default=datetime.now)

    def __repr__(self):
        return f"<ProductSupersession({self.product_id} -> {self.superseded_by})>"


class ProductImage(CacheTrackedMixin, Base):
    """Product image set."""
    __tablename__ = 'product_images'

    image_id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey('products.product_id'), nullable=False, index=True)
    sm_image = Column(String(255), nullable=True)
    lg_image = Column(String(255), nullable=True)
    xl_image = Column(String(255), nullable=True)

    product = relationship("Product", back_populates="images", lazy="select")


class ProductNote(CacheTrackedMixin, Base):
    """Free-text note attached to a product."""
    __tablename__ = 'product_notes'

    note_id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey('products.product_id'), nullable=False, index=True)
    note = Column(Text, nullable=True)


class ProductQA(CacheTrackedMixin, Base):
    """Question and answer entry shown on a product page."""
    __tablename__ = 'product_qa'

    qa_id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey('products.product_id'), nullable=False, index=True)
    question = Column(Text, nullable=True)
    answer = Column(Text, nullable=True)


class RepairStory(CacheTrackedMixin, Base):
    """Customer repair story, optionally tied to a product."""
    __tablename__ = 'repair_stories'

    story_id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey('products.product_id'), nullable=True, index=True)
    title = Column(String(200), nullable=True)


class DiagramPage(Base):
    """Exploded-diagram page anchored on a base product."""
    __tablename__ = 'diagram_pages'

    page_id = Column(Integer, primary_key=True, autoincrement=True)
    base_product_id = Column(Integer, ForeignKey('products.product_id'), nullable=True, index=True)
    page_no = Column(String(20), nullable=True)
    title = Column(String(200), nullable=True)


class DiagramGroup(Base):
    """Group of diagram properties."""
    __tablename__ = 'diagram_groups'

    group_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=True)


class DiagramGroupMember(Base):
    """Direct membership of a product in a diagram group."""
    __tablename__ = 'diagram_group_members'

    group_id = Column(Integer, ForeignKey('diagram_groups.group_id'), primary_key=True)
    product_id = Column(Integer, ForeignKey('products.product_id'), primary_key=True, index=True)


class DiagramProp(Base):
    """Diagram property page, linked to a group and to its housing product."""
    __tablename__ = 'diagram_props'

    prop_id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey('diagram_groups.group_id'), nullable=True, index=True)
    housing_product_id = Column(Integer, ForeignKey('products.product_id'), nullable=True, index=True)
    name = Column(String(100), nullable=True)


class InvalidationQueueEntry(Base):
    """
    Staged invalidation pattern.

    ``batch_id`` is NULL while the entry is unclaimed; claiming stamps a
    batch id, completion deletes the row.
    """
    __tablename__ = 'cache_invalidation_queue'

    queue_id = Column(Integer, primary_key=True, autoincrement=True)
    pattern = Column(String(250), nullable=False)
    batch_id = Column(String(32), nullable=True, index=True)
    entity_kind = Column(String(20), nullable=False)
    entity_id = Column(Integer, nullable=False)
    enqueued_at = Column(DateTime, nullable=False, default=datetime.now)
    claimed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<InvalidationQueueEntry(id={self.queue_id}, pattern='{self.pattern}', batch={self.batch_id})>"


Index('idx_supersession_edge', ProductSupersession.product_id, ProductSupersession.superseded_at)
Index('idx_queue_batch_entity', InvalidationQueueEntry.batch_id, InvalidationQueueEntry.entity_kind)


# Tracked tables keyed by the entity kind whose changes they record
TRACKED_MODELS = {
    EntityKind.PRODUCT: (Product, Product.product_id),
    EntityKind.IMAGE: (ProductImage, ProductImage.image_id),
    EntityKind.NOTE: (ProductNote, ProductNote.note_id),
    EntityKind.QA: (ProductQA, ProductQA.qa_id),
    EntityKind.STORY: (RepairStory, RepairStory.story_id),
}


def create_all_tables(engine):
    """Create all catalog tables on the given engine."""
    Base.metadata.create_all(bind=engine)


def drop_all_tables(engine):
    """Drop all catalog tables on the given engine."""
    Base.metadata.drop_all(bind=engine)


__all__ = [
    'Base',
    'CacheTrackedMixin',
    'Category',
    'Product',
    'ProductSupersession',
    'ProductImage',
    'ProductNote',
    'ProductQA',
    'RepairStory',
    'DiagramPage',
    'DiagramGroup',
    'DiagramGroupMember',
    'DiagramProp',
    'InvalidationQueueEntry',
    'TRACKED_MODELS',
    'create_all_tables',
    'drop_all_tables',
]
