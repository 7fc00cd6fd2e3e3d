"""
Database package for the catalog API.

This package provides the SQLAlchemy catalog models and the database
configuration used by the cache invalidation subsystem.
"""

from .models import (
    Base,
    Category,
    Product,
    ProductSupersession,
    ProductImage,
    ProductNote,
    ProductQA,
    RepairStory,
    DiagramPage,
    DiagramGroup,
    DiagramGroupMember,
    DiagramProp,
    InvalidationQueueEntry,
    TRACKED_MODELS,
    create_all_tables,
    drop_all_tables,
)

from .config import DatabaseConfig

__all__ = [
    # Models
    'Base',
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

    # Configuration
    'DatabaseConfig',
]
