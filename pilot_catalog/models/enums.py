"""
Enums for the catalog cache invalidation subsystem.
"""

from enum import Enum


class EntityKind(str, Enum):
    """Kinds of catalog rows whose changes stale cached responses."""
    PRODUCT = "product"
    IMAGE = "image"
    NOTE = "note"
    QA = "qa"
    STORY = "story"


class InvalidationMode(str, Enum):
    """How due changes reach the evictor."""
    DIRECT = "direct"  # watermark query, processed in one cycle
    STAGED = "staged"  # persistent queue, processed in claimed batches


class CycleStage(str, Enum):
    """Steps of one invalidation cycle."""
    IDENTIFY = "identify"
    GENERATE = "generate"
    EVICT = "evict"
    COMMIT = "commit"
