"""
Cache invalidation services for the catalog API.
"""

from .locale_expander import LocaleExpander
from .supersession import SupersessionResolver, ChainLink, choose_live_product
from .pattern_generator import PatternGenerator
from .batch_queue import BatchQueue, Batch, QueuedPattern
from .due_sources import DueEntitySource, DueSet, WatermarkDueSource, QueueDueSource
from .orchestrator import InvalidationOrchestrator
from .pattern_trigger import PatternTriggerService

__all__ = [
    "LocaleExpander",
    "SupersessionResolver",
    "ChainLink",
    "choose_live_product",
    "PatternGenerator",
    "BatchQueue",
    "Batch",
    "QueuedPattern",
    "DueEntitySource",
    "DueSet",
    "WatermarkDueSource",
    "QueueDueSource",
    "InvalidationOrchestrator",
    "PatternTriggerService",
]
