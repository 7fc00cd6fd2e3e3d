"""
Pydantic models and enums for the catalog cache invalidation subsystem.
"""

from .enums import (
    EntityKind,
    InvalidationMode,
    CycleStage,
)

from .invalidation import (
    EntityRef,
    ChangeRecord,
    CycleErrorModel,
    CycleResult,
    BatchInfo,
    StageResult,
)

__all__ = [
    # Enums
    "EntityKind",
    "InvalidationMode",
    "CycleStage",

    # Invalidation models
    "EntityRef",
    "ChangeRecord",
    "CycleErrorModel",
    "CycleResult",
    "BatchInfo",
    "StageResult",
]
