"""
Invalidation models exchanged between the subsystem's components.

Change records flow from the due-entity sources into pattern generation;
cycle results flow back out to the HTTP and CLI surfaces.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

from .enums import EntityKind, CycleStage


class EntityRef(BaseModel):
    """Identity of a changed catalog row."""
    model_config = ConfigDict(frozen=True)

    kind: EntityKind = Field(..., description="Entity kind")
    entity_id: int = Field(..., description="Primary key of the row")

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.entity_id}"


class ChangeRecord(BaseModel):
    """
    One unit of catalog mutation.

    ``changed_at`` is the row's ``modified_at`` observed when the change was
    identified; committing a watermark writes exactly this value.
    """
    model_config = ConfigDict(frozen=True)

    kind: EntityKind = Field(..., description="Entity kind")
    entity_id: int = Field(..., description="Primary key of the row")
    changed_at: Optional[datetime] = Field(None, description="Change timestamp")

    @property
    def ref(self) -> EntityRef:
        return EntityRef(kind=self.kind, entity_id=self.entity_id)


class CycleErrorModel(BaseModel):
    """Typed failure of an invalidation cycle."""

    kind: str = Field(..., description="Error class identifier")
    retryable: bool = Field(..., description="Whether re-running the cycle may succeed")
    message: str = Field(..., description="Human-readable detail")
    stage: Optional[CycleStage] = Field(None, description="Cycle step that failed")


class CycleResult(BaseModel):
    """Outcome of one invalidation cycle."""

    target: str = Field(..., description="Due-entity source description")
    entities: int = Field(default=0, ge=0, description="Due entities identified")
    patterns: int = Field(default=0, ge=0, description="Concrete patterns evicted")
    deleted: int = Field(default=0, ge=0, description="Cache keys deleted")
    committed: bool = Field(default=False, description="Whether the commit step ran")
    batch_id: Optional[str] = Field(None, description="Claimed batch, staged mode only")
    error: Optional[CycleErrorModel] = Field(None, description="Failure detail")
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = Field(None)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def summary(self) -> str:
        if self.error is not None:
            return f"Invalidation of {self.target} failed: {self.error.message}"
        return f"{self.deleted} key(s) deleted"


class BatchInfo(BaseModel):
    """A claimed batch as seen by the recovery tooling."""

    batch_id: str = Field(..., description="Batch identifier")
    entries: int = Field(..., ge=0, description="Queue rows in the batch")
    claimed_at: Optional[datetime] = Field(None, description="Claim timestamp")


class StageResult(BaseModel):
    """Outcome of staging changes into the invalidation queue."""

    entities: int = Field(default=0, ge=0)
    enqueued: int = Field(default=0, ge=0)
    entity_refs: List[EntityRef] = Field(default_factory=list)
