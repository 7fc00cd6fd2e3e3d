"""
Invalidation orchestrator.

One cycle runs four steps in order:

1. identify  - ask the due-entity source for due work
2. generate  - derive abstract patterns and expand them per locale
3. evict     - delete every matching cache key
4. commit    - advance watermarks or delete the claimed batch

Commit only runs after eviction succeeded. A failure at any step ends the
cycle without committing, so the same work is due again next cycle: an
entity may be invalidated more than once, never less than once.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional, Set

from sqlalchemy.orm import Session

from ..cache.evictor import CacheEvictor
from ..errors import InvalidationError
from ..models.enums import CycleStage
from ..models.invalidation import ChangeRecord, CycleErrorModel, CycleResult, EntityRef, StageResult
from .batch_queue import BatchQueue
from .due_sources import DueEntitySource, DueSet
from .locale_expander import LocaleExpander
from .pattern_generator import PatternGenerator

logger = logging.getLogger(__name__)


class InvalidationOrchestrator:
    """
    Runs invalidation cycles against one due-entity source.

    All collaborators are passed in; the orchestrator owns none of their
    lifecycles.
    """

    def __init__(
        self,
        source: DueEntitySource,
        session_factory: Callable[[], Session],
        evictor: Optional[CacheEvictor],
        expander: LocaleExpander,
        listing_depth: int = 2,
        max_hops: int = 50,
        queue: Optional[BatchQueue] = None,
    ):
        """
        Args:
            source: Where due work comes from and how it is committed
            session_factory: Callable returning a session for pattern generation
            evictor: Cache evictor bound to the key store, required for ``run_cycle``
            expander: Locale expander over the configured locales
            listing_depth: Category depth of listing views
            max_hops: Supersession chain bound
            queue: Staging queue, required for ``stage_changes``
        """
        self.source = source
        self.session_factory = session_factory
        self.evictor = evictor
        self.expander = expander
        self.listing_depth = listing_depth
        self.max_hops = max_hops
        self.queue = queue

    def _generate(self, records: Iterable[ChangeRecord]) -> Dict[EntityRef, Set[str]]:
        """Concrete patterns per entity."""
        session = self.session_factory()
        try:
            generator = PatternGenerator(
                session, listing_depth=self.listing_depth, max_hops=self.max_hops
            )
            abstract = generator.generate(records)
        finally:
            session.close()
        return {ref: self.expander.expand_all(patterns) for ref, patterns in abstract.items()}

    def concrete_patterns(self, due: DueSet) -> Set[str]:
        """Every concrete pattern a due set invalidates."""
        if due.patterns is not None:
            return self.expander.expand_all(due.patterns)
        patterns: Set[str] = set()
        for entity_patterns in self._generate(due.records).values():
            patterns |= entity_patterns
        return patterns

    async def run_cycle(self) -> CycleResult:
        """
        Run one identify, generate, evict, commit cycle.

        Returns:
            CycleResult: Counts on success, typed error on failure

        Raises:
            RuntimeError: If the orchestrator was built without an evictor
        """
        if self.evictor is None:
            raise RuntimeError("run_cycle requires a cache evictor")

        result = CycleResult(target=self.source.target)
        stage = CycleStage.IDENTIFY

        try:
            due = self.source.identify()
            result.entities = len(due.records)
            result.batch_id = due.batch_id

            if not due:
                logger.info(f"No due entities for {self.source.target}")
                result.finished_at = datetime.now()
                return result

            stage = CycleStage.GENERATE
            patterns = self.concrete_patterns(due)
            result.patterns = len(patterns)

            stage = CycleStage.EVICT
            if patterns:
                result.deleted = await self.evictor.evict(patterns)

            stage = CycleStage.COMMIT
            self.source.commit(due)
            result.committed = True

        except InvalidationError as e:
            level = logging.WARNING if e.retryable else logging.ERROR
            logger.log(
                level,
                f"Invalidation cycle for {self.source.target} aborted at {stage.value}: {e.message}"
            )
            result.error = CycleErrorModel(
                kind=e.kind, retryable=e.retryable, message=e.message, stage=stage
            )

        result.finished_at = datetime.now()
        if result.succeeded:
            logger.info(
                f"Invalidation cycle for {self.source.target}: {result.entities} entities, "
                f"{result.patterns} patterns, {result.summary}"
            )
        return result

    def stage_changes(self, changes: Iterable[ChangeRecord]) -> StageResult:
        """
        Generate and stage concrete patterns for later batch processing.

        Raises:
            RuntimeError: If the orchestrator has no staging queue
            UpstreamQueryError: If generation or the insert fails
        """
        if self.queue is None:
            raise RuntimeError("stage_changes requires a staging queue")

        records = list(changes)
        if not records:
            return StageResult()

        by_entity = {ref: patterns for ref, patterns in self._generate(records).items() if patterns}
        enqueued = self.queue.enqueue(by_entity)
        return StageResult(
            entities=len({record.ref for record in records}),
            enqueued=enqueued,
            entity_refs=sorted(by_entity, key=lambda r: (r.kind.value, r.entity_id)),
        )
