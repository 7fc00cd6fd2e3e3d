"""
Due-entity sources for the invalidation orchestrator.

A source decides which changes a cycle works on (identify) and how the
cycle marks them processed (commit). Two sources exist and are never
mixed within one orchestrator:

- WatermarkDueSource: rows whose ``modified_at`` is past their
  ``cache_updated_at`` watermark; commit advances the watermarks.
- QueueDueSource: a claimed batch of the staging queue; commit deletes
  the batch.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Set, runtime_checkable

from sqlalchemy import and_, bindparam, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database.models import TRACKED_MODELS
from ..errors import UpstreamQueryError
from ..models.enums import EntityKind
from ..models.invalidation import ChangeRecord
from .batch_queue import BatchQueue

logger = logging.getLogger(__name__)


@dataclass
class DueSet:
    """
    Work identified for one cycle.

    ``patterns`` is set when the source already holds concrete patterns
    (staged mode); otherwise they are generated from ``records``.
    """
    records: List[ChangeRecord] = field(default_factory=list)
    patterns: Optional[Set[str]] = None
    batch_id: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.records) or bool(self.patterns)


@runtime_checkable
class DueEntitySource(Protocol):
    """Identify/commit pair used by the orchestrator."""

    @property
    def target(self) -> str:
        ...

    def identify(self) -> DueSet:
        ...

    def commit(self, due: DueSet) -> None:
        ...


class WatermarkDueSource:
    """
    Changes detected by comparing ``modified_at`` with ``cache_updated_at``.

    Commit writes each row's watermark to the ``changed_at`` seen at
    identify time, so a row modified again during the cycle stays due.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        limit: int = 500,
        lookback: Optional[timedelta] = None,
        kinds: Optional[Sequence[EntityKind]] = None,
    ):
        """
        Args:
            session_factory: Callable returning a new SQLAlchemy session
            limit: Maximum due rows per tracked table per cycle
            lookback: Only consider changes newer than now - lookback
            kinds: Tracked entity kinds (default: all)
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.session_factory = session_factory
        self.limit = limit
        self.lookback = lookback
        self.kinds = list(kinds) if kinds else list(TRACKED_MODELS)

    @property
    def target(self) -> str:
        window = f", last {self.lookback}" if self.lookback else ""
        return f"updated {'/'.join(k.value for k in self.kinds)} rows (limit {self.limit}{window})"

    def identify(self) -> DueSet:
        records: List[ChangeRecord] = []
        session = self.session_factory()
        try:
            for kind in self.kinds:
                model, pk = TRACKED_MODELS[kind]
                query = session.query(pk, model.modified_at).filter(
                    or_(
                        model.cache_updated_at.is_(None),
                        model.modified_at > model.cache_updated_at,
                    )
                )
                if self.lookback is not None:
                    query = query.filter(model.modified_at >= datetime.now() - self.lookback)
                rows = query.order_by(model.modified_at, pk).limit(self.limit).all()
                records.extend(
                    ChangeRecord(kind=kind, entity_id=entity_id, changed_at=modified_at)
                    for entity_id, modified_at in rows
                )
        except SQLAlchemyError as e:
            logger.error(f"Due-entity query failed: {e}")
            raise UpstreamQueryError(f"Could not list changed entities: {e}") from e
        finally:
            session.close()

        logger.info(f"Identified {len(records)} due entities for {self.target}")
        return DueSet(records=records)

    def commit(self, due: DueSet) -> None:
        by_kind: Dict[EntityKind, List[dict]] = defaultdict(list)
        for record in due.records:
            if record.changed_at is not None:
                by_kind[record.kind].append({"b_id": record.entity_id, "b_changed": record.changed_at})

        if not by_kind:
            return

        session = self.session_factory()
        try:
            for kind, params in by_kind.items():
                model, pk = TRACKED_MODELS[kind]
                table = model.__table__
                stmt = (
                    table.update()
                    .where(and_(
                        table.c[pk.key] == bindparam("b_id"),
                        or_(
                            table.c.cache_updated_at.is_(None),
                            table.c.cache_updated_at < bindparam("b_changed"),
                        ),
                    ))
                    .values(cache_updated_at=bindparam("b_changed"))
                )
                session.connection().execute(stmt, params)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Watermark update failed: {e}")
            raise UpstreamQueryError(f"Could not advance cache watermarks: {e}") from e
        finally:
            session.close()

        logger.info(f"Advanced watermarks for {sum(len(p) for p in by_kind.values())} row(s)")


class QueueDueSource:
    """Claimed batches of the staging queue."""

    def __init__(self, queue: BatchQueue, claim_limit: Optional[int] = None):
        self.queue = queue
        self.claim_limit = claim_limit

    @property
    def target(self) -> str:
        limit = f" (limit {self.claim_limit})" if self.claim_limit else ""
        return f"staged invalidation queue{limit}"

    def identify(self) -> DueSet:
        batch = self.queue.claim(limit=self.claim_limit)
        if batch is None:
            return DueSet()
        records = [
            ChangeRecord(kind=ref.kind, entity_id=ref.entity_id)
            for ref in sorted(batch.entities, key=lambda r: (r.kind.value, r.entity_id))
        ]
        return DueSet(records=records, patterns=batch.patterns, batch_id=batch.batch_id)

    def commit(self, due: DueSet) -> None:
        if due.batch_id is not None:
            self.queue.complete(due.batch_id)
