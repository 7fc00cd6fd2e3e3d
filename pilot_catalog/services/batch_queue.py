"""
Durable staging queue for concrete invalidation patterns.

Rows of ``cache_invalidation_queue`` hold one concrete pattern each,
tagged with the entity that produced it. Processing claims every
unclaimed row under a fresh batch id, evicts, then deletes the batch.

Claiming is one guarded UPDATE (``batch_id IS NULL``), so concurrent
claims partition the queue instead of sharing rows. A batch whose
eviction failed stays claimed; ``release`` and ``release_stale`` return
stuck batches to the queue.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set
from uuid import uuid4

from sqlalchemy import func, select, update, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database.models import InvalidationQueueEntry
from ..errors import MalformedPatternError, UpstreamQueryError
from ..cache.keys import is_concrete_pattern
from ..models.enums import EntityKind
from ..models.invalidation import BatchInfo, EntityRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueuedPattern:
    """A queue row as seen by the processing side."""
    queue_id: int
    pattern: str
    entity: EntityRef


@dataclass
class Batch:
    """Rows claimed under one batch id."""
    batch_id: str
    entries: List[QueuedPattern] = field(default_factory=list)
    claimed_at: Optional[datetime] = None

    @property
    def patterns(self) -> Set[str]:
        return {entry.pattern for entry in self.entries}

    @property
    def entities(self) -> Set[EntityRef]:
        return {entry.entity for entry in self.entries}

    def __len__(self) -> int:
        return len(self.entries)


class BatchQueue:
    """Staged-mode invalidation queue backed by the relational store."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @contextmanager
    def _session_scope(self):
        """Session with commit on success, rollback and UpstreamQueryError on failure."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Invalidation queue statement failed: {e}")
            raise UpstreamQueryError(f"Invalidation queue unavailable: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def enqueue(self, patterns_by_entity: Dict[EntityRef, Iterable[str]]) -> int:
        """
        Stage concrete patterns with their provenance.

        Returns:
            int: Rows inserted

        Raises:
            MalformedPatternError: If a pattern still has a locale placeholder
        """
        rows = []
        now = datetime.now()
        for ref, patterns in patterns_by_entity.items():
            for pattern in sorted(set(patterns)):
                if not is_concrete_pattern(pattern):
                    raise MalformedPatternError(f"Refusing to stage unresolved pattern {pattern}")
                rows.append(InvalidationQueueEntry(
                    pattern=pattern,
                    entity_kind=ref.kind.value,
                    entity_id=ref.entity_id,
                    enqueued_at=now,
                ))
        if not rows:
            return 0

        with self._session_scope() as session:
            session.add_all(rows)

        logger.info(f"Staged {len(rows)} pattern(s) for {len(patterns_by_entity)} entities")
        return len(rows)

    def claim(self, limit: Optional[int] = None) -> Optional[Batch]:
        """
        Claim unclaimed rows under a fresh batch id.

        Args:
            limit: Claim at most this many rows (oldest first)

        Returns:
            Batch or None when nothing was unclaimed
        """
        batch_id = uuid4().hex
        claimed_at = datetime.now()
        Entry = InvalidationQueueEntry

        with self._session_scope() as session:
            stmt = (
                update(Entry)
                .where(Entry.batch_id.is_(None))
                .values(batch_id=batch_id, claimed_at=claimed_at)
                .execution_options(synchronize_session=False)
            )
            if limit is None:
                claimed = session.execute(stmt).rowcount
            else:
                # rows taken by a concurrent claim between the select and the
                # guarded update are skipped; select again for the shortfall
                claimed = 0
                while claimed < limit:
                    candidate_ids = session.execute(
                        select(Entry.queue_id)
                        .where(Entry.batch_id.is_(None))
                        .order_by(Entry.queue_id)
                        .limit(limit - claimed)
                    ).scalars().all()
                    if not candidate_ids:
                        break
                    claimed += session.execute(
                        stmt.where(Entry.queue_id.in_(candidate_ids))
                    ).rowcount

            if not claimed:
                return None

            rows = session.execute(
                select(Entry.queue_id, Entry.pattern, Entry.entity_kind, Entry.entity_id)
                .where(Entry.batch_id == batch_id)
                .order_by(Entry.queue_id)
            ).all()

        entries = [
            QueuedPattern(
                queue_id=queue_id,
                pattern=pattern,
                entity=EntityRef(kind=EntityKind(kind), entity_id=entity_id),
            )
            for queue_id, pattern, kind, entity_id in rows
        ]
        logger.info(f"Claimed batch {batch_id} with {len(entries)} row(s)")
        return Batch(batch_id=batch_id, entries=entries, claimed_at=claimed_at)

    def complete(self, batch_id: str) -> int:
        """Delete every row of a batch after its eviction succeeded."""
        with self._session_scope() as session:
            removed = session.execute(
                delete(InvalidationQueueEntry)
                .where(InvalidationQueueEntry.batch_id == batch_id)
                .execution_options(synchronize_session=False)
            ).rowcount
        logger.info(f"Completed batch {batch_id}: {removed} row(s) removed")
        return removed

    def release(self, batch_id: str) -> int:
        """Return a stuck batch's rows to the unclaimed pool."""
        with self._session_scope() as session:
            released = session.execute(
                update(InvalidationQueueEntry)
                .where(InvalidationQueueEntry.batch_id == batch_id)
                .values(batch_id=None, claimed_at=None)
                .execution_options(synchronize_session=False)
            ).rowcount
        logger.warning(f"Released batch {batch_id}: {released} row(s) unclaimed")
        return released

    def in_flight(self) -> List[BatchInfo]:
        """Claimed batches, oldest claim first."""
        Entry = InvalidationQueueEntry
        with self._session_scope() as session:
            rows = session.execute(
                select(Entry.batch_id, func.count(Entry.queue_id), func.min(Entry.claimed_at))
                .where(Entry.batch_id.isnot(None))
                .group_by(Entry.batch_id)
            ).all()
        batches = [
            BatchInfo(batch_id=batch_id, entries=count, claimed_at=claimed_at)
            for batch_id, count, claimed_at in rows
        ]
        return sorted(batches, key=lambda b: (b.claimed_at or datetime.min, b.batch_id))

    def release_stale(self, older_than: timedelta) -> List[str]:
        """Release batches claimed longer ago than ``older_than``."""
        cutoff = datetime.now() - older_than
        stale = [
            info.batch_id for info in self.in_flight()
            if info.claimed_at is not None and info.claimed_at < cutoff
        ]
        for batch_id in stale:
            self.release(batch_id)
        return stale

    def pending_count(self) -> int:
        """Unclaimed rows."""
        with self._session_scope() as session:
            return session.execute(
                select(func.count(InvalidationQueueEntry.queue_id))
                .where(InvalidationQueueEntry.batch_id.is_(None))
            ).scalar_one()
