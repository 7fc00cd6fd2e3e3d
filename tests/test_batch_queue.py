"""
Tests for the staged invalidation queue.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from pilot_catalog.database.models import InvalidationQueueEntry, create_all_tables
from pilot_catalog.errors import MalformedPatternError, UpstreamQueryError
from pilot_catalog.models.enums import EntityKind
from pilot_catalog.models.invalidation import EntityRef
from pilot_catalog.services.batch_queue import BatchQueue


PRODUCT_500 = EntityRef(kind=EntityKind.PRODUCT, entity_id=500)
STORY_9 = EntityRef(kind=EntityKind.STORY, entity_id=9)


@pytest.fixture
def queue(session_factory):
    return BatchQueue(session_factory)


def stage_rows(queue, count):
    return queue.enqueue({
        EntityRef(kind=EntityKind.PRODUCT, entity_id=n): [f"/single_product:{n}:en"]
        for n in range(count)
    })


class TestEnqueue:
    """Staging concrete patterns."""

    def test_enqueue_records_provenance(self, queue, session):
        inserted = queue.enqueue({
            PRODUCT_500: {"/single_product:500:en", "/single_product:500:es"},
            STORY_9: ["/repair_stories:9:en"],
        })

        assert inserted == 3
        rows = session.query(InvalidationQueueEntry).order_by(InvalidationQueueEntry.pattern).all()
        assert [(r.pattern, r.entity_kind, r.entity_id, r.batch_id) for r in rows] == [
            ("/repair_stories:9:en", "story", 9, None),
            ("/single_product:500:en", "product", 500, None),
            ("/single_product:500:es", "product", 500, None),
        ]
        assert queue.pending_count() == 3

    def test_enqueue_nothing(self, queue):
        assert queue.enqueue({}) == 0
        assert queue.enqueue({PRODUCT_500: []}) == 0

    def test_unresolved_pattern_rejected(self, queue):
        with pytest.raises(MalformedPatternError):
            queue.enqueue({PRODUCT_500: ["/single_product:500:{locale}"]})
        assert queue.pending_count() == 0


class TestClaim:
    """Claiming, completing and releasing batches."""

    def test_claim_all(self, queue):
        stage_rows(queue, 3)

        batch = queue.claim()

        assert batch is not None
        assert len(batch) == 3
        assert len(batch.batch_id) == 32
        assert batch.patterns == {"/single_product:0:en", "/single_product:1:en", "/single_product:2:en"}
        assert queue.pending_count() == 0

    def test_claim_empty_queue(self, queue):
        assert queue.claim() is None
        assert queue.claim(limit=10) is None

    def test_claims_partition_the_queue(self, queue):
        stage_rows(queue, 10)

        first = queue.claim(limit=4)
        second = queue.claim(limit=4)
        third = queue.claim()

        ids = [{e.queue_id for e in b.entries} for b in (first, second, third)]
        assert [len(i) for i in ids] == [4, 4, 2]
        assert not (ids[0] & ids[1]) and not (ids[0] & ids[2]) and not (ids[1] & ids[2])
        assert len({first.batch_id, second.batch_id, third.batch_id}) == 3
        assert queue.claim() is None

    def test_rows_enqueued_after_claim_are_not_in_batch(self, queue):
        stage_rows(queue, 2)
        batch = queue.claim()
        queue.enqueue({PRODUCT_500: ["/single_product:500:en"]})

        assert "/single_product:500:en" not in batch.patterns
        assert queue.pending_count() == 1

    def test_complete_removes_batch_only(self, queue):
        stage_rows(queue, 2)
        batch = queue.claim()
        queue.enqueue({PRODUCT_500: ["/single_product:500:en"]})

        assert queue.complete(batch.batch_id) == 2
        assert queue.in_flight() == []
        assert queue.pending_count() == 1

    def test_release_returns_rows(self, queue):
        stage_rows(queue, 2)
        batch = queue.claim()

        assert queue.release(batch.batch_id) == 2
        assert queue.pending_count() == 2
        assert queue.claim().patterns == batch.patterns

    def test_in_flight(self, queue):
        stage_rows(queue, 3)
        batch = queue.claim(limit=2)

        in_flight = queue.in_flight()
        assert len(in_flight) == 1
        assert in_flight[0].batch_id == batch.batch_id
        assert in_flight[0].entries == 2

    def test_release_stale(self, queue, session):
        stage_rows(queue, 2)
        old = queue.claim(limit=1)
        fresh = queue.claim(limit=1)
        session.query(InvalidationQueueEntry).filter(
            InvalidationQueueEntry.batch_id == old.batch_id
        ).update({"claimed_at": datetime.now() - timedelta(hours=2)})
        session.commit()

        assert queue.release_stale(timedelta(minutes=30)) == [old.batch_id]
        assert [info.batch_id for info in queue.in_flight()] == [fresh.batch_id]
        assert queue.pending_count() == 1


@pytest.fixture
def file_queue(tmp_path):
    """Queue over a file-backed database; each thread gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'queue.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    create_all_tables(engine)
    yield BatchQueue(sessionmaker(bind=engine, expire_on_commit=False))
    engine.dispose()


def claim_together(queue, limits):
    """Run one claim per limit on its own thread, all released at once."""
    barrier = threading.Barrier(len(limits))

    def claim(limit):
        barrier.wait()
        return queue.claim(limit=limit)

    with ThreadPoolExecutor(max_workers=len(limits)) as pool:
        futures = [pool.submit(claim, limit) for limit in limits]
        return [future.result(timeout=60) for future in futures]


class TestConcurrentClaims:
    """Claims racing on separate connections."""

    def test_unlimited_claims_partition_all_rows(self, file_queue):
        stage_rows(file_queue, 20)

        batches = [b for b in claim_together(file_queue, [None, None]) if b is not None]

        ids = [{e.queue_id for e in b.entries} for b in batches]
        assert sum(len(i) for i in ids) == 20
        assert len(set().union(*ids)) == 20
        assert file_queue.pending_count() == 0

    def test_limited_claims_are_disjoint_and_cover_queue(self, file_queue):
        stage_rows(file_queue, 20)

        first, second = claim_together(file_queue, [10, 10])

        first_ids = {e.queue_id for e in first.entries}
        second_ids = {e.queue_id for e in second.entries}
        assert len(first_ids) == 10
        assert len(second_ids) == 10
        assert not first_ids & second_ids
        assert first.batch_id != second.batch_id
        assert file_queue.pending_count() == 0

    def test_many_limited_claims(self, file_queue):
        stage_rows(file_queue, 30)

        batches = claim_together(file_queue, [4] * 6)

        ids = [{e.queue_id for e in b.entries} for b in batches]
        assert [len(i) for i in ids] == [4] * 6
        assert len(set().union(*ids)) == 24
        assert file_queue.pending_count() == 6


def test_database_failure_is_upstream_error():
    session = Mock()
    session.execute.side_effect = OperationalError("UPDATE", {}, Exception("disk I/O error"))
    queue = BatchQueue(lambda: session)

    with pytest.raises(UpstreamQueryError):
        queue.claim()
    session.rollback.assert_called_once()
    session.close.assert_called_once()
