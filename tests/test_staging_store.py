"""
Tests for the staging store: ordering, idempotent marking, stats and retention.
"""

from datetime import datetime, timedelta, timezone

import pytest

from podgraph.models import StagedKind, StagedStatus

from conftest import staged_entity, staged_relationship


class TestEnqueueDequeue:
    def test_dequeue_is_oldest_first(self, staging):
        staging.enqueue_entities([
            staged_entity("Late", extracted_at="2024-01-03T00:00:00+00:00"),
            staged_entity("Early", extracted_at="2024-01-01T00:00:00+00:00"),
            staged_entity("Middle", extracted_at="2024-01-02T00:00:00+00:00"),
        ])

        rows = staging.dequeue(StagedKind.ENTITY, 10)
        assert [r.name for r in rows] == ["Early", "Middle", "Late"]

    def test_ties_keep_insertion_order(self, staging):
        ts = "2024-01-01T00:00:00+00:00"
        staging.enqueue_entities([staged_entity(n, extracted_at=ts) for n in ("A1", "B2", "C3")])

        rows = staging.dequeue(StagedKind.ENTITY, 10)
        assert [r.name for r in rows] == ["A1", "B2", "C3"]

    def test_limit(self, staging):
        staging.enqueue_entities([staged_entity(f"Company {i}") for i in range(5)])
        assert len(staging.dequeue(StagedKind.ENTITY, 2)) == 2

    def test_relationships_round_trip_fields(self, staging):
        rel = staged_relationship("Tim Cook", "Apple", "CEO of Apple", episode_id="ep-9")
        staging.enqueue_relationships([rel])

        (row,) = staging.dequeue("relationship", 10)
        assert row.id == rel.id
        assert row.source_name == "Tim Cook"
        assert row.target_name == "Apple"
        assert row.description == "CEO of Apple"
        assert row.episode_id == "ep-9"
        assert row.processed is False

    def test_empty_enqueue(self, staging):
        assert staging.enqueue_entities([]) == 0


class TestMarkProcessed:
    def test_marked_rows_leave_the_pending_queue(self, staging):
        rows = [staged_entity("Apple"), staged_entity("Microsoft")]
        staging.enqueue_entities(rows)

        staging.mark_processed(StagedKind.ENTITY, [rows[0].id])

        pending = staging.dequeue(StagedKind.ENTITY, 10)
        assert [r.name for r in pending] == ["Microsoft"]
        (done,) = staging.dequeue(StagedKind.ENTITY, 10, processed=True)
        assert done.status == StagedStatus.RESOLVED.value
        assert done.processed_at is not None

    def test_marking_is_idempotent(self, staging):
        row = staged_entity("Apple")
        staging.enqueue_entities([row])

        assert staging.mark_processed(StagedKind.ENTITY, [row.id]) == 1
        assert staging.mark_processed(StagedKind.ENTITY, [row.id]) == 0

    def test_second_mark_does_not_overwrite_outcome(self, staging):
        row = staged_relationship("A Corp", "B Corp")
        staging.enqueue_relationships([row])

        staging.mark_processed(StagedKind.RELATIONSHIP, [row.id], StagedStatus.UNRESOLVED, "missing entity")
        staging.mark_processed(StagedKind.RELATIONSHIP, [row.id], StagedStatus.RESOLVED, "created")

        (done,) = staging.dequeue(StagedKind.RELATIONSHIP, 10, processed=True)
        assert done.status == StagedStatus.UNRESOLVED.value
        assert done.resolution_note == "missing entity"

    def test_pending_is_not_a_terminal_status(self, staging):
        row = staged_entity("Apple")
        staging.enqueue_entities([row])
        with pytest.raises(ValueError):
            staging.mark_processed(StagedKind.ENTITY, [row.id], StagedStatus.PENDING)


class TestStatsAndRetention:
    def test_stats(self, staging):
        entities = [staged_entity("Apple"), staged_entity("Microsoft")]
        rels = [staged_relationship("Apple", "Microsoft"), staged_relationship("X Corp", "Y Corp")]
        staging.enqueue_entities(entities)
        staging.enqueue_relationships(rels)
        staging.mark_processed(StagedKind.ENTITY, [entities[0].id])
        staging.mark_processed(StagedKind.RELATIONSHIP, [rels[1].id], StagedStatus.UNRESOLVED, "missing entity")

        stats = staging.stats()
        assert stats["pendingEntities"] == 1
        assert stats["processedEntities"] == 1
        assert stats["pendingRelationships"] == 1
        assert stats["processedRelationships"] == 1
        assert stats["unresolvedRelationships"] == 1
        assert stats["unresolvedEntities"] == 0

    def test_empty_stats(self, staging):
        assert staging.stats()["pendingEntities"] == 0

    def test_purge_removes_only_old_processed_rows(self, staging):
        old = (datetime.now(timezone.utc) - timedelta(days=40)).isoformat()
        old_done = staged_entity("Old Done", extracted_at=old)
        old_pending = staged_entity("Old Pending", extracted_at=old)
        new_done = staged_entity("New Done")
        staging.enqueue_entities([old_done, old_pending, new_done])
        staging.mark_processed(StagedKind.ENTITY, [old_done.id, new_done.id])

        removed = staging.purge_older_than_days(30)

        assert removed == {"entitiesRemoved": 1, "relationshipsRemoved": 0}
        assert [r.name for r in staging.dequeue(StagedKind.ENTITY, 10)] == ["Old Pending"]
        assert [r.name for r in staging.dequeue(StagedKind.ENTITY, 10, processed=True)] == ["New Done"]
