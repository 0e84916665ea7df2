"""
Tests for MutationBuffer class.

This module covers:
- Queueing local writes and FIFO retrieval
- Folding pending mutations into a change set
- Marking mutations sent and failed
- Counting and clearing
"""
import pytest

from rentcache.models import USERS
from rentcache.store.mutation_buffer import CREATED, UPDATED, MutationBuffer


class TestMutationQueue:
    """Test cases for queueing and reading mutations."""

    @pytest.mark.unit
    def test_pending_in_fifo_order(self, memory_store):
        """Test that mutations come back in the order they were written."""
        for user_id in ["u3", "u1", "u2"]:
            memory_store.write_local(USERS, {"id": user_id})

        pending = memory_store.mutations.get_pending(USERS)

        assert [mutation['record_id'] for mutation in pending] == ["u3", "u1", "u2"]
        assert all(mutation['retry_count'] == 0 for mutation in pending)
        assert all(mutation['last_error'] is None for mutation in pending)

    @pytest.mark.unit
    def test_pending_respects_limit(self, memory_store):
        """Test that the limit caps the batch size."""
        for i in range(5):
            memory_store.write_local(USERS, {"id": f"u{i}"})

        pending = memory_store.mutations.get_pending(USERS, limit=2)

        assert [mutation['record_id'] for mutation in pending] == ["u0", "u1"]

    @pytest.mark.unit
    def test_pending_payload_is_decoded(self, memory_store):
        """Test that the stored payload comes back as a dict."""
        memory_store.write_local(USERS, {"id": "u1", "name": "Ana", "driver_license": "123"})

        pending = memory_store.mutations.get_pending(USERS)

        assert pending[0]['payload'] == {"id": "u1", "name": "Ana", "driver_license": "123"}
        assert pending[0]['operation'] == UPDATED

    @pytest.mark.unit
    def test_unsupported_operation_rejected(self, memory_store):
        """Test that deletes cannot be queued locally."""
        with pytest.raises(ValueError):
            with memory_store.database.transaction() as conn:
                memory_store.mutations.add_in(conn, USERS, {"id": "u1"}, operation="deleted")

        assert memory_store.mutations.count_pending() == 0


class TestToChangeSet:
    """Test cases for folding mutations into a change set."""

    @pytest.mark.unit
    def test_latest_write_per_record_wins(self):
        """Test that repeated edits of one record push only the last one."""
        pending = [
            {'record_id': "u1", 'operation': UPDATED, 'payload': {"id": "u1", "name": "A"}},
            {'record_id': "u2", 'operation': UPDATED, 'payload': {"id": "u2", "name": "B"}},
            {'record_id': "u1", 'operation': UPDATED, 'payload': {"id": "u1", "name": "C"}},
        ]

        change_set = MutationBuffer.to_change_set(pending)

        assert change_set.created == []
        assert sorted(change_set.updated, key=lambda r: r['id']) == [
            {"id": "u1", "name": "C"},
            {"id": "u2", "name": "B"},
        ]
        assert change_set.deleted == []

    @pytest.mark.unit
    def test_locally_created_record_stays_created(self):
        """Test that a created then edited record is pushed as a create."""
        pending = [
            {'record_id': "u1", 'operation': CREATED, 'payload': {"id": "u1", "name": "A"}},
            {'record_id': "u1", 'operation': UPDATED, 'payload': {"id": "u1", "name": "B"}},
        ]

        change_set = MutationBuffer.to_change_set(pending)

        assert change_set.created == [{"id": "u1", "name": "B"}]
        assert change_set.updated == []

    @pytest.mark.unit
    def test_empty_pending(self):
        assert MutationBuffer.to_change_set([]).is_empty()


class TestMarkSentAndFailed:
    """Test cases for acknowledging and failing mutations."""

    @pytest.mark.unit
    def test_mark_sent_removes_mutations(self, memory_store):
        """Test that sent mutations leave the buffer."""
        first = memory_store.write_local(USERS, {"id": "u1"})
        memory_store.write_local(USERS, {"id": "u2"})

        removed = memory_store.mutations.mark_sent([first])

        assert removed == 1
        pending = memory_store.mutations.get_pending(USERS)
        assert [mutation['record_id'] for mutation in pending] == ["u2"]

    @pytest.mark.unit
    def test_mark_sent_empty_list(self, memory_store):
        assert memory_store.mutations.mark_sent([]) == 0

    @pytest.mark.unit
    def test_mark_failed_keeps_mutations(self, memory_store):
        """Test that failed mutations stay with their retry count and error."""
        mutation_id = memory_store.write_local(USERS, {"id": "u1"})

        memory_store.mutations.mark_failed([mutation_id], "409 conflict")
        memory_store.mutations.mark_failed([mutation_id], "timeout")

        pending = memory_store.mutations.get_pending(USERS)
        assert len(pending) == 1
        assert pending[0]['retry_count'] == 2
        assert pending[0]['last_error'] == "timeout"


class TestCountAndClear:
    """Test cases for count_pending and clear."""

    @pytest.mark.unit
    def test_count_per_collection(self, memory_store):
        """Test counting all pending mutations and per collection."""
        memory_store.write_local(USERS, {"id": "u1"})
        memory_store.write_local(USERS, {"id": "u2"})
        memory_store.write_local("cars", {"id": "c1"})

        assert memory_store.mutations.count_pending() == 3
        assert memory_store.mutations.count_pending(USERS) == 2

    @pytest.mark.unit
    def test_clear(self, memory_store):
        """Test clearing every pending mutation."""
        memory_store.write_local(USERS, {"id": "u1"})
        memory_store.write_local(USERS, {"id": "u2"})

        assert memory_store.mutations.clear() == 2
        assert memory_store.mutations.count_pending() == 0
