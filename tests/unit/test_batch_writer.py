"""
Unit tests for the document batch writer.

Runs against the in-memory store; failures are injected with mocks.
"""

from unittest.mock import patch

import pytest

from doctransfer.core.exceptions import ConfigurationError
from doctransfer.core.models import WritePolicy
from doctransfer.engine.batch_writer import DocumentBatchWriter, iter_batches
from doctransfer.store.base import InsertManyResult
from doctransfer.store.memory_store import MemoryCollection, MemoryServer


@pytest.fixture
def server():
    return MemoryServer()


@pytest.fixture
def target(server):
    return MemoryCollection(server, "shop", "users")


@pytest.fixture
def writer():
    return DocumentBatchWriter(batch_size=2)


def _ids(server, name="users"):
    return sorted(doc["_id"] for doc in server.documents("shop", name))


class TestIterBatches:

    def test_fixed_size_batches_last_shorter(self):
        docs = [{"_id": i} for i in range(5)]

        batches = list(iter_batches(docs, 2))

        assert [number for number, _ in batches] == [1, 2, 3]
        assert [len(batch) for _, batch in batches] == [2, 2, 1]
        assert [doc["_id"] for _, batch in batches for doc in batch] == [0, 1, 2, 3, 4]

    def test_empty_input_yields_nothing(self):
        assert list(iter_batches([], 100)) == []


class TestValidation:

    def test_missing_target_raises(self, writer):
        with pytest.raises(ConfigurationError):
            writer.apply(None, [{"_id": 1}], WritePolicy.MERGE)

    def test_invalid_batch_size_raises(self):
        with pytest.raises(ConfigurationError):
            DocumentBatchWriter(batch_size=0)

    def test_policy_accepts_string_value(self, writer, target, server):
        result = writer.apply(target, [{"_id": 1}], "append")

        assert result.processed == 1
        assert _ids(server) == [1]


class TestReplace:

    def test_replace_leaves_exactly_the_input(self, writer, target, server):
        server.seed("shop", "users", [{"_id": 1, "v": "old"}, {"_id": 9, "v": "stale"}])
        docs = [{"_id": 1, "v": "new"}, {"_id": 2}, {"_id": 3}]

        result = writer.apply(target, docs, WritePolicy.REPLACE)

        assert result.processed == 3
        assert result.skipped == 0
        assert result.errors == 0
        assert _ids(server) == [1, 2, 3]
        assert server.documents("shop", "users")[0]["v"] == "new"

    def test_replace_on_absent_collection(self, writer, target, server):
        result = writer.apply(target, [{"_id": 1}], WritePolicy.REPLACE)

        assert result.processed == 1
        assert _ids(server) == [1]

    def test_replace_duplicate_within_input_is_skipped(self, writer, target, server):
        docs = [{"_id": 1, "v": "a"}, {"_id": 1, "v": "b"}, {"_id": 2}]

        result = writer.apply(target, docs, WritePolicy.REPLACE)

        assert result.processed == 2
        assert result.skipped == 1
        assert result.errors == 0
        assert _ids(server) == [1, 2]
        assert any("duplicate identifier" in detail for detail in result.error_details)

    def test_replace_rejected_document_is_skipped_and_fails_batch(self, writer, target, server):
        rejected = InsertManyResult(inserted_count=1, failures=[(1, "document too large")])

        with patch.object(MemoryCollection, "insert_many", return_value=rejected):
            result = writer.apply(target, [{"_id": 1}, {"_id": 2}], WritePolicy.REPLACE)

        assert result.processed == 1
        assert result.skipped == 1
        assert result.errors == 1
        assert result.error_details[0] == "_id=2: document too large"
        assert result.error_details[1].startswith("batch 1:")

    def test_replace_collisions_alone_do_not_fail_batch(self, writer, target):
        collided = InsertManyResult(inserted_count=1, collisions=[1])

        with patch.object(MemoryCollection, "insert_many", return_value=collided):
            result = writer.apply(target, [{"_id": 1}, {"_id": 1}], WritePolicy.REPLACE)

        assert result.skipped == 1
        assert result.errors == 0

    def test_replace_one_error_per_failing_batch(self, target):
        writer = DocumentBatchWriter(batch_size=3)
        rejected = InsertManyResult(inserted_count=1, failures=[(1, "too large"), (2, "too large")])

        with patch.object(MemoryCollection, "insert_many", return_value=rejected):
            result = writer.apply(target, [{"_id": i} for i in range(6)], WritePolicy.REPLACE)

        assert result.processed == 2
        assert result.skipped == 4
        assert result.errors == 2
        assert [d for d in result.error_details if d.startswith("batch")] == [
            "batch 1: too large; too large",
            "batch 2: too large; too large",
        ]


class TestMerge:

    def test_merge_upserts_and_inserts(self, writer, target, server):
        server.seed("shop", "users", [{"_id": 1, "v": "old"}])
        docs = [{"_id": 1, "v": "new"}, {"_id": 2, "v": "b"}, {"v": "no id"}]

        result = writer.apply(target, docs, WritePolicy.MERGE)

        assert result.processed == 3
        assert result.skipped == 0
        stored = server.documents("shop", "users")
        assert len(stored) == 3
        assert {"_id": 1, "v": "new"} in stored

    def test_merge_is_idempotent(self, writer, target, server):
        docs = [{"_id": i, "v": i * 10} for i in range(5)]

        writer.apply(target, docs, WritePolicy.MERGE)
        first = server.documents("shop", "users")
        writer.apply(target, docs, WritePolicy.MERGE)

        assert server.documents("shop", "users") == first

    def test_merge_without_id_always_inserts(self, writer, target, server):
        docs = [{"v": "a"}, {"v": "a"}]

        writer.apply(target, docs, WritePolicy.MERGE)
        writer.apply(target, docs, WritePolicy.MERGE)

        assert len(server.documents("shop", "users")) == 4

    def test_merge_single_failure_is_skipped(self, writer, target, server):
        original = MemoryCollection.upsert

        def flaky(self, document):
            if document["_id"] == 2:
                raise ValueError("bad document")
            return original(self, document)

        with patch.object(MemoryCollection, "upsert", flaky):
            result = writer.apply(target, [{"_id": 1}, {"_id": 2}, {"_id": 3}], WritePolicy.MERGE)

        assert result.processed == 2
        assert result.skipped == 1
        assert result.errors == 0
        assert _ids(server) == [1, 3]


class TestAppend:

    def test_append_collision_keeps_existing(self, writer, target, server):
        server.seed("shop", "users", [{"_id": 1, "v": "kept"}])

        result = writer.apply(target, [{"_id": 1, "v": "incoming"}], WritePolicy.APPEND)

        assert result.processed == 0
        assert result.skipped == 1
        assert server.documents("shop", "users") == [{"_id": 1, "v": "kept"}]

    def test_append_shared_id_one_survives(self, writer, target, server):
        result = writer.apply(target, [{"_id": 7, "v": "a"}, {"_id": 7, "v": "b"}], WritePolicy.APPEND)

        assert result.processed == 1
        assert result.skipped == 1
        assert server.documents("shop", "users") == [{"_id": 7, "v": "a"}]

    def test_append_partial_batch_is_not_reinserted(self, target, server):
        server.seed("shop", "users", [{"_id": 2}])
        writer = DocumentBatchWriter(batch_size=10)

        with patch.object(MemoryCollection, "insert_one", wraps=target.insert_one) as insert_one:
            result = writer.apply(target, [{"_id": 1}, {"_id": 2}, {"_id": 3}], WritePolicy.APPEND)

        assert result.processed == 2
        assert result.skipped == 1
        assert result.errors == 0
        assert _ids(server) == [1, 2, 3]
        # Only the colliding document is revisited, and it is found to exist.
        insert_one.assert_not_called()

    def test_append_without_id_always_inserts(self, writer, target, server):
        docs = [{"v": "a"}, {"v": "a"}, {"v": "a"}]

        writer.apply(target, docs, WritePolicy.APPEND)
        writer.apply(target, docs, WritePolicy.APPEND)

        assert len(server.documents("shop", "users")) == 6

    def test_append_fallback_error_fails_only_that_batch(self, target, server):
        server.seed("shop", "users", [{"_id": 1}])
        writer = DocumentBatchWriter(batch_size=2)

        with patch.object(MemoryCollection, "exists", side_effect=RuntimeError("connection reset")):
            result = writer.apply(
                target,
                [{"_id": 1}, {"_id": 2}, {"_id": 3}, {"_id": 4}],
                WritePolicy.APPEND,
            )

        assert result.errors == 1
        assert result.processed == 3
        assert _ids(server) == [1, 2, 3, 4]

    def test_append_non_collision_failure_is_batch_error(self, writer, target):
        failed = InsertManyResult(inserted_count=1, failures=[(1, "validation failed")])

        with patch.object(MemoryCollection, "insert_many", return_value=failed):
            result = writer.apply(target, [{"_id": 1}, {"_id": 2}], WritePolicy.APPEND)

        assert result.processed == 1
        assert result.errors == 1
        assert "validation failed" in result.error_details[0]

    def test_append_failure_with_collisions_records_both(self, writer, target):
        mixed = InsertManyResult(inserted_count=1, collisions=[2], failures=[(1, "validation failed")])

        with patch.object(MemoryCollection, "insert_many", return_value=mixed):
            result = writer.apply(target, [{"_id": 1}, {"_id": 2}, {"_id": 3}], WritePolicy.APPEND)

        assert result.processed == 1
        assert result.skipped == 1
        assert result.errors == 1
        assert result.error_details == [
            "duplicate identifier: _id=3",
            "batch 1: validation failed",
        ]


class TestBatchFailures:

    def test_failed_batch_does_not_stop_later_batches(self, writer, target, server):
        original = MemoryCollection.insert_many
        calls = {"n": 0}

        def fail_first(self, documents):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("network blip")
            return original(self, documents)

        with patch.object(MemoryCollection, "insert_many", fail_first):
            result = writer.apply(
                target,
                [{"_id": 1}, {"_id": 2}, {"_id": 3}, {"_id": 4}, {"_id": 5}],
                WritePolicy.REPLACE,
            )

        assert result.errors == 1
        assert result.processed == 3
        assert _ids(server) == [3, 4, 5]
        assert result.error_details[0].startswith("batch 1:")

    def test_drop_failure_is_logged_not_raised(self, writer, target, server):
        with patch.object(MemoryCollection, "drop", side_effect=RuntimeError("not authorized")):
            result = writer.apply(target, [{"_id": 1}], WritePolicy.REPLACE)

        assert result.processed == 1

    def test_default_batch_size_covers_large_input(self, server, target):
        result = DocumentBatchWriter().apply(target, [{"_id": i} for i in range(250)], WritePolicy.APPEND)

        assert result.processed == 250
        assert len(server.documents("shop", "users")) == 250
