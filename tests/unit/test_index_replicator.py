"""
Unit tests for index replication.
"""

from unittest.mock import MagicMock

import pytest

from doctransfer.core.models import IndexDescriptor
from doctransfer.engine.index_replicator import IndexReplicator, secondary_indexes
from doctransfer.store.memory_store import PRIMARY_INDEX, MemoryCollection, MemoryServer


@pytest.fixture
def target():
    return MemoryCollection(MemoryServer(), "shop", "users")


def _indexes():
    return [
        PRIMARY_INDEX,
        IndexDescriptor(key=(("email", 1),), name="email_1", options={"unique": True}),
        IndexDescriptor(key=(("last", 1), ("first", -1)), name="name_idx"),
        IndexDescriptor(key=(("seen", 1),), name="ttl", options={"expireAfterSeconds": 3600}),
    ]


class TestIndexReplicator:

    def test_secondary_indexes_excludes_primary(self):
        names = [index.name for index in secondary_indexes(_indexes())]

        assert names == ["email_1", "name_idx", "ttl"]

    def test_replicates_k_minus_one(self, target):
        result = IndexReplicator().replicate(_indexes(), target)

        assert result.warning is None
        assert result.created == ["email_1", "name_idx", "ttl"]
        # PRIMARY_INDEX plus the three replicated ones
        assert len(target.list_indexes()) == 4

    def test_key_order_and_options_preserved(self, target):
        IndexReplicator().replicate(_indexes(), target)

        by_name = {index.name: index for index in target.list_indexes()}
        assert by_name["name_idx"].key == (("last", 1), ("first", -1))
        assert by_name["email_1"].options["unique"] is True
        assert by_name["ttl"].options["expireAfterSeconds"] == 3600

    def test_only_primary_is_noop(self):
        target = MagicMock()

        result = IndexReplicator().replicate([PRIMARY_INDEX], target)

        target.create_indexes.assert_not_called()
        assert result.created == []
        assert result.warning is None

    def test_failure_becomes_warning(self):
        target = MagicMock()
        target.name = "users"
        target.create_indexes.side_effect = RuntimeError("Index build failed")

        result = IndexReplicator().replicate(_indexes(), target)

        assert result.created == []
        assert "Index build failed" in result.warning
        target.create_indexes.assert_called_once()
