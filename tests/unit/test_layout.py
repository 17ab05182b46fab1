"""
Unit tests for the archive file layout.
"""

import json
from datetime import datetime, timezone

import pytest
from bson import ObjectId

from doctransfer.core.exceptions import CollectionError
from doctransfer.core.models import CollectionSnapshot, IndexDescriptor, TransferMetadata
from doctransfer.engine.layout import (
    discover_document_files,
    is_document_file,
    read_document_file,
    read_index_file,
    read_metadata,
    write_document_file,
    write_index_file,
    write_metadata,
)


class TestDocumentFiles:

    def test_is_document_file(self):
        assert is_document_file("users.json")
        assert not is_document_file("users_indexes.json")
        assert not is_document_file("metadata.json")
        assert not is_document_file("notes.txt")

    def test_discover_keeps_order(self):
        names = ["metadata.json", "b.json", "b_indexes.json", "a.json", "readme.md"]

        assert discover_document_files(names) == ["b.json", "a.json"]

    def test_bson_values_survive(self, tmp_path):
        oid = ObjectId()
        when = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        snapshot = CollectionSnapshot.capture("users", [{"_id": oid, "created": when, "n": 1}])

        size = write_document_file(tmp_path, snapshot)
        name, loaded = read_document_file(tmp_path / "users.json")

        assert size == (tmp_path / "users.json").stat().st_size
        assert name == "users"
        assert loaded.documents[0]["_id"] == oid
        assert loaded.documents[0]["created"] == when
        assert loaded.count == 1

    def test_plain_json_loads_unchanged(self, tmp_path):
        path = tmp_path / "users.json"
        path.write_text(json.dumps({"collection": "people", "documents": [{"_id": 1, "name": "a"}]}))

        name, snapshot = read_document_file(path)

        assert name == "people"
        assert snapshot.documents == ({"_id": 1, "name": "a"},)

    def test_name_falls_back_to_stem_and_bare_list(self, tmp_path):
        path = tmp_path / "orders.json"
        path.write_text(json.dumps([{"_id": 1}, {"_id": 2}]))

        name, snapshot = read_document_file(path)

        assert name == "orders"
        assert snapshot.count == 2

    def test_non_list_documents_raise(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"collection": "bad", "documents": {"_id": 1}}))

        with pytest.raises(CollectionError, match="Invalid data format"):
            read_document_file(path)

    def test_unparseable_file_raises(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with pytest.raises(CollectionError):
            read_document_file(path)

    @pytest.mark.parametrize("value", [{"$oid": "xyz"}, {"$numberDecimal": "abc"}])
    def test_malformed_extended_json_raises_collection_error(self, tmp_path, value):
        path = tmp_path / "orders.json"
        path.write_text(json.dumps({"collection": "orders", "documents": [{"_id": value}]}))

        with pytest.raises(CollectionError, match="Cannot read orders.json") as excinfo:
            read_document_file(path)

        assert excinfo.value.collection == "orders"


class TestIndexFiles:

    def test_index_file_round_trip(self, tmp_path):
        indexes = [
            IndexDescriptor(key=(("_id", 1),), name="_id_"),
            IndexDescriptor(key=(("b", 1), ("a", -1)), name="b_a", options={"sparse": True}),
        ]

        write_index_file(tmp_path, "users", indexes)
        loaded = read_index_file(tmp_path / "users_indexes.json")

        assert [index.name for index in loaded] == ["_id_", "b_a"]
        assert loaded[1].key == (("b", 1), ("a", -1))
        assert dict(loaded[1].options) == {"sparse": True}


class TestMetadata:

    def test_metadata_round_trip(self, tmp_path):
        metadata = TransferMetadata(database="shop", collections=["users"], server_version="7.0.1")
        metadata.record_collection("users", 3, 3, 120)
        metadata.total_documents = 3
        metadata.export_duration = 42

        write_metadata(tmp_path, metadata)
        loaded = read_metadata(tmp_path)

        assert loaded.database == "shop"
        assert loaded.total_documents == 3
        assert loaded.server_version == "7.0.1"
        assert loaded.export_stats["users"]["file_size"] == 120

    def test_missing_metadata_is_none(self, tmp_path):
        assert read_metadata(tmp_path) is None

    def test_unreadable_metadata_is_ignored(self, tmp_path):
        (tmp_path / "metadata.json").write_text("{oops")

        assert read_metadata(tmp_path) is None
