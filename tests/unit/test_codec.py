"""
Unit tests for the document codec.

Tests cover:
- Merged and boxed encodings
- Tombstones and never-created documents
- Reserved-field collisions
- Read-time projection
"""

import pytest

from dbaas.docstore.store import codec
from dbaas.docstore.store.types import Snapshot


class TestEncode:
    """Tests for codec.encode."""

    def test_mapping_data_is_merged(self):
        """User fields of mapping data sit at the top level."""
        snapshot = Snapshot(id="a", version=3, type="json0", data={"title": "Hi"})

        record = codec.encode("a", snapshot, "op3")

        assert record == {
            "title": "Hi",
            "_enc": "merged",
            "_id": "a",
            "_type": "json0",
            "_v": 3,
            "_m": None,
            "_o": "op3",
        }

    @pytest.mark.parametrize("data", ["hello", 42, [1, 2, 3], None])
    def test_non_mapping_data_is_boxed(self, data):
        """Scalars and sequences go under _data."""
        record = codec.encode("b", Snapshot(id="b", version=1, type="text", data=data))

        assert record["_enc"] == "boxed"
        assert record["_data"] == data

    def test_reserved_key_collision_is_boxed(self):
        """A user field named like a reserved field forces boxing."""
        data = {"_v": "user value", "title": "x"}
        record = codec.encode("c", Snapshot(id="c", version=2, type="json0", data=data))

        assert record["_enc"] == "boxed"
        assert record["_v"] == 2
        assert record["_data"] == data

    def test_non_string_keys_are_boxed(self):
        record = codec.encode("c", Snapshot(id="c", version=1, type="json0", data={1: "x"}))
        assert record["_enc"] == "boxed"

    @pytest.mark.parametrize("key", ["$set", "a\0b"])
    def test_engine_unsafe_keys_are_boxed(self, key):
        """Keys the query engine would reject or read as operators stay boxed."""
        data = {key: 1, "title": "x"}
        record = codec.encode("c", Snapshot(id="c", version=1, type="json0", data=data))

        assert record["_enc"] == "boxed"
        assert key not in record
        assert codec.decode(record).data == data

    def test_tombstone_has_no_data(self):
        """Deleted documents keep only bookkeeping fields."""
        record = codec.encode("d", Snapshot(id="d", version=4, type=None, data={"x": 1}), "op4")

        assert record == {"_id": "d", "_type": None, "_v": 4, "_m": None, "_o": "op4"}

    def test_data_is_copied(self):
        """Encoding never aliases the caller's data."""
        data = {"title": "Hi"}
        record = codec.encode("a", Snapshot(id="a", version=1, type="json0", data=data))
        record["title"] = "changed"

        assert data == {"title": "Hi"}


class TestDecode:
    """Tests for codec.decode."""

    def test_missing_record(self):
        """No record means a never-created, version-0 document."""
        snapshot = codec.decode(None, "ghost")

        assert snapshot == Snapshot(id="ghost", version=0)
        assert not snapshot.is_tombstone

    def test_round_trip_merged(self):
        snapshot = Snapshot(
            id="a", version=2, type="json0", data={"n": [1, {"x": None}]},
            metadata={"mtime": 5}, op_link="op2",
        )
        assert codec.decode(codec.encode("a", snapshot, "op2")) == snapshot

    def test_round_trip_boxed_collision(self):
        snapshot = Snapshot(id="a", version=1, type="json0", data={"_id": "evil"}, op_link="op1")
        assert codec.decode(codec.encode("a", snapshot, "op1")) == snapshot

    def test_tombstone(self):
        snapshot = codec.decode({"_id": "d", "_type": None, "_v": 4, "_m": None, "_o": "x"})

        assert snapshot.is_tombstone
        assert snapshot.data is None
        assert snapshot.version == 4

    def test_legacy_record_without_encoding_tag(self):
        """Records without _enc are decoded by the presence of _data."""
        boxed = codec.decode({"_id": "a", "_type": "text", "_v": 1, "_data": "hi"})
        merged = codec.decode({"_id": "b", "_type": "json0", "_v": 1, "title": "x"})

        assert boxed.data == "hi"
        assert merged.data == {"title": "x"}


class TestProject:
    """Tests for codec.project."""

    @pytest.fixture
    def snapshot(self):
        return Snapshot(
            id="a", version=3, type="json0", data={"a": 1, "b": 2, "c": 3},
            metadata={"m": 1}, op_link="op3",
        )

    def test_keeps_requested_fields(self, snapshot):
        projected = codec.project(snapshot, ["a", "c", "missing"])

        assert projected.data == {"a": 1, "c": 3}
        assert projected.version == 3
        assert projected.metadata == {"m": 1}
        assert projected.op_link == "op3"
        assert snapshot.data == {"a": 1, "b": 2, "c": 3}

    def test_no_fields_is_identity(self, snapshot):
        assert codec.project(snapshot, None) is snapshot
        assert codec.project(snapshot, []) is snapshot

    def test_non_mapping_data_unchanged(self):
        snapshot = Snapshot(id="t", version=1, type="text", data="hello")
        assert codec.project(snapshot, ["a"]).data == "hello"
