"""
Unit tests for key-value backends.

Tests cover:
- The KeyValueBackend contract, run against every implementation,
  including rejection of records JSON cannot encode
- In-memory testing helpers
- SQLite persistence across reconnects
- S3 error mapping and batched deletes (fake client)
"""

import tempfile
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from dbaas.docstore.backend import (
    BackendConnectionError,
    BackendError,
    BackendSerializationError,
    InMemoryBackend,
    KeyValueBackend,
    S3Backend,
    SqliteBackend,
    create_backend,
)
from dbaas.docstore.backend import s3 as s3_module
from dbaas.docstore.config import BackendKind, S3Config, SqliteConfig, StoreConfig


class FakeBody:
    def __init__(self, data: bytes):
        self._data = data

    async def read(self) -> bytes:
        return self._data


class FakePaginator:
    def __init__(self, objects: dict, page_size: int):
        self._objects = objects
        self._page_size = page_size

    async def paginate(self, Bucket, Prefix, Delimiter=None):
        keys = sorted(k for k in self._objects if k.startswith(Prefix))
        if Delimiter:
            keys = [k for k in keys if Delimiter not in k[len(Prefix):]]
        for start in range(0, len(keys), self._page_size):
            yield {"Contents": [{"Key": k} for k in keys[start:start + self._page_size]]}


class FakeS3Client:
    """Dict-backed stand-in for an aiobotocore S3 client."""

    def __init__(self, page_size: int = 2):
        self.objects: dict[str, bytes] = {}
        self.page_size = page_size
        self.delete_batches: list[int] = []

    async def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": FakeBody(self.objects[Key])}

    async def put_object(self, Bucket, Key, Body, ContentType=None):
        self.objects[Key] = Body

    async def delete_objects(self, Bucket, Delete):
        self.delete_batches.append(len(Delete["Objects"]))
        for obj in Delete["Objects"]:
            self.objects.pop(obj["Key"], None)

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return FakePaginator(self.objects, self.page_size)


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(params=["memory", "sqlite", "s3"])
def backend(request, data_dir):
    """One unconnected backend of each kind."""
    if request.param == "memory":
        return InMemoryBackend()
    if request.param == "sqlite":
        return SqliteBackend(SqliteConfig(path=f"{data_dir}/kv.db", wal_mode=False))
    return S3Backend(S3Config(bucket="test"), client=FakeS3Client())


class TestBackendContract:
    """Behavior every KeyValueBackend must share."""

    @pytest.mark.asyncio
    async def test_satisfies_protocol(self, backend):
        """Implementations are recognized as KeyValueBackend."""
        assert isinstance(backend, KeyValueBackend)

    @pytest.mark.asyncio
    async def test_connect_close(self, backend):
        """Test connection lifecycle."""
        assert not backend.is_connected

        await backend.connect()
        assert backend.is_connected

        await backend.close()
        assert not backend.is_connected

    @pytest.mark.asyncio
    async def test_requires_connection(self, backend):
        """Operations fail if not connected."""
        with pytest.raises(BackendConnectionError):
            await backend.get("p", "a")
        with pytest.raises(BackendConnectionError):
            await backend.set("p", "a", {"x": 1})

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, backend):
        """Missing items read as None."""
        await backend.connect()

        assert await backend.get("p", "missing") is None
        assert await backend.list_item_ids("never-written") == []

    @pytest.mark.asyncio
    async def test_set_get_overwrite(self, backend):
        """set() replaces the whole record."""
        await backend.connect()

        await backend.set("p", "a", {"x": 1, "nested": {"y": [1, 2]}})
        assert await backend.get("p", "a") == {"x": 1, "nested": {"y": [1, 2]}}

        await backend.set("p", "a", {"z": None})
        assert await backend.get("p", "a") == {"z": None}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [datetime(2024, 1, 1), object(), {"a", "b"}])
    async def test_rejects_unserializable_record(self, backend, value):
        """Every backend refuses records JSON cannot encode, and stores nothing."""
        await backend.connect()

        with pytest.raises(BackendSerializationError):
            await backend.set("p", "a", {"x": value})
        assert await backend.get("p", "a") is None

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, backend):
        """Mutating a returned record does not change stored state."""
        await backend.connect()
        record = {"tags": ["a"]}
        await backend.set("p", "a", record)

        record["tags"].append("mutated")
        fetched = await backend.get("p", "a")
        fetched["tags"].append("mutated")

        assert await backend.get("p", "a") == {"tags": ["a"]}

    @pytest.mark.asyncio
    async def test_list_item_ids_sorted(self, backend):
        """Item ids come back in ascending order."""
        await backend.connect()
        for item in ["c", "a", "b"]:
            await backend.set("p", item, {"id": item})

        assert await backend.list_item_ids("p") == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_partitions_are_isolated(self, backend):
        """A partition never lists items of a partition sharing its prefix."""
        await backend.connect()
        await backend.set("ns/ops", "1", {"v": 1})
        await backend.set("ns/ops/doc", "1", {"v": 2})

        assert await backend.list_item_ids("ns/ops") == ["1"]
        assert (await backend.get("ns/ops", "1")) == {"v": 1}

    @pytest.mark.asyncio
    async def test_clear_prefix(self, backend):
        """clear(prefix) only removes partitions under the prefix."""
        await backend.connect()
        await backend.set("store/users/docs", "a", {"x": 1})
        await backend.set("store/users/ops/a", "1", {"x": 1})
        await backend.set("store/posts/docs", "b", {"x": 2})
        await backend.set("other/users/docs", "c", {"x": 3})

        await backend.clear("store/users/")

        assert await backend.list_item_ids("store/users/docs") == []
        assert await backend.list_item_ids("store/users/ops/a") == []
        assert await backend.list_item_ids("store/posts/docs") == ["b"]
        assert await backend.list_item_ids("other/users/docs") == ["c"]

    @pytest.mark.asyncio
    async def test_clear_all(self, backend):
        """clear() without a prefix removes everything."""
        await backend.connect()
        await backend.set("a", "1", {"x": 1})
        await backend.set("b", "1", {"x": 1})

        await backend.clear()

        assert await backend.list_item_ids("a") == []
        assert await backend.list_item_ids("b") == []


class TestInMemoryBackend:
    """Tests for InMemoryBackend testing helpers."""

    @pytest.fixture
    def backend(self):
        """Create a fresh backend."""
        return InMemoryBackend()

    @pytest.mark.asyncio
    async def test_counts(self, backend):
        """partition_count and item_count reflect stored data."""
        await backend.connect()
        await backend.set("p", "a", {})
        await backend.set("p", "b", {})
        await backend.set("q", "a", {})

        assert backend.partition_count() == 2
        assert backend.item_count("p") == 2

        await backend.clear("q")
        assert backend.partition_count() == 1

    @pytest.mark.asyncio
    async def test_fail_next(self, backend):
        """fail_next() makes exactly one call fail."""
        await backend.connect()
        backend.fail_next(BackendError("boom"))

        with pytest.raises(BackendError, match="boom"):
            await backend.set("p", "a", {})

        await backend.set("p", "a", {})
        assert backend.item_count("p") == 1

    @pytest.mark.asyncio
    async def test_close_discards_data(self, backend):
        """Closing drops all state."""
        await backend.connect()
        await backend.set("p", "a", {})

        await backend.close()
        await backend.connect()

        assert await backend.get("p", "a") is None


class TestSqliteBackend:
    """Tests for SqliteBackend."""

    @pytest.fixture
    def config(self, data_dir):
        return SqliteConfig(path=f"{data_dir}/nested/kv.db")

    @pytest.mark.asyncio
    async def test_persists_across_reconnect(self, config):
        """Records survive closing and reopening the file."""
        backend = SqliteBackend(config)
        await backend.connect()
        await backend.set("p", "a", {"x": 1})
        await backend.close()

        reopened = SqliteBackend(config)
        await reopened.connect()
        assert await reopened.get("p", "a") == {"x": 1}

    @pytest.mark.asyncio
    async def test_clear_prefix_with_wildcards(self, config):
        """LIKE wildcards in a prefix are matched literally."""
        backend = SqliteBackend(config)
        await backend.connect()
        await backend.set("store/a_b/docs", "1", {})
        await backend.set("store/axb/docs", "1", {})

        await backend.clear("store/a_b/")

        assert await backend.list_item_ids("store/a_b/docs") == []
        assert await backend.list_item_ids("store/axb/docs") == ["1"]


class TestS3Backend:
    """Tests for S3Backend with a fake client."""

    @pytest.fixture
    def client(self):
        return FakeS3Client(page_size=3)

    @pytest.fixture
    def backend(self, client):
        return S3Backend(S3Config(bucket="test"), client=client)

    @pytest.mark.asyncio
    async def test_object_layout(self, backend, client):
        """Records are stored as JSON under <partition>/<item>."""
        await backend.connect()
        await backend.set("store/notes/docs", "a", {"x": 1})

        assert client.objects["store/notes/docs/a"] == b'{"x":1}'

    @pytest.mark.asyncio
    async def test_listing_spans_pages(self, backend):
        """Listing follows every page of the paginator."""
        await backend.connect()
        for i in range(7):
            await backend.set("p", f"{i:02d}", {"i": i})

        assert await backend.list_item_ids("p") == [f"{i:02d}" for i in range(7)]

    @pytest.mark.asyncio
    async def test_clear_batches_deletes(self, backend, client, monkeypatch):
        """clear() deletes in batches of at most DELETE_BATCH_SIZE keys."""
        monkeypatch.setattr(s3_module, "DELETE_BATCH_SIZE", 2)
        await backend.connect()
        for i in range(5):
            await backend.set("p", str(i), {})

        await backend.clear("p/")

        assert client.objects == {}
        assert client.delete_batches == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_client_error_maps_to_backend_error(self, backend, client):
        """Non-missing client errors raise BackendError."""
        client.get_object = AsyncMock(
            side_effect=ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "GetObject")
        )
        await backend.connect()

        with pytest.raises(BackendError):
            await backend.get("p", "a")

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_maps_to_connection_error(self, backend, client):
        """Endpoint failures raise BackendConnectionError."""
        client.put_object = AsyncMock(
            side_effect=EndpointConnectionError(endpoint_url="http://localhost:9000")
        )
        await backend.connect()

        with pytest.raises(BackendConnectionError):
            await backend.set("p", "a", {})

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self, backend, client):
        """close() leaves an injected client alone."""
        await backend.connect()
        await backend.close()

        assert not backend.is_connected
        assert backend._client is client


class TestCreateBackend:
    """Tests for the backend factory."""

    def test_memory(self):
        assert isinstance(create_backend(StoreConfig()), InMemoryBackend)

    def test_sqlite(self, data_dir):
        config = StoreConfig(
            backend=BackendKind.SQLITE, sqlite=SqliteConfig(path=f"{data_dir}/x.db")
        )
        backend = create_backend(config)
        assert isinstance(backend, SqliteBackend)
        assert str(backend.db_path).endswith("x.db")

    def test_s3(self):
        config = StoreConfig(backend=BackendKind.S3, s3=S3Config(bucket="docs"))
        backend = create_backend(config)
        assert isinstance(backend, S3Backend)
        assert backend.config.bucket == "docs"
