"""
S3 key-value backend for DocStore.

Each record is one JSON object in the bucket:

    s3://<bucket>/<partition>/<item>

Partitions are listed with a "/" delimiter, so a partition never sees the
items of a longer partition key that shares its prefix.

Invariants:
    - put_object is atomic per key, so set() is atomic per item
    - Item keys never contain "/" (StoreAdapter quotes them)
    - A missing object reads as None

How to change safely:
    - Keep the key layout stable; existing buckets are read with it
    - Test against MinIO or LocalStack before changing listing logic
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aiobotocore.session import get_session
from botocore.exceptions import ClientError, EndpointConnectionError

from .base import BackendConnectionError, BackendError, decode_record, encode_record

if TYPE_CHECKING:
    from ..config import S3Config

logger = logging.getLogger(__name__)

# delete_objects accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class S3Backend:
    """S3 implementation of KeyValueBackend.

    Attributes:
        config: S3 configuration

    Example:
        >>> backend = S3Backend(S3Config(bucket="docs", endpoint_url="http://localhost:9000"))
        >>> await backend.connect()
        >>> await backend.set("docstore/notes/docs", "a", {"_id": "a"})
    """

    def __init__(self, config: S3Config, client: Any = None) -> None:
        """Initialize the backend.

        Args:
            config: S3 configuration
            client: Optional pre-built S3 client (used as-is, not closed)
        """
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._s3_ctx = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Create the S3 client."""
        if self._owns_client:
            session = get_session()
            client_kwargs = {"region_name": self.config.region}
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
            if self.config.access_key_id:
                client_kwargs["aws_access_key_id"] = self.config.access_key_id
                client_kwargs["aws_secret_access_key"] = self.config.secret_access_key

            self._s3_ctx = session.create_client("s3", **client_kwargs)
            self._client = await self._s3_ctx.__aenter__()

        self._connected = True
        logger.info(
            "S3 backend connected",
            extra={"bucket": self.config.bucket, "endpoint": self.config.endpoint_url},
        )

    async def close(self) -> None:
        """Close the S3 client if this backend created it."""
        if self._owns_client and self._s3_ctx is not None:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_ctx = None
            self._client = None
        self._connected = False

    def _require_client(self) -> Any:
        if not self._connected or self._client is None:
            raise BackendConnectionError("Not connected")
        return self._client

    @staticmethod
    def _object_key(partition: str, item: str) -> str:
        return f"{partition}/{item}"

    async def get(self, partition: str, item: str) -> dict[str, Any] | None:
        client = self._require_client()
        try:
            response = await client.get_object(
                Bucket=self.config.bucket,
                Key=self._object_key(partition, item),
            )
            body = await response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise BackendError(f"S3 get failed for {partition}/{item}: {e}")
        except EndpointConnectionError as e:
            raise BackendConnectionError(f"S3 endpoint unreachable: {e}")
        return decode_record(body)

    async def set(self, partition: str, item: str, record: dict[str, Any]) -> None:
        client = self._require_client()
        body = encode_record(record).encode("utf-8")
        try:
            await client.put_object(
                Bucket=self.config.bucket,
                Key=self._object_key(partition, item),
                Body=body,
                ContentType="application/json",
            )
        except ClientError as e:
            raise BackendError(f"S3 put failed for {partition}/{item}: {e}")
        except EndpointConnectionError as e:
            raise BackendConnectionError(f"S3 endpoint unreachable: {e}")

    async def list_item_ids(self, partition: str) -> list[str]:
        prefix = f"{partition}/"
        keys = await self._list_keys(prefix, delimiter="/")
        return sorted(key[len(prefix):] for key in keys)

    async def clear(self, prefix: str | None = None) -> None:
        client = self._require_client()
        keys = await self._list_keys(prefix or "")

        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                await client.delete_objects(
                    Bucket=self.config.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except ClientError as e:
                raise BackendError(f"S3 batch delete failed: {e}")
            except EndpointConnectionError as e:
                raise BackendConnectionError(f"S3 endpoint unreachable: {e}")

        logger.info(
            "S3 backend cleared",
            extra={"bucket": self.config.bucket, "prefix": prefix, "deleted": len(keys)},
        )
