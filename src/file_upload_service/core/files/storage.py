"""Blob storage backends for file bytes.

Supports two backends:
- Local filesystem (one file per blob in a flat directory)
- S3-compatible object storage (AWS S3, MinIO, Ceph, etc.)
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aioboto3
import aiofiles
import aiofiles.os
from botocore.exceptions import BotoCoreError, ClientError

from file_upload_service.config import (
    LocalFileStorageConfig,
    S3FileStorageConfig,
    StorageBackend,
)
from file_upload_service.core.files.errors import (
    BlobNotFoundError,
    InvalidInputError,
    StorageBackendError,
)

_MISSING_OBJECT_CODES = {"NoSuchKey", "404", "NotFound"}


class BlobStore(ABC):
    """Abstract base class for blob backends.

    Blobs are addressed by a flat string key; the files service uses the
    stringified record id.
    """

    backend: StorageBackend

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create directories, open sessions)."""
        ...

    @abstractmethod
    async def put(
        self,
        key: str,
        content: bytes,
        *,
        content_type: str | None = None,
    ) -> None:
        """Store a blob, overwriting any existing one under the same key."""
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Retrieve blob content.

        Raises:
            BlobNotFoundError: If the blob doesn't exist
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a blob. Missing blobs are not an error.

        Returns:
            True if something was deleted, False if it was already absent
        """
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    async def close(self) -> None:
        """Close any open connections."""
        pass


class LocalBlobStore(BlobStore):
    """Local filesystem blob store.

    Every blob is a single file directly under base_path, named by its key.
    Concurrent writers to the same key are not isolated; the last one wins.
    """

    backend = StorageBackend.LOCAL

    def __init__(self, base_path: Path | str):
        self._base_path = Path(base_path)

    @property
    def base_path(self) -> Path:
        return self._base_path

    async def initialize(self) -> None:
        """Create base directory if it doesn't exist."""
        await aiofiles.os.makedirs(self._base_path, exist_ok=True)

    def _key_to_path(self, key: str) -> Path:
        # Flat layout: reject anything that could escape base_path
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise InvalidInputError(f"Invalid blob key: {key!r}")
        return self._base_path / key

    async def put(
        self,
        key: str,
        content: bytes,
        *,
        content_type: str | None = None,
    ) -> None:
        file_path = self._key_to_path(key)
        try:
            await aiofiles.os.makedirs(self._base_path, exist_ok=True)
            async with aiofiles.open(file_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            raise StorageBackendError(f"Failed to write {file_path}: {e}") from e

    async def get(self, key: str) -> bytes:
        file_path = self._key_to_path(key)
        try:
            async with aiofiles.open(file_path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise BlobNotFoundError(key)
        except OSError as e:
            raise StorageBackendError(f"Failed to read {file_path}: {e}") from e

    async def delete(self, key: str) -> bool:
        file_path = self._key_to_path(key)
        try:
            await aiofiles.os.remove(file_path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageBackendError(f"Failed to delete {file_path}: {e}") from e
        return True

    async def exists(self, key: str) -> bool:
        return self._key_to_path(key).is_file()


class S3BlobStore(BlobStore):
    """S3-compatible object storage.

    The bucket is fixed at construction; every operation accepts a `bucket`
    override for callers that address another bucket explicitly.
    """

    backend = StorageBackend.S3

    def __init__(
        self,
        bucket: str,
        *,
        prefix: str = "",
        region: str | None = None,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ):
        self._bucket = bucket
        self._prefix = prefix.strip("/")
        self._region = region
        self._endpoint_url = endpoint_url
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._session: Any = None
        self._config: dict[str, str] = {}

    @property
    def bucket(self) -> str:
        return self._bucket

    def _full_key(self, key: str) -> str:
        """Get full S3 key with prefix."""
        if self._prefix:
            return f"{self._prefix}/{key.lstrip('/')}"
        return key.lstrip("/")

    async def initialize(self) -> None:
        """Initialize the aioboto3 session."""
        config = {}
        if self._region:
            config["region_name"] = self._region
        if self._endpoint_url:
            config["endpoint_url"] = self._endpoint_url
        if self._access_key_id:
            config["aws_access_key_id"] = self._access_key_id
        if self._secret_access_key:
            config["aws_secret_access_key"] = self._secret_access_key

        self._session = aioboto3.Session()
        self._config = config

    def _client(self):
        if self._session is None:
            raise StorageBackendError("S3 storage used before initialize()")
        return self._session.client("s3", **self._config)

    async def put(
        self,
        key: str,
        content: bytes,
        *,
        content_type: str | None = None,
        bucket: str | None = None,
    ) -> None:
        extra_args: dict[str, Any] = {}
        if content_type:
            extra_args["ContentType"] = content_type

        try:
            async with self._client() as client:
                await client.put_object(
                    Bucket=bucket or self._bucket,
                    Key=self._full_key(key),
                    Body=content,
                    **extra_args,
                )
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"S3 upload of {key} failed: {e}") from e

    async def get(self, key: str, *, bucket: str | None = None) -> bytes:
        try:
            async with self._client() as client:
                response = await client.get_object(
                    Bucket=bucket or self._bucket, Key=self._full_key(key)
                )
                async with response["Body"] as stream:
                    return await stream.read()
        except ClientError as e:
            if _error_code(e) in _MISSING_OBJECT_CODES:
                raise BlobNotFoundError(key) from e
            raise StorageBackendError(f"S3 fetch of {key} failed: {e}") from e
        except BotoCoreError as e:
            raise StorageBackendError(f"S3 fetch of {key} failed: {e}") from e

    async def delete(self, key: str, *, bucket: str | None = None) -> bool:
        # delete_object succeeds whether or not the key exists
        try:
            async with self._client() as client:
                await client.delete_object(
                    Bucket=bucket or self._bucket, Key=self._full_key(key)
                )
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"S3 delete of {key} failed: {e}") from e
        return True

    async def exists(self, key: str, *, bucket: str | None = None) -> bool:
        try:
            async with self._client() as client:
                await client.head_object(
                    Bucket=bucket or self._bucket, Key=self._full_key(key)
                )
                return True
        except ClientError as e:
            if _error_code(e) in _MISSING_OBJECT_CODES:
                return False
            raise StorageBackendError(f"S3 head of {key} failed: {e}") from e


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def create_local_store(config: LocalFileStorageConfig) -> LocalBlobStore:
    return LocalBlobStore(base_path=config.base_path)


def create_s3_store(config: S3FileStorageConfig) -> S3BlobStore:
    return S3BlobStore(
        bucket=config.bucket,
        prefix=config.prefix,
        region=config.region,
        endpoint_url=config.endpoint_url,
        access_key_id=config.access_key_id,
        secret_access_key=config.secret_access_key,
    )
