"""Files service for managing uploaded files."""

import mimetypes
from collections.abc import Mapping
from typing import Any

from file_upload_service.config import StorageBackend
from file_upload_service.core.files.errors import (
    BlobNotFoundError,
    FileRecordNotFoundError,
    InvalidInputError,
    StorageBackendError,
)
from file_upload_service.core.files.storage import BlobStore
from file_upload_service.core.files.store import FileRecordStore
from file_upload_service.observability.logging import get_logger
from file_upload_service.observability.metrics import metrics_registry
from file_upload_service.storage.database import DatabaseManager
from file_upload_service.storage.models import FileRecord, utcnow

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Names owned by the record itself; extra metadata may not shadow them
RESERVED_METADATA_KEYS = frozenset(
    {
        "id",
        "file",
        "fileName",
        "file_name",
        "createdAt",
        "created_at",
        "updatedAt",
        "updated_at",
        "size",
        "fileType",
        "file_type",
        "backend",
    }
)

MetadataValue = str | int | float | bool


def validate_metadata(metadata: Mapping[str, Any] | None) -> dict[str, MetadataValue]:
    """Check caller-supplied extra fields and return them as a plain dict.

    Raises:
        InvalidInputError: On reserved or empty keys, or non-scalar values
    """
    if not metadata:
        return {}

    cleaned: dict[str, MetadataValue] = {}
    for key, value in metadata.items():
        if not isinstance(key, str) or not key:
            raise InvalidInputError(f"Metadata keys must be non-empty strings: {key!r}")
        if key in RESERVED_METADATA_KEYS:
            raise InvalidInputError(f"Metadata key '{key}' is reserved")
        if not isinstance(value, (str, int, float, bool)):
            raise InvalidInputError(
                f"Metadata value for '{key}' must be a string, number or boolean"
            )
        cleaned[key] = value
    return cleaned


class FilesService:
    """Service for managing file uploads and retrieval.

    Handles:
    - File metadata persistence to the database
    - File bytes on the backend chosen per upload (local disk or S3)
    - Retrieval, update and deletion, dispatched to the backend recorded
      on each file

    A record and its blob are written together: the row is inserted and
    flushed to obtain the id, the blob is written under that id, and only
    then is the transaction committed. A failed blob write rolls the row
    back; a failed commit removes the freshly written blob.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        blob_stores: Mapping[StorageBackend, BlobStore],
        default_backend: StorageBackend = StorageBackend.LOCAL,
    ):
        self._db_manager = db_manager
        self._blob_stores = dict(blob_stores)
        self._default_backend = default_backend

    def _resolve_backend(self, backend: StorageBackend | str | None) -> StorageBackend:
        if backend is None:
            backend = self._default_backend
        try:
            resolved = StorageBackend(backend)
        except ValueError:
            raise InvalidInputError(f"Unknown storage backend: {backend!r}")
        if resolved not in self._blob_stores:
            raise InvalidInputError(f"Storage backend '{resolved.value}' is not configured")
        return resolved

    def _store_for(self, record: FileRecord) -> BlobStore:
        """Blob store holding a record's bytes.

        Raises:
            StorageBackendError: If the record's backend is no longer configured
        """
        store = self._blob_stores.get(StorageBackend(record.backend))
        if store is None:
            raise StorageBackendError(f"Backend '{record.backend}' is not configured")
        return store

    @staticmethod
    def _content_type(filename: str, content_type: str | None) -> str:
        if content_type:
            return content_type
        guessed, _ = mimetypes.guess_type(filename)
        return guessed or DEFAULT_CONTENT_TYPE

    async def _discard_blob(self, store: BlobStore, key: str) -> None:
        """Best-effort removal of a blob whose record did not persist."""
        try:
            await store.delete(key)
        except Exception:
            logger.exception("Failed to remove orphaned blob", key=key, backend=store.backend.value)

    async def _snapshot_blob(self, store: BlobStore, key: str) -> bytes | None:
        """Current bytes under `key`, or None when there are none."""
        try:
            return await store.get(key)
        except BlobNotFoundError:
            return None

    async def _revert_blob(
        self,
        store: BlobStore,
        key: str,
        original: bytes | None,
        content_type: str,
    ) -> None:
        """Put back the bytes a failed update overwrote, or drop what it wrote."""
        if original is None:
            await self._discard_blob(store, key)
            return
        try:
            await store.put(key, original, content_type=content_type)
        except Exception:
            logger.exception("Failed to restore blob", key=key, backend=store.backend.value)

    async def upload_file(
        self,
        content: bytes | None,
        filename: str,
        content_type: str | None = None,
        *,
        metadata: Mapping[str, Any] | None = None,
        backend: StorageBackend | str | None = None,
    ) -> FileRecord:
        """Upload a file.

        Args:
            content: File content as bytes
            filename: Original filename
            content_type: MIME type (guessed from filename if not provided)
            metadata: Extra fields stored alongside the record
            backend: Blob backend for the bytes (service default if omitted)

        Returns:
            The persisted FileRecord

        Raises:
            InvalidInputError: Empty content, bad metadata or unknown backend
        """
        if not content:
            raise InvalidInputError("File payload is missing or empty")
        extra = validate_metadata(metadata)
        selected = self._resolve_backend(backend)
        store = self._blob_stores[selected]
        content_type = self._content_type(filename, content_type)

        blob_key: str | None = None
        try:
            async with self._db_manager.session() as session:
                record = await FileRecordStore(session).create(
                    file_name=filename,
                    size=len(content),
                    file_type=content_type,
                    backend=selected.value,
                    metadata=extra,
                )
                await store.put(str(record.id), content, content_type=content_type)
                blob_key = str(record.id)
        except Exception:
            if blob_key is not None:
                await self._discard_blob(store, blob_key)
            metrics_registry.record_file_operation("upload", selected.value, "failure")
            raise

        metrics_registry.record_file_operation(
            "upload", selected.value, "success", size=len(content)
        )
        logger.info(
            "File uploaded",
            file_id=record.id,
            file_name=record.file_name,
            size=record.size,
            backend=record.backend,
        )
        return record

    async def get_file(self, file_id: int) -> FileRecord:
        """Get file metadata by ID.

        Raises:
            FileRecordNotFoundError: If no record exists
        """
        async with self._db_manager.session() as session:
            record = await FileRecordStore(session).get(file_id)
        if record is None:
            raise FileRecordNotFoundError(file_id)
        return record

    async def get_file_content(self, file_id: int) -> tuple[FileRecord, bytes]:
        """Get a file's record together with its bytes.

        Raises:
            FileRecordNotFoundError: If no record exists
            BlobNotFoundError: If the record exists but its blob is gone
        """
        record = await self.get_file(file_id)
        content = await self._store_for(record).get(str(record.id))
        metrics_registry.record_file_operation(
            "get", record.backend, "success", size=len(content)
        )
        return record, content

    async def update_file(
        self,
        file_id: int,
        content: bytes | None,
        filename: str,
        content_type: str | None = None,
        *,
        metadata: Mapping[str, Any] | None = None,
        backend: StorageBackend | str | None = None,
    ) -> FileRecord:
        """Replace a file's bytes and metadata.

        Extra metadata is merged into the existing fields. `created_at` is
        kept; `updated_at` is set. When `backend` is omitted the bytes stay
        on the record's current backend.

        If the new bytes were written but the record change does not commit,
        the previous bytes are put back (same backend) or the new copy is
        removed (backend move), so the stored record keeps matching its blob.

        Raises:
            FileRecordNotFoundError: If no record exists
            InvalidInputError: Empty content, bad metadata or unknown backend
        """
        key = str(file_id)
        selected: StorageBackend | None = None
        written: BlobStore | None = None
        original: bytes | None = None
        original_type = DEFAULT_CONTENT_TYPE
        try:
            async with self._db_manager.session() as session:
                records = FileRecordStore(session)
                record = await records.get(file_id)
                if record is None:
                    raise FileRecordNotFoundError(file_id)
                if not content:
                    raise InvalidInputError("File payload is missing or empty")
                extra = validate_metadata(metadata)
                previous = StorageBackend(record.backend)
                selected = self._resolve_backend(backend or previous)
                store = self._blob_stores[selected]
                content_type = self._content_type(filename, content_type)

                if selected == previous:
                    original = await self._snapshot_blob(store, key)
                    original_type = record.file_type

                record.file_name = filename
                record.size = len(content)
                record.file_type = content_type
                record.backend = selected.value
                record.metadata_ = {**(record.metadata_ or {}), **extra}
                record.updated_at = utcnow()
                record = await records.save(record)

                await store.put(key, content, content_type=content_type)
                written = store
        except Exception:
            if written is not None:
                await self._revert_blob(written, key, original, original_type)
            if selected is not None:
                metrics_registry.record_file_operation("update", selected.value, "failure")
            raise

        if previous != selected:
            old_store = self._blob_stores.get(previous)
            if old_store is None:
                logger.warning(
                    "Previous backend not configured, old blob left in place",
                    file_id=file_id,
                    backend=previous.value,
                )
            else:
                await self._discard_blob(old_store, key)

        metrics_registry.record_file_operation(
            "update", selected.value, "success", size=len(content)
        )
        logger.info(
            "File updated",
            file_id=record.id,
            file_name=record.file_name,
            size=record.size,
            backend=record.backend,
        )
        return record

    async def delete_file(self, file_id: int) -> None:
        """Delete a file's blob, then its record.

        A blob that is already gone is tolerated; the record is removed anyway.

        Raises:
            FileRecordNotFoundError: If no record exists
        """
        async with self._db_manager.session() as session:
            records = FileRecordStore(session)
            record = await records.get(file_id)
            if record is None:
                raise FileRecordNotFoundError(file_id)

            removed = await self._store_for(record).delete(str(record.id))
            if not removed:
                logger.warning("Blob already missing", file_id=file_id, backend=record.backend)
            await records.remove(record)

        metrics_registry.record_file_operation("delete", record.backend, "success")
        logger.info("File deleted", file_id=file_id, backend=record.backend)

    async def list_files(self) -> list[FileRecord]:
        """All file records in upload order."""
        async with self._db_manager.session() as session:
            return await FileRecordStore(session).list_all()
