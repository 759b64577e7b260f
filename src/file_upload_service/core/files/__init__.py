"""Files API core logic."""

from file_upload_service.core.files.errors import (
    BlobNotFoundError,
    FileRecordNotFoundError,
    FileServiceError,
    InvalidInputError,
    NotFoundError,
    StorageBackendError,
)
from file_upload_service.core.files.service import FilesService
from file_upload_service.core.files.storage import BlobStore, LocalBlobStore, S3BlobStore
from file_upload_service.core.files.store import FileRecordStore

__all__ = [
    "BlobNotFoundError",
    "BlobStore",
    "FileRecordNotFoundError",
    "FileRecordStore",
    "FileServiceError",
    "FilesService",
    "InvalidInputError",
    "LocalBlobStore",
    "NotFoundError",
    "S3BlobStore",
    "StorageBackendError",
]
