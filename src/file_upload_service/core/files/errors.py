"""Exceptions raised by the files core."""


class FileServiceError(Exception):
    """Base class for files core failures."""


class InvalidInputError(FileServiceError):
    """The caller supplied an unusable payload (empty file, bad metadata, unknown backend)."""


class NotFoundError(FileServiceError):
    """Something addressed by id does not exist."""


class FileRecordNotFoundError(NotFoundError):
    def __init__(self, file_id: int):
        super().__init__(f"File {file_id} not found")
        self.file_id = file_id


class BlobNotFoundError(NotFoundError):
    def __init__(self, key: str):
        super().__init__(f"Object not found: {key}")
        self.key = key


class StorageBackendError(FileServiceError):
    """The database or a blob backend failed."""
