"""Storage layer for the file upload service."""

from file_upload_service.storage.database import (
    DatabaseManager,
    close_database,
    init_database,
)
from file_upload_service.storage.models import Base, FileRecord

__all__ = [
    "Base",
    "DatabaseManager",
    "FileRecord",
    "close_database",
    "init_database",
]
