"""Persistent storage for file metadata."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from file_upload_service.storage.models import FileRecord


class FileRecordStore:
    """Database operations for file records.

    Operates inside the caller's session; committing is the caller's job.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(
        self,
        file_name: str,
        size: int,
        file_type: str,
        backend: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> FileRecord:
        """Insert a new file record.

        The row is flushed so the generated id is available immediately.

        Args:
            file_name: Original client-supplied name
            size: Blob length in bytes
            file_type: MIME type
            backend: Blob backend holding the bytes
            metadata: Extra caller-supplied fields

        Returns:
            Created FileRecord instance
        """
        record = FileRecord(
            file_name=file_name,
            size=size,
            file_type=file_type,
            backend=backend,
            metadata_=dict(metadata or {}),
        )
        self._session.add(record)
        await self._session.flush()
        await self._session.refresh(record)
        return record

    async def get(self, file_id: int) -> FileRecord | None:
        result = await self._session.execute(
            select(FileRecord).where(FileRecord.id == file_id)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[FileRecord]:
        """All records in insertion order."""
        result = await self._session.execute(
            select(FileRecord).order_by(FileRecord.id.asc())
        )
        return list(result.scalars().all())

    async def save(self, record: FileRecord) -> FileRecord:
        """Flush pending changes on an already-loaded record."""
        self._session.add(record)
        await self._session.flush()
        await self._session.refresh(record)
        return record

    async def remove(self, record: FileRecord) -> None:
        await self._session.delete(record)
        await self._session.flush()
