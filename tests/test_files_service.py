"""Tests for files service."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from file_upload_service.config import StorageBackend
from file_upload_service.core.files.errors import (
    BlobNotFoundError,
    FileRecordNotFoundError,
    InvalidInputError,
    StorageBackendError,
)
from file_upload_service.core.files.service import FilesService, validate_metadata
from file_upload_service.core.files.storage import BlobStore
from file_upload_service.storage.database import DatabaseManager
from file_upload_service.storage.models import FileRecord


@pytest.fixture
async def mock_database_manager():
    """Create a mock database manager."""
    db_manager = MagicMock(spec=DatabaseManager)

    mock_session = AsyncMock()
    mock_session.add = MagicMock()
    mock_session.flush = AsyncMock()
    mock_session.execute = AsyncMock()
    mock_session.delete = AsyncMock()

    # Simulate the database assigning a primary key
    async def mock_refresh(obj):
        if obj.id is None:
            obj.id = 1

    mock_session.refresh = AsyncMock(side_effect=mock_refresh)

    mock_session_context_manager = MagicMock()
    mock_session_context_manager.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session_context_manager.__aexit__ = AsyncMock(return_value=None)

    db_manager.session.return_value = mock_session_context_manager

    return db_manager, mock_session


def make_blob_store(backend: StorageBackend) -> AsyncMock:
    store = AsyncMock(spec=BlobStore)
    store.backend = backend
    store.put = AsyncMock(return_value=None)
    store.get = AsyncMock(return_value=b"mock file content")
    store.delete = AsyncMock(return_value=True)
    return store


@pytest.fixture
def local_store():
    return make_blob_store(StorageBackend.LOCAL)


@pytest.fixture
def s3_store():
    return make_blob_store(StorageBackend.S3)


@pytest.fixture
def service(mock_database_manager, local_store, s3_store):
    db_manager, _ = mock_database_manager
    return FilesService(
        db_manager=db_manager,
        blob_stores={StorageBackend.LOCAL: local_store, StorageBackend.S3: s3_store},
    )


def stored_record(**overrides) -> FileRecord:
    values = dict(
        id=7,
        file_name="a.txt",
        size=5,
        file_type="text/plain",
        backend="local",
        metadata_={"owner": "alice"},
    )
    values.update(overrides)
    return FileRecord(**values)


def lookup_returns(mock_session, record):
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = record
    mock_session.execute.return_value = mock_result


@pytest.mark.asyncio
async def test_upload_file(service, mock_database_manager, local_store):
    """Test uploading a file."""
    _, mock_session = mock_database_manager

    record = await service.upload_file(
        b"hello",
        "a.txt",
        "text/plain",
        metadata={"owner": "alice"},
    )

    assert record.id == 1
    assert record.file_name == "a.txt"
    assert record.size == 5
    assert record.file_type == "text/plain"
    assert record.backend == "local"
    assert record.metadata_ == {"owner": "alice"}

    mock_session.add.assert_called_once_with(record)
    mock_session.flush.assert_called_once()
    local_store.put.assert_called_once_with("1", b"hello", content_type="text/plain")


@pytest.mark.asyncio
async def test_upload_file_to_selected_backend(service, local_store, s3_store):
    """Test the backend selector routes bytes to object storage."""
    record = await service.upload_file(b"hello", "a.txt", "text/plain", backend="s3")

    assert record.backend == "s3"
    s3_store.put.assert_called_once_with("1", b"hello", content_type="text/plain")
    local_store.put.assert_not_called()


@pytest.mark.asyncio
async def test_upload_file_auto_detect_content_type(service, local_store):
    """Test uploading a file with auto-detected content type."""
    record = await service.upload_file(b'{"key": "value"}', "test.json")

    assert record.file_type == "application/json"


@pytest.mark.asyncio
async def test_upload_file_unknown_extension_falls_back(service):
    record = await service.upload_file(b"\x00\x01", "blob.unknownext")

    assert record.file_type == "application/octet-stream"


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [b"", None])
async def test_upload_empty_file_rejected(
    service, mock_database_manager, local_store, content
):
    """Test an empty payload fails before anything is written."""
    db_manager, mock_session = mock_database_manager

    with pytest.raises(InvalidInputError):
        await service.upload_file(content, "a.txt", "text/plain")

    db_manager.session.assert_not_called()
    mock_session.add.assert_not_called()
    local_store.put.assert_not_called()


@pytest.mark.asyncio
async def test_upload_to_unconfigured_backend_rejected(
    mock_database_manager, local_store
):
    db_manager, _ = mock_database_manager
    service = FilesService(
        db_manager=db_manager, blob_stores={StorageBackend.LOCAL: local_store}
    )

    with pytest.raises(InvalidInputError, match="not configured"):
        await service.upload_file(b"hello", "a.txt", backend="s3")

    with pytest.raises(InvalidInputError, match="Unknown storage backend"):
        await service.upload_file(b"hello", "a.txt", backend="floppy")


@pytest.mark.asyncio
async def test_upload_blob_failure_propagates(service, local_store):
    """Test a failed blob write surfaces and nothing is cleaned up that wasn't written."""
    local_store.put.side_effect = StorageBackendError("disk full")

    with pytest.raises(StorageBackendError):
        await service.upload_file(b"hello", "a.txt", "text/plain")

    local_store.delete.assert_not_called()


@pytest.mark.asyncio
async def test_upload_commit_failure_removes_blob(
    service, mock_database_manager, local_store
):
    """Test the blob is deleted when the metadata commit fails after the write."""
    db_manager, _ = mock_database_manager
    db_manager.session.return_value.__aexit__.side_effect = StorageBackendError(
        "commit failed"
    )

    with pytest.raises(StorageBackendError):
        await service.upload_file(b"hello", "a.txt", "text/plain")

    local_store.put.assert_called_once()
    local_store.delete.assert_called_once_with("1")


@pytest.mark.asyncio
async def test_update_commit_failure_restores_previous_blob(
    service, mock_database_manager, local_store
):
    """Test the overwritten bytes are put back when the update does not commit."""
    db_manager, mock_session = mock_database_manager
    lookup_returns(mock_session, stored_record())
    local_store.get.return_value = b"hello"
    db_manager.session.return_value.__aexit__.side_effect = StorageBackendError(
        "commit failed"
    )

    with pytest.raises(StorageBackendError):
        await service.update_file(7, b"goodbye world", "b.md", "text/markdown")

    assert local_store.put.call_args_list[-1].args == ("7", b"hello")
    assert local_store.put.call_args_list[-1].kwargs == {"content_type": "text/plain"}
    local_store.delete.assert_not_called()


@pytest.mark.asyncio
async def test_update_commit_failure_without_previous_blob_discards(
    service, mock_database_manager, local_store
):
    db_manager, mock_session = mock_database_manager
    lookup_returns(mock_session, stored_record())
    local_store.get.side_effect = BlobNotFoundError("7")
    db_manager.session.return_value.__aexit__.side_effect = StorageBackendError(
        "commit failed"
    )

    with pytest.raises(StorageBackendError):
        await service.update_file(7, b"goodbye world", "a.txt", "text/plain")

    local_store.put.assert_called_once()
    local_store.delete.assert_called_once_with("7")


@pytest.mark.asyncio
async def test_update_commit_failure_on_backend_move_removes_new_blob(
    service, mock_database_manager, local_store, s3_store
):
    """Test a failed move drops the new copy and keeps the old one."""
    db_manager, mock_session = mock_database_manager
    lookup_returns(mock_session, stored_record())
    db_manager.session.return_value.__aexit__.side_effect = StorageBackendError(
        "commit failed"
    )

    with pytest.raises(StorageBackendError):
        await service.update_file(7, b"new", "a.txt", backend="s3")

    s3_store.put.assert_called_once()
    s3_store.delete.assert_called_once_with("7")
    local_store.delete.assert_not_called()
    local_store.put.assert_not_called()


@pytest.mark.asyncio
async def test_update_blob_failure_leaves_nothing_to_revert(
    service, mock_database_manager, local_store
):
    _, mock_session = mock_database_manager
    lookup_returns(mock_session, stored_record())
    local_store.put.side_effect = StorageBackendError("disk full")

    with pytest.raises(StorageBackendError):
        await service.update_file(7, b"new", "a.txt")

    local_store.put.assert_called_once()
    local_store.delete.assert_not_called()


@pytest.mark.asyncio
async def test_record_on_unconfigured_backend(mock_database_manager, local_store):
    """Test a record whose backend was disabled fails with a backend error."""
    db_manager, mock_session = mock_database_manager
    service = FilesService(
        db_manager=db_manager, blob_stores={StorageBackend.LOCAL: local_store}
    )
    lookup_returns(mock_session, stored_record(backend="s3"))

    with pytest.raises(StorageBackendError, match="'s3' is not configured"):
        await service.get_file_content(7)

    with pytest.raises(StorageBackendError, match="'s3' is not configured"):
        await service.delete_file(7)


@pytest.mark.asyncio
async def test_get_file_content(service, mock_database_manager, local_store):
    """Test getting file content."""
    _, mock_session = mock_database_manager
    lookup_returns(mock_session, stored_record())

    record, content = await service.get_file_content(7)

    local_store.get.assert_called_once_with("7")
    assert record.file_name == "a.txt"
    assert content == b"mock file content"


@pytest.mark.asyncio
async def test_get_file_content_uses_stored_backend(
    service, mock_database_manager, local_store, s3_store
):
    """Test reads go to the backend recorded on the file, not the default."""
    _, mock_session = mock_database_manager
    lookup_returns(mock_session, stored_record(backend="s3"))

    await service.get_file_content(7)

    s3_store.get.assert_called_once_with("7")
    local_store.get.assert_not_called()


@pytest.mark.asyncio
async def test_get_nonexistent_file(service, mock_database_manager, local_store):
    """Test getting a file that doesn't exist."""
    _, mock_session = mock_database_manager
    lookup_returns(mock_session, None)

    with pytest.raises(FileRecordNotFoundError):
        await service.get_file_content(404)

    local_store.get.assert_not_called()


@pytest.mark.asyncio
async def test_get_file_missing_blob(service, mock_database_manager, local_store):
    _, mock_session = mock_database_manager
    lookup_returns(mock_session, stored_record())
    local_store.get.side_effect = BlobNotFoundError("7")

    with pytest.raises(BlobNotFoundError):
        await service.get_file_content(7)


@pytest.mark.asyncio
async def test_update_file(service, mock_database_manager, local_store):
    """Test updating replaces fields, merges metadata and rewrites the blob."""
    _, mock_session = mock_database_manager
    existing = stored_record()
    lookup_returns(mock_session, existing)

    record = await service.update_file(
        7,
        b"goodbye!",
        "b.md",
        "text/markdown",
        metadata={"tag": "draft"},
    )

    assert record.file_name == "b.md"
    assert record.size == 8
    assert record.file_type == "text/markdown"
    assert record.metadata_ == {"owner": "alice", "tag": "draft"}
    assert record.updated_at is not None
    local_store.put.assert_called_once_with("7", b"goodbye!", content_type="text/markdown")
    local_store.delete.assert_not_called()


@pytest.mark.asyncio
async def test_update_file_moves_backend(
    service, mock_database_manager, local_store, s3_store
):
    """Test switching backend writes the new blob and removes the old one."""
    _, mock_session = mock_database_manager
    lookup_returns(mock_session, stored_record())

    record = await service.update_file(7, b"new", "a.txt", backend="s3")

    assert record.backend == "s3"
    s3_store.put.assert_called_once()
    local_store.delete.assert_called_once_with("7")


@pytest.mark.asyncio
async def test_update_nonexistent_file(service, mock_database_manager, local_store):
    _, mock_session = mock_database_manager
    lookup_returns(mock_session, None)

    with pytest.raises(FileRecordNotFoundError):
        await service.update_file(404, b"data", "a.txt")

    local_store.put.assert_not_called()


@pytest.mark.asyncio
async def test_update_empty_file_rejected(service, mock_database_manager, local_store):
    _, mock_session = mock_database_manager
    existing = stored_record()
    lookup_returns(mock_session, existing)

    with pytest.raises(InvalidInputError):
        await service.update_file(7, b"", "b.txt")

    assert existing.file_name == "a.txt"
    local_store.put.assert_not_called()


@pytest.mark.asyncio
async def test_delete_file(service, mock_database_manager, local_store):
    """Test deleting a file."""
    _, mock_session = mock_database_manager
    existing = stored_record()
    lookup_returns(mock_session, existing)

    await service.delete_file(7)

    local_store.delete.assert_called_once_with("7")
    mock_session.delete.assert_called_once_with(existing)
    mock_session.flush.assert_called_once()


@pytest.mark.asyncio
async def test_delete_file_with_missing_blob(service, mock_database_manager, local_store):
    """Test the record is removed even when its blob is already gone."""
    _, mock_session = mock_database_manager
    existing = stored_record()
    lookup_returns(mock_session, existing)
    local_store.delete.return_value = False

    await service.delete_file(7)

    mock_session.delete.assert_called_once_with(existing)


@pytest.mark.asyncio
async def test_delete_nonexistent_file(service, mock_database_manager, local_store):
    """Test deleting a file that doesn't exist."""
    _, mock_session = mock_database_manager
    lookup_returns(mock_session, None)

    with pytest.raises(FileRecordNotFoundError):
        await service.delete_file(404)

    local_store.delete.assert_not_called()
    mock_session.delete.assert_not_called()


@pytest.mark.asyncio
async def test_list_files(service, mock_database_manager):
    """Test listing files."""
    _, mock_session = mock_database_manager

    mock_files = [stored_record(id=1), stored_record(id=2)]
    mock_result = MagicMock()
    mock_result.scalars.return_value.all.return_value = mock_files
    mock_session.execute.return_value = mock_result

    result = await service.list_files()

    assert result == mock_files
    mock_session.execute.assert_called_once()


def test_validate_metadata_accepts_scalars():
    assert validate_metadata({"a": "x", "b": 1, "c": 2.5, "d": True}) == {
        "a": "x",
        "b": 1,
        "c": 2.5,
        "d": True,
    }
    assert validate_metadata(None) == {}


@pytest.mark.parametrize(
    "metadata",
    [
        {"fileName": "evil.txt"},
        {"size": 1},
        {"backend": "s3"},
        {"": "empty key"},
        {"nested": {"a": 1}},
        {"items": [1, 2]},
        {"nothing": None},
    ],
)
def test_validate_metadata_rejects(metadata):
    with pytest.raises(InvalidInputError):
        validate_metadata(metadata)
