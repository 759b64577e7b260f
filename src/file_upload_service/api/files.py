"""Files API router - /files endpoints."""

from datetime import datetime
from typing import Annotated, Any
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from starlette.datastructures import UploadFile

from file_upload_service.core.files.errors import (
    FileServiceError,
    InvalidInputError,
    NotFoundError,
)
from file_upload_service.core.files.service import FilesService
from file_upload_service.observability.logging import get_logger
from file_upload_service.storage.models import FileRecord

logger = get_logger(__name__)

router = APIRouter(prefix="/files", tags=["files"])

DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024

# Allowance for multipart boundaries and form fields on top of the file itself
MULTIPART_OVERHEAD_BYTES = 64 * 1024

FILE_FIELD = "file"
BACKEND_FIELD = "backend"


# -----------------------------------------------------------------------------
# Request/Response Models
# -----------------------------------------------------------------------------


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }


class FileRecordResponse(CamelModel):
    """Metadata of one stored file."""

    id: int
    file_name: str
    created_at: datetime
    updated_at: datetime | None = None
    size: int
    file_type: str
    backend: str
    metadata: dict[str, Any] = {}

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileRecordResponse":
        return cls(
            id=record.id,
            file_name=record.file_name,
            created_at=record.created_at,
            updated_at=record.updated_at,
            size=record.size,
            file_type=record.file_type,
            backend=record.backend,
            metadata=record.metadata_ or {},
        )


class FileIdResponse(CamelModel):
    """Response for upload and update."""

    file_id: int


class UploadPayload(BaseModel):
    """A parsed multipart upload."""

    content: bytes
    filename: str
    content_type: str | None = None
    backend: str | None = None
    metadata: dict[str, str] = {}


# -----------------------------------------------------------------------------
# Dependency Injection
# -----------------------------------------------------------------------------


def get_files_service(request: Request) -> FilesService:
    """Get FilesService from app state."""
    service = getattr(request.app.state, "files_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Files service is not initialized")
    return service


def get_max_upload_bytes(request: Request) -> int:
    config = getattr(request.app.state, "config", None)
    if config is None:
        return DEFAULT_MAX_UPLOAD_BYTES
    return config.max_upload_bytes


FilesServiceDep = Annotated[FilesService, Depends(get_files_service)]
MaxUploadBytesDep = Annotated[int, Depends(get_max_upload_bytes)]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _too_large(max_bytes: int) -> HTTPException:
    return HTTPException(
        status_code=413,
        detail=f"File exceeds the maximum upload size of {max_bytes} bytes",
    )


async def read_upload(request: Request, max_bytes: int) -> UploadPayload:
    """Parse a multipart body into file bytes plus metadata fields.

    Oversized requests are rejected before the body is parsed whenever the
    client sends a Content-Length. Exactly one `file` part is accepted, and a
    repeated field name or a file part under any other name is a 400.
    """
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit():
        if int(content_length) > max_bytes + MULTIPART_OVERHEAD_BYTES:
            raise _too_large(max_bytes)

    async with request.form() as form:
        upload: UploadFile | None = None
        backend: str | None = None
        metadata: dict[str, str] = {}
        for key, value in form.multi_items():
            if key == FILE_FIELD:
                if not isinstance(value, UploadFile):
                    raise HTTPException(status_code=400, detail="File is missing")
                if upload is not None:
                    raise HTTPException(status_code=400, detail="Only one file may be uploaded")
                upload = value
            elif isinstance(value, UploadFile):
                raise HTTPException(status_code=400, detail=f"Unexpected file part '{key}'")
            elif key == BACKEND_FIELD:
                if backend is not None:
                    raise HTTPException(status_code=400, detail="Duplicate field 'backend'")
                backend = value
            else:
                if key in metadata:
                    raise HTTPException(status_code=400, detail=f"Duplicate field '{key}'")
                metadata[key] = value

        if upload is None:
            raise HTTPException(status_code=400, detail="File is missing")
        if upload.size is not None and upload.size > max_bytes:
            raise _too_large(max_bytes)

        content = await upload.read()
        filename = upload.filename or "unnamed"
        content_type = upload.content_type

    if len(content) > max_bytes:
        raise _too_large(max_bytes)
    if not content:
        raise HTTPException(status_code=400, detail="File is empty")

    return UploadPayload(
        content=content,
        filename=filename,
        content_type=content_type,
        backend=backend or None,
        metadata=metadata,
    )


def content_disposition(filename: str) -> str:
    """Build an attachment Content-Disposition header value."""
    escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
    try:
        escaped.encode("latin-1")
    except UnicodeEncodeError:
        fallback = escaped.encode("ascii", "replace").decode("ascii")
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
    return f'attachment; filename="{escaped}"'


def to_http_error(error: FileServiceError) -> HTTPException:
    """Map files core failures onto HTTP status codes."""
    if isinstance(error, InvalidInputError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------


@router.post("", status_code=201)
@router.post("/upload", status_code=201, include_in_schema=False)
async def upload_file(
    request: Request,
    service: FilesServiceDep,
    max_bytes: MaxUploadBytesDep,
) -> FileIdResponse:
    """Upload a file with optional metadata fields."""
    payload = await read_upload(request, max_bytes)

    try:
        record = await service.upload_file(
            payload.content,
            payload.filename,
            payload.content_type,
            metadata=payload.metadata,
            backend=payload.backend,
        )
    except FileServiceError as e:
        raise to_http_error(e) from e
    except Exception as e:
        logger.exception("Upload failed", file_name=payload.filename)
        raise HTTPException(status_code=500, detail=f"Upload failed: {e}") from e

    return FileIdResponse(file_id=record.id)


@router.get("")
async def list_files(service: FilesServiceDep) -> list[FileRecordResponse]:
    """List metadata of all uploaded files."""
    try:
        records = await service.list_files()
    except Exception as e:
        logger.exception("Listing files failed")
        raise HTTPException(status_code=500, detail=f"Listing failed: {e}") from e

    return [FileRecordResponse.from_record(r) for r in records]


@router.get("/{file_id}")
async def download_file(file_id: int, service: FilesServiceDep) -> Response:
    """Download file content."""
    try:
        record, content = await service.get_file_content(file_id)
    except FileServiceError as e:
        raise to_http_error(e) from e
    except Exception as e:
        logger.exception("Download failed", file_id=file_id)
        raise HTTPException(status_code=500, detail=f"Download failed: {e}") from e

    # Explicit header so text/* types are not given a charset suffix
    return Response(
        content=content,
        headers={
            "Content-Type": record.file_type,
            "Content-Disposition": content_disposition(record.file_name),
        },
    )


@router.get("/{file_id}/metadata")
async def get_file_metadata(file_id: int, service: FilesServiceDep) -> FileRecordResponse:
    """Retrieve file metadata without its bytes."""
    try:
        record = await service.get_file(file_id)
    except FileServiceError as e:
        raise to_http_error(e) from e

    return FileRecordResponse.from_record(record)


@router.put("/{file_id}")
async def update_file(
    file_id: int,
    request: Request,
    service: FilesServiceDep,
    max_bytes: MaxUploadBytesDep,
) -> FileIdResponse:
    """Replace a file's bytes and metadata."""
    # Unknown ids are 404 even when the body is also unusable
    try:
        await service.get_file(file_id)
    except FileServiceError as e:
        raise to_http_error(e) from e

    payload = await read_upload(request, max_bytes)

    try:
        record = await service.update_file(
            file_id,
            payload.content,
            payload.filename,
            payload.content_type,
            metadata=payload.metadata,
            backend=payload.backend,
        )
    except FileServiceError as e:
        raise to_http_error(e) from e
    except Exception as e:
        logger.exception("Update failed", file_id=file_id)
        raise HTTPException(status_code=500, detail=f"Update failed: {e}") from e

    return FileIdResponse(file_id=record.id)


@router.delete("/{file_id}")
async def delete_file(file_id: int, service: FilesServiceDep) -> Response:
    """Delete a file and its record."""
    try:
        await service.delete_file(file_id)
    except FileServiceError as e:
        raise to_http_error(e) from e
    except Exception as e:
        logger.exception("Delete failed", file_id=file_id)
        raise HTTPException(status_code=500, detail=f"Delete failed: {e}") from e

    return Response(status_code=200)
