"""API routers for the file upload service."""

from file_upload_service.api.files import router as files_router

__all__ = [
    "files_router",
]
