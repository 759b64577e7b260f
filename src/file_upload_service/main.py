"""FastAPI application entrypoint for the file upload service."""

from contextlib import asynccontextmanager

import yaml
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from file_upload_service.api import files_router
from file_upload_service.config import Settings, ServiceConfig, StorageBackend, settings
from file_upload_service.core.files.service import FilesService
from file_upload_service.core.files.storage import (
    BlobStore,
    create_local_store,
    create_s3_store,
)
from file_upload_service.observability.logging import (
    RequestIDMiddleware,
    configure_logging,
    get_logger,
)
from file_upload_service.observability.metrics import (
    MetricsMiddleware,
    metrics_endpoint,
    setup_metrics,
)
from file_upload_service.storage.database import close_database, init_database

APP_NAME = "file-upload-service"
APP_VERSION = "0.1.0"

logger = get_logger(__name__)


def load_config(settings: Settings) -> ServiceConfig:
    """Load configuration from file or environment."""
    if settings.config_file and settings.config_file.exists():
        logger.info("Loading config from file", path=str(settings.config_file))
        with open(settings.config_file) as f:
            config_dict = yaml.safe_load(f) or {}
        return ServiceConfig.from_dict(config_dict)

    logger.info("Using environment-based configuration")
    return settings.to_service_config()


def build_blob_stores(config: ServiceConfig) -> dict[StorageBackend, BlobStore]:
    """Create the blob backends enabled by the config."""
    stores: dict[StorageBackend, BlobStore] = {
        StorageBackend.LOCAL: create_local_store(config.local_storage),
    }
    if config.s3_storage is not None:
        stores[StorageBackend.S3] = create_s3_store(config.s3_storage)
    return stores


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Handles startup and shutdown of:
    - Database connections
    - Blob storage backends
    """
    config: ServiceConfig = app.state.config
    configure_logging(
        level=config.logging.level,
        json_logs=config.logging.json_logs,
        enable_access_logs=config.logging.enable_access_logs,
    )
    logger.info("Starting file upload service...")

    logger.info("Initializing database...")
    db_manager = await init_database(config)
    app.state.db_manager = db_manager

    blob_stores = build_blob_stores(config)
    for store in blob_stores.values():
        await store.initialize()
    logger.info("Blob backends ready", backends=[b.value for b in blob_stores])

    if config.default_backend not in blob_stores:
        raise RuntimeError(
            f"Default backend '{config.default_backend.value}' is not configured"
        )

    app.state.files_service = FilesService(
        db_manager=db_manager,
        blob_stores=blob_stores,
        default_backend=config.default_backend,
    )
    setup_metrics(APP_NAME, APP_VERSION)

    logger.info("File upload service started successfully")

    yield

    logger.info("Shutting down file upload service...")
    for store in blob_stores.values():
        await store.close()
    await close_database()
    logger.info("Shutdown complete")


def create_app(config: ServiceConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="File Upload API",
        description="Upload, download, update and delete files with metadata",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.config = config or load_config(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app.state.config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(files_router)

    @app.get("/health")
    async def health_check(request: Request):
        """Verify API and database connectivity."""
        db_manager = getattr(request.app.state, "db_manager", None)
        if db_manager is None:
            return JSONResponse(
                status_code=503,
                content={"status": "starting", "database": "not initialized"},
            )
        try:
            await db_manager.ping()
        except Exception as e:
            logger.warning("Health check failed", error=str(e))
            return JSONResponse(
                status_code=503,
                content={"status": "error", "database": str(e)},
            )
        return {"status": "healthy", "database": "connected"}

    app.add_route("/metrics", metrics_endpoint, include_in_schema=False)

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": APP_NAME,
            "version": APP_VERSION,
            "endpoints": {
                "files": "/files",
                "health": "/health",
                "metrics": "/metrics",
                "docs": "/docs",
            },
        }

    return app


def main():
    """Run the server."""
    import uvicorn

    server = load_config(settings).server
    uvicorn.run(
        "file_upload_service.main:create_app",
        factory=True,
        host=server.host,
        port=server.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
