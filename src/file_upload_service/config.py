"""Configuration settings for the file upload service."""

import os
import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url

# -----------------------------------------------------------------------------
# Environment Variable Substitution
# -----------------------------------------------------------------------------

ENV_VAR_PATTERN = re.compile(r"\$\{env\.([A-Z_][A-Z0-9_]*)(?::=([^}]*))?\}")


def replace_env_vars(config: Any) -> Any:
    """Recursively replace ${env.VAR:=default} patterns in config."""
    if isinstance(config, dict):
        return {k: replace_env_vars(v) for k, v in config.items()}
    elif isinstance(config, list):
        return [replace_env_vars(v) for v in config]
    elif isinstance(config, str):

        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            default = match.group(2)
            value = os.environ.get(var_name)
            if value is not None:
                return value
            if default is not None:
                return default
            raise ValueError(f"Environment variable {var_name} is required but not set")

        return ENV_VAR_PATTERN.sub(replacer, config)
    return config


class StorageBackend(str, Enum):
    """Where the bytes of a file live."""

    LOCAL = "local"
    S3 = "s3"


# -----------------------------------------------------------------------------
# Database Configurations (Discriminated Union)
# -----------------------------------------------------------------------------


class SqliteStorageConfig(BaseModel):
    """SQLite metadata database."""

    type: Literal["sqlite"] = "sqlite"
    db_path: str = Field(
        default="./files.db",
        description="File path for the SQLite database",
    )

    @classmethod
    def sample_config(cls, db_name: str = "files.db") -> dict[str, Any]:
        return {
            "type": "sqlite",
            "db_path": "${env.SQLITE_DB_PATH:=./" + db_name + "}",
        }


class PostgresStorageConfig(BaseModel):
    """PostgreSQL metadata database."""

    type: Literal["postgres"] = "postgres"
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    database: str = Field(default="files", description="Database name")
    user: str = Field(default="files", description="Database user")
    password: str | None = Field(default=None, description="Database password")
    pool_size: int = Field(default=10, description="Connection pool size")
    max_overflow: int = Field(default=20, description="Maximum overflow connections")

    @property
    def connection_url(self) -> URL:
        """SQLAlchemy connection URL; credentials are escaped when rendered."""
        return URL.create(
            drivername="postgresql+asyncpg",
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    @classmethod
    def sample_config(cls) -> dict[str, Any]:
        return {
            "type": "postgres",
            "host": "${env.DB_HOST:=localhost}",
            "port": "${env.DB_PORT:=5432}",
            "database": "${env.DB_DATABASE:=files}",
            "user": "${env.DB_USERNAME:=files}",
            "password": "${env.DB_PASSWORD}",
        }


DatabaseConfig = Annotated[
    SqliteStorageConfig | PostgresStorageConfig,
    Field(discriminator="type"),
]


# -----------------------------------------------------------------------------
# Blob Storage Configurations
# -----------------------------------------------------------------------------


class LocalFileStorageConfig(BaseModel):
    """Local filesystem storage for file bytes."""

    base_path: Path = Field(
        default=Path("./uploads"),
        description="Directory holding one file per stored blob",
    )

    @classmethod
    def sample_config(cls) -> dict[str, Any]:
        return {"base_path": "${env.UPLOAD_DIR:=./uploads}"}


class S3FileStorageConfig(BaseModel):
    """S3-compatible storage for file bytes."""

    bucket: str = Field(description="S3 bucket name")
    prefix: str = Field(default="", description="Key prefix for all files")
    region: str | None = Field(default=None, description="AWS region")
    endpoint_url: str | None = Field(
        default=None,
        description="Custom endpoint URL (for MinIO, etc.)",
    )
    access_key_id: str | None = Field(default=None)
    secret_access_key: str | None = Field(default=None)

    @classmethod
    def sample_config(cls) -> dict[str, Any]:
        return {
            "bucket": "${env.S3_BUCKET}",
            "prefix": "${env.S3_PREFIX:=}",
            "region": "${env.AWS_REGION:=us-east-1}",
            "access_key_id": "${env.AWS_ACCESS_KEY_ID}",
            "secret_access_key": "${env.AWS_SECRET_ACCESS_KEY}",
        }


# -----------------------------------------------------------------------------
# Server / Logging Configuration
# -----------------------------------------------------------------------------


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseModel):
    """structlog configuration."""

    level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    enable_access_logs: bool = Field(default=True)


# -----------------------------------------------------------------------------
# Main Service Configuration
# -----------------------------------------------------------------------------


class ServiceConfig(BaseModel):
    """Main configuration for the file upload service."""

    version: int = Field(default=1, description="Config schema version")

    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    database: DatabaseConfig = Field(
        default_factory=SqliteStorageConfig,
        description="Metadata database",
    )

    local_storage: LocalFileStorageConfig = Field(
        default_factory=LocalFileStorageConfig,
    )
    s3_storage: S3FileStorageConfig | None = Field(
        default=None,
        description="Object storage; the s3 backend is disabled when unset",
    )

    default_backend: StorageBackend = Field(default=StorageBackend.LOCAL)
    max_upload_size_mb: int = Field(default=5, description="Upload size cap in MiB")

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServiceConfig":
        """Create config from dict with environment variable substitution."""
        resolved = replace_env_vars(data)
        return cls.model_validate(resolved)

    @classmethod
    def sample_config(cls) -> dict[str, Any]:
        """Generate sample configuration for documentation."""
        return {
            "version": 1,
            "server": {
                "host": "0.0.0.0",
                "port": 3000,
            },
            "database": PostgresStorageConfig.sample_config(),
            "local_storage": LocalFileStorageConfig.sample_config(),
            "s3_storage": S3FileStorageConfig.sample_config(),
            "default_backend": "local",
            "max_upload_size_mb": 5,
        }


# -----------------------------------------------------------------------------
# Settings (for simple environment-based config)
# -----------------------------------------------------------------------------


class Settings(BaseSettings):
    """Simple settings for environment-based configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FILE_UPLOAD_",
        env_file=".env",
        case_sensitive=False,
    )

    # Config file path (if using YAML config)
    config_file: Path | None = Field(
        default=None,
        description="Path to YAML configuration file",
    )

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    database_url: str = Field(default="sqlite+aiosqlite:///./files.db")
    upload_dir: Path = Field(default=Path("./uploads"))
    default_backend: StorageBackend = Field(default=StorageBackend.LOCAL)
    max_upload_size_mb: int = Field(default=5)

    s3_bucket: str | None = Field(default=None)
    s3_prefix: str = Field(default="")
    s3_region: str | None = Field(default=None)
    s3_endpoint_url: str | None = Field(default=None)
    aws_access_key_id: str | None = Field(default=None)
    aws_secret_access_key: str | None = Field(default=None)

    def _database_config(self) -> SqliteStorageConfig | PostgresStorageConfig:
        if "sqlite" in self.database_url:
            return SqliteStorageConfig(db_path=self.database_url.split("///")[-1])

        url = make_url(self.database_url)
        return PostgresStorageConfig(
            host=url.host or "localhost",
            port=url.port or 5432,
            database=url.database or "files",
            user=url.username or "files",
            password=url.password,
        )

    def to_service_config(self) -> ServiceConfig:
        """Convert simple settings to a full ServiceConfig."""
        s3_storage = None
        if self.s3_bucket:
            s3_storage = S3FileStorageConfig(
                bucket=self.s3_bucket,
                prefix=self.s3_prefix,
                region=self.s3_region,
                endpoint_url=self.s3_endpoint_url,
                access_key_id=self.aws_access_key_id,
                secret_access_key=self.aws_secret_access_key,
            )

        return ServiceConfig(
            server=ServerConfig(host=self.host, port=self.port),
            logging=LoggingConfig(level=self.log_level, json_logs=self.json_logs),
            database=self._database_config(),
            local_storage=LocalFileStorageConfig(base_path=self.upload_dir),
            s3_storage=s3_storage,
            default_backend=self.default_backend,
            max_upload_size_mb=self.max_upload_size_mb,
        )


# Global settings instance
settings = Settings()
