"""Observability infrastructure for the file upload service."""

from file_upload_service.observability.logging import configure_logging, get_logger
from file_upload_service.observability.metrics import metrics_registry, setup_metrics

__all__ = ["configure_logging", "get_logger", "metrics_registry", "setup_metrics"]
