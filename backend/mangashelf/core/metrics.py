"""Prometheus metrics configuration."""

from __future__ import annotations

import structlog
from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

logger = structlog.get_logger("mangashelf.metrics")

# Application info
app_info = Gauge(
    "app_info",
    "Application information",
    ["version"],
)

# Database retry operation metrics
db_retry_attempts_total = Counter(
    "db_retry_attempts_total",
    "Total number of database operation retry attempts",
    ["operation_type"],
)
db_lock_errors_total = Counter(
    "db_lock_errors_total",
    "Total number of database lock errors encountered",
)
db_retries_succeeded_total = Counter(
    "db_retries_succeeded_total",
    "Total number of database operations that succeeded after retry",
    ["operation_type"],
)
db_retries_failed_total = Counter(
    "db_retries_failed_total",
    "Total number of database operations that failed after all retries",
    ["operation_type"],
)
db_retry_duration_seconds = Histogram(
    "db_retry_duration_seconds",
    "Duration of database retry operations in seconds",
    ["operation_type"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Import engine metrics
volumes_imported_total = Counter(
    "mangashelf_volumes_imported_total",
    "Total number of volumes copied into the library",
    ["mode"],  # mode: single, batch
)
volumes_failed_total = Counter(
    "mangashelf_volumes_failed_total",
    "Total number of volume or batch import failures",
    ["reason"],  # reason: extraction, no_volume_folders, no_images, missing_from_bundle, error
)
volumes_already_imported_total = Counter(
    "mangashelf_volumes_already_imported_total",
    "Total number of volumes skipped because they already exist in the library",
)
duplicate_candidates_rejected_total = Counter(
    "mangashelf_duplicate_candidates_rejected_total",
    "Total number of competing volume folders discarded by duplicate resolution",
)
ambiguous_folders_total = Counter(
    "mangashelf_ambiguous_folders_total",
    "Total number of folders dropped because their volume number was ambiguous",
)
extraction_failures_total = Counter(
    "mangashelf_extraction_failures_total",
    "Total number of archive extraction failures",
)
import_passes_total = Counter(
    "mangashelf_import_passes_total",
    "Total number of import passes",
    ["result"],  # result: completed, skipped_busy, error
)
import_pass_duration_seconds = Histogram(
    "mangashelf_import_pass_duration_seconds",
    "Duration of a full import pass in seconds",
    buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)


def setup_metrics(app: FastAPI, app_version: str) -> None:
    """Setup Prometheus metrics using prometheus-fastapi-instrumentator.

    Args:
        app: FastAPI application instance
        app_version: Application version
    """
    if getattr(app.state, "_metrics_initialized", False):
        logger.debug("Metrics already initialized for this app instance, skipping")
        return

    instrumentator = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=[
            "/metrics",
            "/docs",
            "/openapi.json",
            "/redoc",
        ],
    )

    # Instrument the app (this adds middleware automatically)
    instrumentator.instrument(app).expose(app, endpoint="/metrics")

    app.state._metrics_initialized = True

    app_info.labels(version=app_version).set(1)

    logger.info("Metrics initialized", version=app_version)
