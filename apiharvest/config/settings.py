"""
Settings for apiharvest.

Settings are read once from APIHARVEST_* environment variables and cached.
Components accept explicit constructor arguments and fall back to these
settings only when the caller passes nothing.

Environment:
    APIHARVEST_SERVICE_NAME          service name used in structured logs
    APIHARVEST_ENVIRONMENT           development | staging | production
    APIHARVEST_DEBUG                 "true" to enable debug mode
    APIHARVEST_LOG_LEVEL             DEBUG, INFO, ...
    APIHARVEST_LOG_FORMAT            "text" or "json"
    APIHARVEST_HTTP_TIMEOUT          outbound request timeout in seconds
    APIHARVEST_GRAPHQL_MAX_TYPE_DEPTH  bound on NON_NULL/LIST unwrapping
    APIHARVEST_FOREACH_CONCURRENCY   default per-item concurrency for ForEach
    APIHARVEST_RETRY_DEFAULT_ATTEMPTS  default max_attempts for Retry steps
    APIHARVEST_STORAGE_DIR           base directory for StoreDisk output
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_JSON_FORMAT = "%(message)s"


class HarvestSettings(BaseModel):
    """Typed settings model."""

    # Service identity
    service_name: str = "apiharvest"
    environment: str = "development"
    debug: bool = False

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: Literal["text", "json"] = Field(default="text", description="Log line format")

    # Outbound calls
    http_timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")

    # Importers
    graphql_max_type_depth: int = Field(
        default=32, ge=1, description="Maximum NON_NULL/LIST wrapper depth"
    )

    # Execution
    foreach_concurrency: int = Field(default=1, ge=1, description="Default ForEach concurrency")
    retry_default_attempts: int = Field(default=3, ge=1, description="Default Retry attempts")
    storage_dir: str = Field(default="data", description="Base directory for StoreDisk")

    class Config:
        populate_by_name = True


@lru_cache()
def get_settings() -> HarvestSettings:
    """
    Get settings from the environment.

    Uses lru_cache for singleton pattern; call reset_settings() after
    changing the environment.
    """
    return HarvestSettings(
        service_name=os.getenv("APIHARVEST_SERVICE_NAME", "apiharvest"),
        environment=os.getenv("APIHARVEST_ENVIRONMENT", "development"),
        debug=os.getenv("APIHARVEST_DEBUG", "false").lower() == "true",
        log_level=os.getenv("APIHARVEST_LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("APIHARVEST_LOG_FORMAT", "text").lower(),
        http_timeout=float(os.getenv("APIHARVEST_HTTP_TIMEOUT", "30.0")),
        graphql_max_type_depth=int(os.getenv("APIHARVEST_GRAPHQL_MAX_TYPE_DEPTH", "32")),
        foreach_concurrency=int(os.getenv("APIHARVEST_FOREACH_CONCURRENCY", "1")),
        retry_default_attempts=int(os.getenv("APIHARVEST_RETRY_DEFAULT_ATTEMPTS", "3")),
        storage_dir=os.getenv("APIHARVEST_STORAGE_DIR", "data"),
    )


def reset_settings() -> None:
    """Drop the cached settings (useful for testing)."""
    get_settings.cache_clear()


def configure_logging(settings: HarvestSettings | None = None) -> None:
    """Configure stdlib logging from settings."""
    settings = settings or get_settings()
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level, logging.INFO)
    fmt = _JSON_FORMAT if settings.log_format == "json" else _TEXT_FORMAT

    logging.basicConfig(level=level, format=fmt, force=True)
    logging.getLogger("httpx").setLevel(logging.WARNING)
