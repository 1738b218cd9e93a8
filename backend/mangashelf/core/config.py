"""Application configuration using Pydantic Settings."""

from __future__ import annotations

import json
import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


def _default_data_dir() -> Path:
    # /config is the mounted volume in container deployments
    if Path("/config").exists():
        return Path("/config")
    # __file__ is backend/mangashelf/core/config.py, so go up to backend/ and add data
    return (Path(__file__).parent.parent.parent / "data").resolve()


def json_config_settings_source(
    settings: BaseSettings | None = None,
) -> dict[str, Any]:  # noqa: ANN001
    """Load settings from settings.json file.

    This source has lowest priority - env vars will override JSON values.

    Returns:
        Dictionary with setting keys (lowercase) and values from JSON file.
    """
    data_dir_env = os.environ.get("MANGASHELF_DATA_DIR", "")
    if data_dir_env and Path(data_dir_env).exists():
        data_dir = Path(data_dir_env)
    else:
        data_dir = _default_data_dir()

    settings_file = data_dir / "config" / "settings.json"
    if not settings_file.exists():
        return {}

    try:
        with settings_file.open("r") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return {}

    if not isinstance(data, dict):
        return {}

    # Nested {"import": {"interval_seconds": ...}} is accepted alongside flat keys
    flattened: dict[str, Any] = {}
    for key, value in data.items():
        if key == "import" and isinstance(value, dict):
            for sub_key, sub_value in value.items():
                flattened[f"import_{sub_key}"] = sub_value
        else:
            flattened[key] = value

    return {k.lower(): v for k, v in flattened.items()}


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from:
    1. JSON file (settings.json in config directory) - lowest priority
    2. .env file
    3. Environment variables - highest priority (override JSON/.env)

    All settings are prefixed with MANGASHELF_ (e.g., MANGASHELF_LIBRARY_DIR=/manga).

    See: https://docs.pydantic.dev/latest/concepts/pydantic_settings/
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MANGASHELF_",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources - JSON file first, then env vars.

        Priority (lowest to highest):
        1. JSON file (settings.json)
        2. .env file
        3. Environment variables
        4. Init settings (values passed to Settings()) - highest priority
        """
        return (  # type: ignore[return-value]
            json_config_settings_source,
            dotenv_settings,
            env_settings,
            init_settings,
        )

    # Application
    env: Literal["development", "production", "testing"] = Field(
        default="development",
        description="Application environment (development, production, testing)",
    )

    host_bind_address: str = Field(
        default="127.0.0.1",
        description="Host address to bind the server to",
    )

    host_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port number to bind the server to",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    data_dir: Path = Field(
        default_factory=_default_data_dir,
        description="Base directory for application data (config, database, logs)",
    )

    # Import engine paths
    library_dir: Path | None = Field(
        default=None,
        description="Canonical library root ({title} [id-N]/vNN/pages). Defaults to <data_dir>/manga",
    )

    downloads_dir: Path = Field(
        default=Path("/downloads"),
        description="Downloads root; relative download paths are resolved against it",
    )

    extract_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "mangashelf-extract",
        description="Root for temporary archive extraction directories",
    )

    # Download client
    deluge_url: str | None = Field(
        default=None,
        description="Deluge Web UI URL (e.g., http://deluge:8112); unset disables completion polling",
    )

    deluge_password: str = Field(
        default="deluge",
        description="Deluge Web UI password",
    )

    # Import engine scheduling
    auto_import_enabled: bool = Field(
        default=True,
        description="Run the periodic import pass on startup",
    )

    import_interval_seconds: int = Field(
        default=300,
        gt=0,
        description="Seconds between two periodic import passes",
    )

    archiver_timeout_seconds: int = Field(
        default=120,
        gt=0,
        description="Timeout for external archiver processes (bsdtar, 7z)",
    )

    # Import engine heuristics
    duplicate_page_tolerance: float = Field(
        default=0.05,
        ge=0.0,
        lt=1.0,
        description="Page counts within this fraction of the larger count are treated as tied",
    )

    spread_max_gap: int = Field(
        default=2,
        ge=1,
        description="Largest N-M gap still read as a two-page spread rather than sub-numbering",
    )

    unparseable_page_ratio: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Share of unnumbered pages above which a volume is sorted by filename",
    )

    @property
    def config_dir(self) -> Path:
        """Directory for configuration files (settings.json, etc.)."""
        return self.data_dir / "config"

    @property
    def database_dir(self) -> Path:
        """Directory for database files."""
        return self.data_dir / "database"

    @property
    def logs_dir(self) -> Path:
        """Directory for log files."""
        return self.data_dir / "logs"

    @property
    def manga_dir(self) -> Path:
        """Canonical library root."""
        return self.library_dir if self.library_dir is not None else self.data_dir / "manga"

    @property
    def database_file(self) -> Path:
        return self.database_dir / "mangashelf.db"

    @property
    def is_debug(self) -> bool:
        """Check if running in debug/development mode."""
        return self.env == "development"

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def is_testing(self) -> bool:
        return self.env == "testing"

    def model_post_init(self, __context: object) -> None:
        """Post-initialization: create data directories if they don't exist."""
        self.data_dir = self.data_dir.resolve()

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.database_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        self.manga_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached settings instance.

    Creates and caches the settings instance on first call.
    The cache is cleared when reload_settings() is called.
    """
    return Settings()


def reload_settings() -> Settings:
    """Reload settings from all sources (JSON, .env, env vars).

    Clears the cache and creates a new Settings instance.
    """
    get_settings.cache_clear()
    return get_settings()
