"""Configuration settings for embroot.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_root() -> Path:
    """Return the root of all embroot caches."""
    return Path.home() / ".cache" / "embroot"


def _default_cache_dir() -> Path:
    """Return the default build cache directory."""
    return _default_cache_root() / "build-cache"


def _default_downloads_dir() -> Path:
    """Return the default source download directory."""
    return _default_cache_root() / "downloads"


def _default_toolchains_dir() -> Path:
    """Return the default external toolchain directory."""
    return _default_cache_root() / "toolchains"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "embroot" / "state.sqlite"
    return f"sqlite:///{db_path}"


def _default_jobs() -> int:
    return os.cpu_count() or 1


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the EMBROOT_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="EMBROOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory for the content-addressed build cache",
    )
    downloads_dir: Path = Field(
        default_factory=_default_downloads_dir,
        description="Directory for downloaded package sources",
    )
    toolchains_dir: Path = Field(
        default_factory=_default_toolchains_dir,
        description="Directory for extracted external toolchains",
    )
    build_dir: Path = Field(
        default=Path("build"),
        description="Work directory for sources, staging trees and logs",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database URL for incremental build stamps",
    )

    # Operational modes
    offline: bool = Field(
        default=False,
        description="Offline mode - do not download sources or toolchains",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    remote_cache_url: str | None = Field(
        default=None,
        description="Optional remote build cache consulted on local misses",
    )

    # Toolchain
    default_compiler: str = Field(
        default="zig",
        description="Built-in cross compiler command",
    )
    compiler_version: str = Field(
        default="0.11.0",
        description="Version identity of the built-in compiler",
    )

    # Concurrency
    jobs: int = Field(
        default_factory=_default_jobs,
        ge=1,
        description="Number of packages built in parallel",
    )
    max_concurrent_downloads: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum concurrent source downloads",
    )

    # Retries
    download_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total download attempts per artifact",
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0,
        description="Base delay in seconds for exponential download backoff",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=3600,
        ge=1,
        description="Timeout for a single download request",
    )
    build_timeout: int = Field(
        default=3600,
        ge=1,
        description="Timeout for a single build step",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
