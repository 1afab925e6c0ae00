"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from embroot.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        settings = Settings()

        assert settings.cache_dir == Path.home() / ".cache" / "embroot" / "build-cache"
        assert settings.downloads_dir == Path.home() / ".cache" / "embroot" / "downloads"
        assert settings.build_dir == Path("build")
        assert "sqlite" in settings.db_url
        assert settings.offline is False
        assert settings.log_level == "INFO"
        assert settings.remote_cache_url is None
        assert settings.jobs >= 1
        assert settings.download_retries == 3

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "EMBROOT_OFFLINE": "true",
                "EMBROOT_LOG_LEVEL": "DEBUG",
                "EMBROOT_JOBS": "4",
                "EMBROOT_REMOTE_CACHE_URL": "https://cache.example.com",
            },
        ):
            settings = Settings()
            assert settings.offline is True
            assert settings.log_level == "DEBUG"
            assert settings.jobs == 4
            assert settings.remote_cache_url == "https://cache.example.com"

    def test_settings_cache_dir_from_env(self) -> None:
        """Cache dir should be configurable via env."""
        with patch.dict(os.environ, {"EMBROOT_CACHE_DIR": "/tmp/test-cache"}):
            settings = Settings()
            assert settings.cache_dir == Path("/tmp/test-cache")

    def test_invalid_jobs(self) -> None:
        """Jobs must be at least one."""
        with patch.dict(os.environ, {"EMBROOT_JOBS": "0"}):
            with pytest.raises(ValidationError):
                Settings()


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        settings = get_settings()
        assert isinstance(settings, Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_print_settings_json(self) -> None:
        """print_settings_json should return valid JSON."""
        settings = Settings()
        json_str = print_settings_json(settings)

        parsed = json.loads(json_str)

        assert "cache_dir" in parsed
        assert "downloads_dir" in parsed
        assert "db_url" in parsed
        assert "offline" in parsed
        assert "build_timeout" in parsed
