"""Tests for manifest module."""

import pytest
import yaml

from embroot.manifest import load_manifest, parse_manifest_data
from embroot.packages.schema import ConfigurationError
from embroot.versions import Version


def manifest_data(**overrides):
    data = {
        "project": {"name": "gateway"},
        "board": {"name": "rpi4", "target": "aarch64-linux-gnu", "cpu": "cortex_a72"},
        "packages": {"busybox": "^1.36"},
    }
    data.update(overrides)
    return data


class TestPackages:
    """Tests for the packages section."""

    def test_shorthand_constraint(self):
        """Should accept name: constraint."""
        manifest = parse_manifest_data(manifest_data())
        constraint = manifest.requested()["busybox"]
        assert constraint.allows(Version.parse("1.36.1"))
        assert not constraint.allows(Version.parse("2.0.0"))

    def test_bare_version_is_exact(self):
        """Should treat a bare version as an exact pin."""
        manifest = parse_manifest_data(manifest_data(packages={"zlib": "1.3.1"}))
        constraint = manifest.requested()["zlib"]
        assert constraint.allows(Version.parse("1.3.1"))
        assert not constraint.allows(Version.parse("1.3.2"))

    def test_null_means_any(self):
        """Should accept an empty constraint as any version."""
        manifest = parse_manifest_data(manifest_data(packages={"zlib": None}))
        assert manifest.packages["zlib"].version == "*"

    def test_full_form_with_source(self):
        """Should accept a mapping with version and source."""
        manifest = parse_manifest_data(
            manifest_data(
                packages={
                    "busybox": "^1.36",
                    "mylib": {"version": "1.0.0", "source": "path:vendor/mylib"},
                }
            )
        )
        assert manifest.sources() == {"mylib": "path:vendor/mylib"}
        assert set(manifest.requested()) == {"busybox", "mylib"}

    def test_invalid_constraint(self):
        """Should report the offending package field."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_manifest_data(manifest_data(packages={"busybox": ">=abc"}))
        assert exc_info.value.code == "invalid_manifest"
        assert exc_info.value.fields == ["packages.busybox.version"]

    def test_unsupported_source(self):
        """Should reject unknown source locators."""
        with pytest.raises(ConfigurationError):
            parse_manifest_data(
                manifest_data(packages={"mylib": {"source": "ftp://example.com"}})
            )


class TestBoard:
    """Tests for the board descriptor."""

    def test_requires_target(self):
        """Should require a target triple."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_manifest_data(manifest_data(board={"name": "rpi4"}))
        assert "board.target" in exc_info.value.fields

    def test_env(self):
        """Should expose board options as BOARD_ variables."""
        manifest = parse_manifest_data(
            manifest_data(
                board={
                    "target": "aarch64-linux-gnu",
                    "options": {"console": "ttyS0", "has_wifi": True},
                }
            )
        )
        assert manifest.board.env() == {"BOARD_CONSOLE": "ttyS0", "BOARD_HAS_WIFI": "1"}
        assert manifest.board.name == "generic"

    def test_snapshot_sorted(self):
        """Should produce an order-independent snapshot."""
        first = parse_manifest_data(
            manifest_data(board={"target": "x", "features": ["neon", "crc"]})
        )
        second = parse_manifest_data(
            manifest_data(board={"target": "x", "features": ["crc", "neon"]})
        )
        assert first.board.snapshot() == second.board.snapshot()


class TestLoadManifest:
    """Tests for load_manifest function."""

    def test_load(self, tmp_path):
        """Should load a manifest file."""
        path = tmp_path / "embroot.yaml"
        path.write_text(yaml.safe_dump(manifest_data(options={"busybox": {"static": True}})))

        manifest = load_manifest(path)

        assert manifest.project.name == "gateway"
        assert manifest.options == {"busybox": {"static": True}}
        assert manifest.package_dirs(tmp_path) == [tmp_path / "packages"]

    def test_missing(self, tmp_path):
        """Should raise manifest_missing."""
        with pytest.raises(ConfigurationError) as exc_info:
            load_manifest(tmp_path / "embroot.yaml")
        assert exc_info.value.code == "manifest_missing"

    def test_not_a_mapping(self, tmp_path):
        """Should reject documents that are not mappings."""
        path = tmp_path / "embroot.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_manifest(path)
        assert exc_info.value.code == "parse_error"
