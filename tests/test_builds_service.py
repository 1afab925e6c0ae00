"""Tests for builds/service.py module.

Tests project loading, plan resolution, source fetching and build wiring
with on-disk projects and mocked orchestrators.
"""

import hashlib
from unittest.mock import MagicMock

import pytest
import yaml

from embroot.builds.report import BuildReport
from embroot.builds.service import (
    build_project,
    create_orchestrator,
    fetch_project,
    find_manifest,
    load_project,
    resolve_project,
)
from embroot.config import Settings
from embroot.fetch.download import DownloadManager
from embroot.lockfile import LockFileError
from embroot.packages.schema import ConfigurationError
from embroot.packages.universe import InMemoryUniverse


def package_yaml(name, version, depends=(), content=None):
    content = content or f"{name}-{version}".encode()
    return yaml.safe_dump(
        {
            "package": {"name": name, "version": version, "depends": list(depends)},
            "source": {
                "url": f"https://example.com/{name}-{version}.c",
                "sha256": hashlib.sha256(content).hexdigest(),
            },
            "build": {"type": "make"},
        }
    )


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


@pytest.fixture
def project_dir(tmp_path):
    root = tmp_path / "project"
    write(
        root / "embroot.yaml",
        yaml.safe_dump(
            {
                "project": {"name": "gateway"},
                "board": {"name": "rpi4", "target": "aarch64-linux-gnu"},
                "packages": {"curl": "^8.0"},
                "build": {"jobs": 2},
            }
        ),
    )
    write(root / "packages" / "zlib" / "1.2.13.yaml", package_yaml("zlib", "1.2.13"))
    write(root / "packages" / "zlib" / "1.3.1.yaml", package_yaml("zlib", "1.3.1"))
    write(root / "packages" / "curl" / "8.5.0.yaml", package_yaml("curl", "8.5.0", ["zlib"]))
    return root


@pytest.fixture
def settings(tmp_path):
    return Settings(
        build_dir=tmp_path / "build",
        downloads_dir=tmp_path / "downloads",
        cache_dir=tmp_path / "cache",
        toolchains_dir=tmp_path / "toolchains",
        db_url=f"sqlite:///{tmp_path}/state.sqlite",
        offline=True,
        jobs=8,
    )


class TestLoadProject:
    """Tests for load_project function."""

    def test_find_manifest(self, project_dir):
        """Should accept a directory or the manifest file itself."""
        assert find_manifest(project_dir) == project_dir / "embroot.yaml"
        assert find_manifest(project_dir / "embroot.yaml") == project_dir / "embroot.yaml"

    def test_resolves_package_tree(self, project_dir):
        """Should resolve requested packages from the project's package tree."""
        project = load_project(project_dir)

        plan = resolve_project(project)

        assert plan.names == ["zlib", "curl"]
        assert str(plan.get("zlib").version) == "1.3.1"
        assert project.lock_path == project_dir / "embroot.lock"

    def test_local_packages_shadow_registry(self, project_dir, make_spec):
        """Should prefer local definitions and fall back to the registry."""
        write(
            project_dir / "packages" / "curl" / "8.5.0.yaml",
            package_yaml("curl", "8.5.0", ["zlib", "openssl"]),
        )
        registry = InMemoryUniverse([make_spec("zlib", "9.9.9"), make_spec("openssl", "3.2.0")])

        plan = resolve_project(load_project(project_dir, registry=registry))

        assert str(plan.get("zlib").version) == "1.3.1"
        assert str(plan.get("openssl").version) == "3.2.0"
        assert plan.get("openssl").spec.locator == "registry"

    def test_pinned_path_source(self, project_dir):
        """Should take a pinned package only from its path."""
        write(project_dir / "vendor" / "zlib.yaml", package_yaml("zlib", "1.2.99"))
        manifest = yaml.safe_load((project_dir / "embroot.yaml").read_text())
        manifest["packages"]["zlib"] = {"version": "*", "source": "path:vendor/zlib.yaml"}
        write(project_dir / "embroot.yaml", yaml.safe_dump(manifest))

        plan = resolve_project(load_project(project_dir))

        assert str(plan.get("zlib").version) == "1.2.99"
        assert plan.get("zlib").spec.locator == "path:vendor/zlib.yaml"

    def test_pinned_source_missing(self, project_dir):
        """Should report a pinned path that does not exist."""
        manifest = yaml.safe_load((project_dir / "embroot.yaml").read_text())
        manifest["packages"]["zlib"] = {"version": "*", "source": "path:vendor/nope"}
        write(project_dir / "embroot.yaml", yaml.safe_dump(manifest))

        with pytest.raises(ConfigurationError) as exc_info:
            load_project(project_dir)

        assert exc_info.value.code == "package_source_missing"
        assert exc_info.value.fields == ["packages.zlib.source"]

    def test_missing_package_dir(self, tmp_path):
        """Should tolerate a project without a package tree."""
        write(
            tmp_path / "embroot.yaml",
            yaml.safe_dump(
                {"project": {"name": "empty"}, "board": {"target": "aarch64-linux-gnu"}}
            ),
        )
        project = load_project(tmp_path)
        assert resolve_project(project).names == []


class TestFetchProject:
    """Tests for fetch_project function."""

    def test_fetches_every_source(self, project_dir, settings):
        """Should return verified local files per package."""
        for name, version in (("zlib", "1.3.1"), ("curl", "8.5.0")):
            write(
                settings.downloads_dir / name / version / f"{name}-{version}.c",
                f"{name}-{version}",
            )
        project = load_project(project_dir)

        with DownloadManager(offline=True) as downloads:
            fetched = fetch_project(project, settings, downloads=downloads)

        assert list(fetched) == ["zlib", "curl"]
        assert fetched["curl"] == [settings.downloads_dir / "curl" / "8.5.0" / "curl-8.5.0.c"]


class TestBuildProject:
    """Tests for build_project function."""

    def test_passes_lock_path(self, project_dir, settings):
        """Should build the resolved plan and record the lock path."""
        orchestrator = MagicMock()
        orchestrator.build.return_value = BuildReport()

        plan, report = build_project(
            load_project(project_dir), settings, orchestrator=orchestrator
        )

        assert plan.names == ["zlib", "curl"]
        assert report.ok
        orchestrator.build.assert_called_once_with(
            plan, lock=None, locked=False, lock_path=project_dir / "embroot.lock"
        )

    def test_locked_requires_lock_file(self, project_dir, settings):
        """Should fail in locked mode when no lock file exists."""
        orchestrator = MagicMock()
        with pytest.raises(LockFileError) as exc_info:
            build_project(
                load_project(project_dir), settings, locked=True, orchestrator=orchestrator
            )
        assert exc_info.value.code == "lock_file_missing"
        orchestrator.build.assert_not_called()


class TestCreateOrchestrator:
    """Tests for create_orchestrator function."""

    def test_jobs_precedence(self, project_dir, settings):
        """Explicit jobs should win over the manifest, which wins over settings."""
        project = load_project(project_dir)

        from_manifest = create_orchestrator(project, settings)
        explicit = create_orchestrator(project, settings, jobs=3)

        assert from_manifest.jobs == 2
        assert explicit.jobs == 3
        assert from_manifest.board.name == "rpi4"
        from_manifest.downloads.close()
        explicit.downloads.close()

    def test_remote_cache(self, project_dir, settings):
        """Should attach a remote cache when configured."""
        settings.remote_cache_url = "https://cache.example.com"

        orchestrator = create_orchestrator(load_project(project_dir), settings)

        assert orchestrator.cache.remote is not None
        orchestrator.downloads.close()
