"""Project build service.

This module provides the high-level API behind the CLI:
- load_project(): manifest plus the layered package universe
- resolve_project(): the build plan
- fetch_project(): download every source of the plan
- build_project(): run the orchestrator, honoring locked mode
- create_*(): collaborators wired from Settings
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from embroot.builds.orchestrator import Orchestrator
from embroot.builds.report import BuildReport
from embroot.builds.runner import StepRunner
from embroot.builds.sources import download_requests, fetch_sources
from embroot.builds.stamps import StampStore
from embroot.cache.remote import RemoteCache
from embroot.cache.store import BuildCache
from embroot.config import Settings
from embroot.db import init_stamp_database
from embroot.fetch.download import DownloadManager, DownloadRequest
from embroot.fetch.git import fetch_git
from embroot.lockfile.model import LOCK_FILE_NAME, LockFile, read_lock_file
from embroot.manifest import MANIFEST_FILE_NAME, ProjectManifest, load_manifest
from embroot.packages.io import load_package, load_packages_from_directory
from embroot.packages.schema import ConfigurationError, PackageSpec
from embroot.packages.universe import (
    DirectoryUniverse,
    InMemoryUniverse,
    LayeredUniverse,
    PackageUniverse,
)
from embroot.resolver.service import BuildPlan, resolve
from embroot.toolchain.cache import ToolchainCache

logger = logging.getLogger(__name__)


@dataclass
class Project:
    """A loaded project.

    Attributes:
        root: Directory holding the manifest.
        manifest: Validated manifest.
        universe: Packages available to the resolver.
    """

    root: Path
    manifest: ProjectManifest
    universe: PackageUniverse

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILE_NAME


def find_manifest(path: Path) -> Path:
    """Return the manifest file for a project directory or manifest path."""
    return path / MANIFEST_FILE_NAME if path.is_dir() else path


def _load_pinned(root: Path, name: str, locator: str) -> list[PackageSpec]:
    relative = locator.removeprefix("path:")
    location = root / relative
    if location.is_dir():
        result = load_packages_from_directory(location)
        if result.errors:
            path, message = next(iter(result.errors.items()))
            raise ConfigurationError(message, fields=[path], code="invalid_package")
        specs = result.packages
    elif location.is_file():
        specs = [load_package(location)]
    else:
        raise ConfigurationError(
            f"Source of package '{name}' not found: {location}",
            fields=[f"packages.{name}.source"],
            code="package_source_missing",
        )

    matching = [s for s in specs if s.name == name]
    if not matching:
        raise ConfigurationError(
            f"No definition of package '{name}' at {location}",
            fields=[f"packages.{name}.source"],
            code="package_source_missing",
        )
    return [s.with_origin(f"path:{relative}", s.base_dir) for s in matching]


def load_project(path: Path, registry: PackageUniverse | None = None) -> Project:
    """Load a project and assemble its package universe.

    Packages pinned to a ``path:`` source come first, then the project's
    package directories, then ``registry``.

    Args:
        path: Project directory or manifest file.
        registry: Universe of registry records, if any.

    Returns:
        The loaded Project.

    Raises:
        ConfigurationError: If the manifest or a package definition is invalid.
    """
    manifest_path = find_manifest(path)
    manifest = load_manifest(manifest_path)
    root = manifest_path.parent

    pinned = InMemoryUniverse()
    for name, locator in manifest.sources().items():
        if locator.startswith("path:"):
            for spec in _load_pinned(root, name, locator):
                pinned.add(spec)

    layers: list[PackageUniverse] = [pinned]
    for directory in manifest.package_dirs(root):
        if directory.is_dir():
            layers.append(DirectoryUniverse(directory))
        else:
            logger.debug("Package directory %s does not exist", directory)
    if registry is not None:
        layers.append(registry)
    return Project(root=root, manifest=manifest, universe=LayeredUniverse(*layers))


def resolve_project(project: Project) -> BuildPlan:
    """Resolve the project's requested packages into a build plan."""
    return resolve(project.manifest.requested(), project.universe)


def create_download_manager(settings: Settings) -> DownloadManager:
    return DownloadManager(
        max_concurrent=settings.max_concurrent_downloads,
        retries=settings.download_retries,
        base_delay=settings.retry_base_delay,
        timeout=settings.download_timeout,
        offline=settings.offline,
    )


def create_build_cache(settings: Settings) -> BuildCache:
    remote = RemoteCache(settings.remote_cache_url) if settings.remote_cache_url else None
    return BuildCache(settings.cache_dir, remote=remote)


def create_stamp_store(settings: Settings) -> StampStore:
    return StampStore(init_stamp_database(settings.db_url))


def create_orchestrator(
    project: Project,
    settings: Settings,
    jobs: int | None = None,
    downloads: DownloadManager | None = None,
    runner: StepRunner | None = None,
) -> Orchestrator:
    """Wire an orchestrator for a project from settings.

    Args:
        project: Loaded project.
        settings: Application settings.
        jobs: Parallel packages; defaults to the manifest, then settings.
        downloads: Download manager; created from settings if None.
        runner: Step runner; subprocess-based if None.
    """
    downloads = downloads or create_download_manager(settings)
    return Orchestrator(
        settings=settings,
        board=project.manifest.board,
        downloads=downloads,
        toolchains=ToolchainCache(settings.toolchains_dir, downloads),
        cache=create_build_cache(settings),
        stamps=create_stamp_store(settings),
        runner=runner,
        option_overrides=project.manifest.options,
        jobs=jobs or project.manifest.build.jobs or settings.jobs,
    )


def fetch_project(
    project: Project,
    settings: Settings,
    plan: BuildPlan | None = None,
    downloads: DownloadManager | None = None,
) -> dict[str, list[Path]]:
    """Download every source of the project's plan.

    Args:
        project: Loaded project.
        settings: Application settings.
        plan: Build plan; resolved if None.
        downloads: Download manager; created from settings if None.

    Returns:
        Local source paths per package, in plan order.

    Raises:
        DownloadError: If any download fails, after all others finish.
        GitError: If a git checkout fails.
    """
    plan = plan or resolve_project(project)
    owns_downloads = downloads is None
    manager = downloads or create_download_manager(settings)
    fetched: dict[str, list[Path]] = {name: [] for name in plan.names}
    try:
        requests: list[DownloadRequest] = []
        owners: list[str] = []
        for planned in plan.packages:
            if planned.spec.source.kind == "git":
                result = fetch_sources(
                    planned.spec, manager, settings.downloads_dir, git_fetcher=fetch_git
                )
                if result.checkout is not None:
                    fetched[planned.name].append(result.checkout.path)
                continue
            package_requests = download_requests(planned.spec, settings.downloads_dir)
            requests.extend(package_requests)
            owners.extend(planned.name for _ in package_requests)

        for owner, download in zip(owners, manager.fetch_all(requests)):
            fetched[owner].append(download.path)
    finally:
        if owns_downloads:
            manager.close()
    return fetched


def build_project(
    project: Project,
    settings: Settings,
    locked: bool = False,
    jobs: int | None = None,
    orchestrator: Orchestrator | None = None,
) -> tuple[BuildPlan, BuildReport]:
    """Resolve and build a project.

    The lock file is read in locked mode and rewritten after every
    successful build otherwise.

    Args:
        project: Loaded project.
        settings: Application settings.
        locked: Require the plan to match the lock file.
        jobs: Parallel packages.
        orchestrator: Orchestrator to use; created from settings if None.

    Returns:
        The plan and the build report.

    Raises:
        ConfigurationError: If options or patches are invalid.
        ResolutionError: If the requested packages cannot be resolved.
        LockFileError: If locked mode is requested without a readable lock file.
        LockMismatchError: If the plan diverges from the lock file.
    """
    plan = resolve_project(project)
    lock: LockFile | None = read_lock_file(project.lock_path) if locked else None

    owns_orchestrator = orchestrator is None
    orchestrator = orchestrator or create_orchestrator(project, settings, jobs=jobs)
    try:
        report = orchestrator.build(
            plan, lock=lock, locked=locked, lock_path=project.lock_path
        )
    finally:
        if owns_orchestrator:
            orchestrator.downloads.close()
    return plan, report


__all__ = [
    "Project",
    "build_project",
    "create_build_cache",
    "create_download_manager",
    "create_orchestrator",
    "create_stamp_store",
    "fetch_project",
    "find_manifest",
    "load_project",
    "resolve_project",
]
