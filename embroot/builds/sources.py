"""Package source acquisition.

This module handles:
- Mapping package sources to download locations
- Fetching URL, multi-file and git sources
- Populating a fresh source directory from fetched files
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from embroot.fetch.download import DownloadManager, DownloadRequest
from embroot.fetch.extract import place_source_file
from embroot.fetch.git import GitFetchResult, fetch_git
from embroot.packages.schema import PackageSpec

logger = logging.getLogger(__name__)

GitFetcher = Callable[..., GitFetchResult]


@dataclass
class FetchedSource:
    """Sources of one package available locally.

    Attributes:
        files: Verified files for URL and multi-file sources, with the
            filename each should have in the source tree.
        checkout: Git checkout, for git sources.
    """

    files: list[tuple[Path, str]] = field(default_factory=list)
    checkout: GitFetchResult | None = None

    @property
    def commit(self) -> str | None:
        return self.checkout.commit if self.checkout else None


def download_requests(spec: PackageSpec, downloads_dir: Path) -> list[DownloadRequest]:
    """Download requests for a package's URL or multi-file source.

    Files land in ``<downloads_dir>/<name>/<version>/<filename>``.
    """
    base = downloads_dir / spec.name / str(spec.version)
    return [
        DownloadRequest(url=f.url, dest=base / f.effective_filename, sha256=f.sha256)
        for f in spec.source.files()
    ]


def fetch_sources(
    spec: PackageSpec,
    downloads: DownloadManager,
    downloads_dir: Path,
    pinned_commit: str | None = None,
    git_fetcher: GitFetcher = fetch_git,
) -> FetchedSource:
    """Make a package's sources available locally.

    Args:
        spec: Package definition.
        downloads: Download manager for URL sources.
        downloads_dir: Root of the download cache.
        pinned_commit: Commit to check out for git sources.
        git_fetcher: Git fetch function.

    Returns:
        FetchedSource describing the local files or checkout.

    Raises:
        DownloadError: If a download fails.
        GitError: If a git checkout fails.
    """
    source = spec.source
    if source.kind == "git":
        ref = source.git_ref
        if source.git is None or ref is None:
            raise ValueError(f"git source of '{spec.name}' has no repository or ref")
        ref_kind, ref_value = ref
        checkout = git_fetcher(
            source.git,
            ref_kind,
            ref_value,
            downloads_dir / spec.name / "git",
            pinned_commit=pinned_commit,
        )
        return FetchedSource(checkout=checkout)

    requests = download_requests(spec, downloads_dir)
    results = downloads.fetch_all(requests)
    return FetchedSource(files=[(r.path, r.path.name) for r in results])


def prepare_source_tree(fetched: FetchedSource, src_dir: Path) -> Path:
    """Create a fresh source directory from fetched sources.

    Archives are extracted with their single top-level directory
    stripped, other files are copied, and git checkouts are copied
    without their ``.git`` directory.
    """
    if src_dir.exists():
        shutil.rmtree(src_dir)
    src_dir.parent.mkdir(parents=True, exist_ok=True)

    if fetched.checkout is not None:
        shutil.copytree(
            fetched.checkout.path,
            src_dir,
            symlinks=True,
            ignore=shutil.ignore_patterns(".git"),
        )
        return src_dir

    src_dir.mkdir()
    for path, filename in fetched.files:
        place_source_file(path, src_dir, filename)
    logger.debug("Prepared %s from %d file(s)", src_dir, len(fetched.files))
    return src_dir


__all__ = ["FetchedSource", "download_requests", "fetch_sources", "prepare_source_tree"]
