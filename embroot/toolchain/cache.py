"""External toolchain cache.

External toolchains are downloaded and extracted once per resolved URL.
Concurrent requests for the same URL wait for the first one; different
URLs install in parallel.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import threading
from pathlib import Path

from embroot.fetch.download import DownloadError, DownloadManager
from embroot.fetch.extract import ExtractionError, extract_archive
from embroot.toolchain.models import ResolvedToolchain, ToolchainEnvironment
from embroot.toolchain.resolver import ToolchainError, default_environment

logger = logging.getLogger(__name__)

COMPLETE_MARKER = ".complete"


def toolchain_key(url: str) -> str:
    """Directory name for a toolchain URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


def find_gcc_prefix(root: Path) -> str:
    """Find the cross prefix of the GCC in ``root/bin`` (e.g. ``aarch64-linux-``).

    Raises:
        ToolchainError: If no ``*-gcc`` executable exists.
    """
    candidates = sorted(p.name for p in (root / "bin").glob("*-gcc") if p.is_file())
    if not candidates:
        raise ToolchainError(
            f"No '*-gcc' compiler found in {root / 'bin'}", code="invalid_toolchain"
        )
    return candidates[0][: -len("gcc")]


class ToolchainCache:
    """Installs external toolchains under ``root``, keyed by URL.

    Args:
        root: Directory holding extracted toolchains.
        downloads: Download manager used to fetch archives.
    """

    def __init__(self, root: Path, downloads: DownloadManager) -> None:
        self.root = root
        self.downloads = downloads
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, url: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(url, threading.Lock())

    def path_for(self, url: str) -> Path:
        return self.root / toolchain_key(url)

    def is_installed(self, url: str) -> bool:
        return (self.path_for(url) / COMPLETE_MARKER).is_file()

    def install(self, url: str) -> Path:
        """Download and extract a toolchain unless already installed.

        Args:
            url: Toolchain archive URL.

        Returns:
            The toolchain root directory.

        Raises:
            ToolchainError: If download or extraction fails.
        """
        with self._lock_for(url):
            target = self.path_for(url)
            if (target / COMPLETE_MARKER).is_file():
                logger.debug("Toolchain already installed: %s", target)
                return target

            if target.exists():
                shutil.rmtree(target)
            archive_name = url.rstrip("/").rsplit("/", 1)[-1]
            archive = self.root / f"{toolchain_key(url)}-{archive_name}"
            try:
                result = self.downloads.fetch(url, archive, None, force=True)
                extract_archive(archive, target)
            except (DownloadError, ExtractionError) as e:
                shutil.rmtree(target, ignore_errors=True)
                raise ToolchainError(
                    f"Failed to install toolchain from {url}: {e}",
                    code="toolchain_install_failed",
                ) from e
            finally:
                archive.unlink(missing_ok=True)

            (target / COMPLETE_MARKER).write_text(f"{url}\n{result.checksum}\n", encoding="utf-8")
            logger.info("Installed toolchain %s to %s", url, target)
            return target

    def environment(self, toolchain: ResolvedToolchain) -> ToolchainEnvironment:
        """Return a ready compiler environment, installing if needed.

        Args:
            toolchain: Resolved toolchain.

        Returns:
            ToolchainEnvironment with compiler commands.

        Raises:
            ToolchainError: If the toolchain cannot be installed or is unusable.
        """
        if toolchain.url is None:
            return default_environment(toolchain)

        root = self.install(toolchain.url)
        prefix = find_gcc_prefix(root)
        bin_dir = root / "bin"
        return ToolchainEnvironment(
            target=toolchain.target,
            identity=toolchain.identity,
            cc=str(bin_dir / f"{prefix}gcc"),
            cxx=str(bin_dir / f"{prefix}g++"),
            ar=str(bin_dir / f"{prefix}ar"),
            bin_dir=bin_dir,
        )


__all__ = ["COMPLETE_MARKER", "ToolchainCache", "find_gcc_prefix", "toolchain_key"]
