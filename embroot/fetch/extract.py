"""Source archive extraction.

This module handles:
- Extracting tar archives (gz, bz2, xz, plain) with path traversal checks
- Flattening a single top-level directory into the destination
- Copying non-archive source files as-is
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz")


class ExtractionError(Exception):
    """Raised when archive extraction fails."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        """Initialize ExtractionError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


def is_tar_archive(path: Path) -> bool:
    return path.name.lower().endswith(TAR_SUFFIXES)


def _move_contents(src: Path, dest: Path) -> None:
    for child in src.iterdir():
        target = dest / child.name
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        elif target.exists() or target.is_symlink():
            target.unlink()
        shutil.move(str(child), target)


def extract_archive(archive_path: Path, dest_dir: Path, strip_top_level: bool = True) -> Path:
    """Extract a tar archive into ``dest_dir``.

    When the archive holds a single top-level directory and
    ``strip_top_level`` is set, that directory's contents land directly
    in ``dest_dir``.

    Args:
        archive_path: Path to the archive file.
        dest_dir: Destination directory.
        strip_top_level: Flatten a single top-level directory.

    Returns:
        The destination directory.

    Raises:
        ExtractionError: If the archive is unreadable, empty or unsafe.
    """
    logger.info("Extracting %s to %s", archive_path.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        with tarfile.open(archive_path, "r:*") as tar:
            members = tar.getmembers()
            if not members:
                raise ExtractionError(
                    f"Archive {archive_path} is empty", code="empty_archive"
                )
            for member in members:
                # Security: prevent path traversal
                member_path = Path(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ExtractionError(
                        f"Refusing to extract {member.name}: path traversal detected",
                        code="path_traversal",
                    )

            with tempfile.TemporaryDirectory(dir=dest_dir.parent) as staging:
                staging_path = Path(staging)
                tar.extractall(staging_path, filter="data")
                entries = list(staging_path.iterdir())
                if strip_top_level and len(entries) == 1 and entries[0].is_dir():
                    _move_contents(entries[0], dest_dir)
                else:
                    _move_contents(staging_path, dest_dir)
    except tarfile.TarError as e:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {e}", code="tar_error"
        ) from e
    except OSError as e:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {e}", code="io_error"
        ) from e

    return dest_dir


def place_source_file(path: Path, dest_dir: Path, filename: str | None = None) -> Path:
    """Extract an archive or copy a plain file into the source directory."""
    if is_tar_archive(path):
        return extract_archive(path, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    target = dest_dir / (filename or path.name)
    shutil.copy2(path, target)
    return target


__all__ = ["ExtractionError", "extract_archive", "is_tar_archive", "place_source_file"]
