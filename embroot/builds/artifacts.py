"""Installed-tree artifacts.

This module handles:
- Packing a staging tree into a single deterministic ``.tar.gz`` blob
- Unpacking a blob into a staging tree
- Measuring installed trees for build reports

Identical trees always pack to identical bytes: entries are sorted,
timestamps and ownership are zeroed and the gzip header carries no mtime.
"""

from __future__ import annotations

import gzip
import logging
import os
import tarfile
from dataclasses import dataclass
from pathlib import Path

from embroot.fetch.checksum import compute_file_sha256

logger = logging.getLogger(__name__)


class ArtifactError(Exception):
    """Raised when an installed tree cannot be packed or unpacked."""

    def __init__(self, message: str, code: str = "artifact_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class PackedArtifact:
    """A packed installed tree.

    Attributes:
        path: Blob path.
        sha256: Digest of the blob bytes.
        size_bytes: Blob size.
        file_count: Regular files in the tree.
    """

    path: Path
    sha256: str
    size_bytes: int
    file_count: int


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def _walk_sorted(root: Path) -> list[Path]:
    paths: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        base = Path(dirpath)
        for name in sorted(dirnames + filenames):
            paths.append(base / name)
    return sorted(paths, key=lambda p: p.relative_to(root).as_posix())


def pack_tree(src_dir: Path, dest_file: Path) -> PackedArtifact:
    """Pack a directory tree into a deterministic gzip-compressed tar.

    Args:
        src_dir: Tree to pack.
        dest_file: Blob path to write.

    Returns:
        PackedArtifact describing the blob.

    Raises:
        ArtifactError: If the tree cannot be read or the blob written.
    """
    dest_file.parent.mkdir(parents=True, exist_ok=True)
    file_count = 0
    try:
        with dest_file.open("wb") as raw, gzip.GzipFile(
            filename="", mode="wb", fileobj=raw, mtime=0
        ) as gz, tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for path in _walk_sorted(src_dir):
                arcname = path.relative_to(src_dir).as_posix()
                info = _normalize(tar.gettarinfo(str(path), arcname=arcname))
                if info.isfile():
                    file_count += 1
                    with path.open("rb") as f:
                        tar.addfile(info, f)
                else:
                    tar.addfile(info)
    except OSError as e:
        dest_file.unlink(missing_ok=True)
        raise ArtifactError(f"Failed to pack {src_dir}: {e}", code="pack_error") from e

    digest = compute_file_sha256(dest_file)
    return PackedArtifact(
        path=dest_file,
        sha256=digest,
        size_bytes=dest_file.stat().st_size,
        file_count=file_count,
    )


def unpack_tree(blob: Path, dest_dir: Path) -> Path:
    """Unpack a blob produced by ``pack_tree`` into ``dest_dir``.

    Raises:
        ArtifactError: If the blob is unreadable or contains unsafe paths.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(blob, "r:gz") as tar:
            for member in tar.getmembers():
                member_path = Path(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ArtifactError(
                        f"Refusing to extract {member.name}: path traversal detected",
                        code="path_traversal",
                    )
            tar.extractall(dest_dir, filter="data")
    except (tarfile.TarError, OSError) as e:
        raise ArtifactError(f"Failed to unpack {blob}: {e}", code="unpack_error") from e
    return dest_dir


def tree_size(root: Path) -> int:
    """Total size in bytes of regular files under ``root``."""
    if not root.is_dir():
        return 0
    return sum(p.stat().st_size for p in root.rglob("*") if p.is_file() and not p.is_symlink())


__all__ = [
    "ArtifactError",
    "PackedArtifact",
    "pack_tree",
    "tree_size",
    "unpack_tree",
]
