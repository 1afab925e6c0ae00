"""Content-addressable build cache.

This module handles:
- Storing packed installed trees keyed by build fingerprint
- Verifying stored blobs against their recorded digest on read
- Atomic, per-key serialized writes
- Whole-store export and import
- Explicit pruning and usage reporting

Layout::

    <root>/objects/<fp[:2]>/<fp>.tar.gz   packed installed tree
    <root>/objects/<fp[:2]>/<fp>.json     metadata (written last)
"""

from __future__ import annotations

import fcntl
import io
import json
import logging
import os
import re
import shutil
import tarfile
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from embroot.builds.artifacts import ArtifactError, unpack_tree
from embroot.fetch.checksum import compute_file_sha256
from embroot.types import PutResult

if TYPE_CHECKING:
    from embroot.cache.remote import RemoteCache

logger = logging.getLogger(__name__)

FINGERPRINT_PATTERN = re.compile(r"^[0-9a-f]{64}$")
INDEX_NAME = "index.json"
OBJECTS_DIR = "objects"


class CacheError(Exception):
    """Raised when the cache store cannot be read or written."""

    def __init__(self, message: str, code: str = "cache_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class CacheEntry:
    """Metadata of one cached artifact.

    Attributes:
        fingerprint: Build fingerprint (64 hex characters).
        package: Package name.
        version: Package version.
        size_bytes: Blob size.
        artifact_sha256: Digest of the blob bytes.
        created_at: ISO timestamp of insertion.
    """

    fingerprint: str
    package: str
    version: str
    size_bytes: int
    artifact_sha256: str
    created_at: str
    path: Path | None = None

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data.pop("path")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object], path: Path | None = None) -> CacheEntry:
        try:
            return cls(
                fingerprint=str(data["fingerprint"]),
                package=str(data["package"]),
                version=str(data["version"]),
                size_bytes=int(data["size_bytes"]),  # type: ignore[arg-type]
                artifact_sha256=str(data["artifact_sha256"]),
                created_at=str(data["created_at"]),
                path=path,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CacheError(f"Invalid cache metadata: {e}", code="invalid_metadata") from e


@dataclass
class CacheInfo:
    """Summary of cache usage."""

    path: Path
    entries: int
    total_bytes: int

    @property
    def human_size(self) -> str:
        size = float(self.total_bytes)
        for unit in ("B", "KiB", "MiB"):
            if size < 1024:
                return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
            size /= 1024
        return f"{size:.1f} GiB"


def _check_fingerprint(fingerprint: str) -> None:
    if not FINGERPRINT_PATTERN.match(fingerprint):
        raise CacheError(f"Invalid fingerprint '{fingerprint}'", code="invalid_fingerprint")


def _write_atomic(path: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def _copy_atomic(src: Path, dest: Path) -> None:
    fd, tmp = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.")
    os.close(fd)
    try:
        shutil.copyfile(src, tmp)
        os.replace(tmp, dest)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class BuildCache:
    """Local content-addressable store with an optional remote backend.

    Args:
        root: Store directory.
        remote: Remote cache consulted on local misses.
    """

    def __init__(self, root: Path, remote: RemoteCache | None = None) -> None:
        self.root = root
        self.remote = remote

    @property
    def objects_dir(self) -> Path:
        return self.root / OBJECTS_DIR

    def blob_path(self, fingerprint: str) -> Path:
        return self.objects_dir / fingerprint[:2] / f"{fingerprint}.tar.gz"

    def meta_path(self, fingerprint: str) -> Path:
        return self.objects_dir / fingerprint[:2] / f"{fingerprint}.json"

    @contextmanager
    def key_lock(self, fingerprint: str) -> Iterator[None]:
        """Serialize writers of one key across threads and processes."""
        lock_dir = self.root / "locks"
        lock_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(lock_dir / f"{fingerprint}.lock"), os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def _read_meta(self, fingerprint: str) -> CacheEntry | None:
        meta = self.meta_path(fingerprint)
        blob = self.blob_path(fingerprint)
        if not meta.is_file() or not blob.is_file():
            return None
        try:
            data = json.loads(meta.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CacheError(
                f"Unreadable cache metadata for {fingerprint[:16]}: {e}",
                code="invalid_metadata",
            ) from e
        if not isinstance(data, dict):
            raise CacheError(
                f"Invalid cache metadata for {fingerprint[:16]}", code="invalid_metadata"
            )
        return CacheEntry.from_dict(data, path=blob)

    def contains(self, fingerprint: str) -> bool:
        return self.meta_path(fingerprint).is_file() and self.blob_path(fingerprint).is_file()

    def _discard(self, fingerprint: str) -> None:
        self.meta_path(fingerprint).unlink(missing_ok=True)
        self.blob_path(fingerprint).unlink(missing_ok=True)

    def get_local(self, fingerprint: str) -> CacheEntry | None:
        """Look up a fingerprint in the local store only.

        Entries whose blob no longer matches its recorded digest are
        discarded and reported as misses.
        """
        _check_fingerprint(fingerprint)
        entry = self._read_meta(fingerprint)
        if entry is None:
            return None
        try:
            actual = compute_file_sha256(self.blob_path(fingerprint))
        except OSError as e:
            raise CacheError(
                f"Cannot read cached blob {fingerprint[:16]}: {e}", code="cache_read_error"
            ) from e
        if actual != entry.artifact_sha256:
            logger.warning(
                "Discarding corrupt cache entry %s (digest %s, expected %s)",
                fingerprint[:16],
                actual[:16],
                entry.artifact_sha256[:16],
            )
            with self.key_lock(fingerprint):
                self._discard(fingerprint)
            return None
        return entry

    def get(self, fingerprint: str) -> CacheEntry | None:
        """Look up a fingerprint locally, then in the remote cache.

        Remote hits are written through to the local store.

        Args:
            fingerprint: Build fingerprint.

        Returns:
            The CacheEntry, or None on a miss.

        Raises:
            CacheError: If the local store is unreadable.
        """
        entry = self.get_local(fingerprint)
        if entry is not None or self.remote is None:
            return entry

        with tempfile.TemporaryDirectory() as tmp:
            blob = Path(tmp) / f"{fingerprint}.tar.gz"
            try:
                meta = self.remote.fetch(fingerprint, blob)
            except CacheError as e:
                logger.warning("Remote cache lookup failed for %s: %s", fingerprint[:16], e)
                return None
            if meta is None:
                return None
            self.put(
                fingerprint,
                blob,
                package=str(meta.get("package", "")),
                version=str(meta.get("version", "")),
                push=False,
            )
        logger.info("Remote cache hit for %s", fingerprint[:16])
        return self.get_local(fingerprint)

    def put(
        self,
        fingerprint: str,
        artifact: Path,
        package: str,
        version: str,
        push: bool = True,
    ) -> PutResult:
        """Store a packed artifact under a fingerprint.

        Storing a key that already exists never changes the stored bytes.
        When the new artifact differs from the stored one a warning is
        logged and the first stored artifact is kept.

        Args:
            fingerprint: Build fingerprint.
            artifact: Packed artifact file.
            package: Package name for metadata.
            version: Package version for metadata.
            push: Also upload newly stored entries to the remote cache.

        Returns:
            PutResult describing what happened.

        Raises:
            CacheError: If the store cannot be written.
        """
        _check_fingerprint(fingerprint)
        try:
            digest = compute_file_sha256(artifact)
            with self.key_lock(fingerprint):
                existing = self._read_meta(fingerprint)
                if existing is not None:
                    if existing.artifact_sha256 == digest:
                        logger.debug("Cache already holds %s", fingerprint[:16])
                        return PutResult.ALREADY_PRESENT
                    logger.warning(
                        "Cache discrepancy for %s (%s %s): stored digest %s, new %s; "
                        "keeping the stored artifact",
                        fingerprint[:16],
                        package,
                        version,
                        existing.artifact_sha256[:16],
                        digest[:16],
                    )
                    return PutResult.DISCREPANCY

                blob = self.blob_path(fingerprint)
                blob.parent.mkdir(parents=True, exist_ok=True)
                _copy_atomic(artifact, blob)
                entry = CacheEntry(
                    fingerprint=fingerprint,
                    package=package,
                    version=version,
                    size_bytes=blob.stat().st_size,
                    artifact_sha256=digest,
                    created_at=datetime.now(timezone.utc).isoformat(),
                )
                _write_atomic(
                    self.meta_path(fingerprint),
                    (json.dumps(entry.to_dict(), indent=2, sort_keys=True) + "\n").encode(),
                )
        except OSError as e:
            raise CacheError(f"Failed to store {fingerprint[:16]}: {e}", code="write_error") from e

        logger.info("Cached %s %s as %s", package, version, fingerprint[:16])
        if push and self.remote is not None:
            try:
                self.remote.upload(fingerprint, self.blob_path(fingerprint), entry.to_dict())
            except CacheError as e:
                logger.warning("Remote cache upload failed for %s: %s", fingerprint[:16], e)
        return PutResult.STORED

    def restore(self, fingerprint: str, dest_dir: Path) -> CacheEntry | None:
        """Unpack a cached artifact into ``dest_dir``.

        Returns:
            The CacheEntry, or None on a miss.

        Raises:
            CacheError: If the cached blob cannot be unpacked.
        """
        entry = self.get(fingerprint)
        if entry is None:
            return None
        try:
            if dest_dir.exists():
                shutil.rmtree(dest_dir)
            unpack_tree(self.blob_path(fingerprint), dest_dir)
        except (ArtifactError, OSError) as e:
            raise CacheError(
                f"Failed to restore {fingerprint[:16]}: {e}", code="restore_error"
            ) from e
        return entry

    def entries(self) -> list[CacheEntry]:
        """List every readable local entry, sorted by fingerprint."""
        result: list[CacheEntry] = []
        if not self.objects_dir.is_dir():
            return result
        for meta in sorted(self.objects_dir.glob("*/*.json")):
            try:
                entry = self._read_meta(meta.stem)
            except CacheError as e:
                logger.warning("Skipping %s: %s", meta, e)
                continue
            if entry is not None:
                result.append(entry)
        return result

    def info(self) -> CacheInfo:
        entries = self.entries()
        return CacheInfo(
            path=self.root,
            entries=len(entries),
            total_bytes=sum(e.size_bytes for e in entries),
        )

    def clean(self, older_than: timedelta | None = None) -> int:
        """Remove cached entries.

        Args:
            older_than: Only remove entries created longer ago than this.
                None removes everything.

        Returns:
            Bytes freed.
        """
        cutoff = datetime.now(timezone.utc) - older_than if older_than else None
        freed = 0
        for entry in self.entries():
            if cutoff is not None:
                try:
                    created = datetime.fromisoformat(entry.created_at)
                except ValueError:
                    created = None
                if created is not None and created > cutoff:
                    continue
            with self.key_lock(entry.fingerprint):
                self._discard(entry.fingerprint)
            freed += entry.size_bytes
        logger.info("Cache clean freed %d bytes", freed)
        return freed

    def export(self, dest: Path) -> int:
        """Export the whole store as a tar archive of objects plus an index.

        Args:
            dest: Archive path to write.

        Returns:
            Number of exported entries.

        Raises:
            CacheError: If the archive cannot be written.
        """
        entries = self.entries()
        dest.parent.mkdir(parents=True, exist_ok=True)
        index = json.dumps([e.to_dict() for e in entries], indent=2, sort_keys=True).encode()
        fd, tmp = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.")
        os.close(fd)
        try:
            with tarfile.open(tmp, "w") as tar:
                info = tarfile.TarInfo(INDEX_NAME)
                info.size = len(index)
                tar.addfile(info, io.BytesIO(index))
                for entry in entries:
                    fp = entry.fingerprint
                    tar.add(str(self.blob_path(fp)), arcname=f"{OBJECTS_DIR}/{fp[:2]}/{fp}.tar.gz")
                    tar.add(str(self.meta_path(fp)), arcname=f"{OBJECTS_DIR}/{fp[:2]}/{fp}.json")
            os.replace(tmp, dest)
        except (OSError, tarfile.TarError) as e:
            Path(tmp).unlink(missing_ok=True)
            raise CacheError(f"Failed to export cache to {dest}: {e}", code="export_error") from e
        logger.info("Exported %d cache entries to %s", len(entries), dest)
        return len(entries)

    def import_archive(self, src: Path) -> int:
        """Import entries from an archive written by ``export``.

        Every object is verified against its indexed digest; mismatching
        or malformed entries are skipped with a warning.

        Args:
            src: Archive path.

        Returns:
            Number of newly stored entries.

        Raises:
            CacheError: If the archive or its index is unreadable.
        """
        imported = 0
        try:
            with tarfile.open(src, "r") as tar, tempfile.TemporaryDirectory() as tmp:
                index_file = tar.extractfile(INDEX_NAME)
                if index_file is None:
                    raise CacheError(f"{src} has no {INDEX_NAME}", code="invalid_archive")
                index = json.loads(index_file.read().decode("utf-8"))
                if not isinstance(index, list):
                    raise CacheError(f"{src}: index must be a list", code="invalid_archive")

                for raw in index:
                    try:
                        entry = CacheEntry.from_dict(raw)
                        _check_fingerprint(entry.fingerprint)
                    except CacheError as e:
                        logger.warning("Skipping malformed index entry: %s", e)
                        continue
                    fp = entry.fingerprint
                    try:
                        member = tar.extractfile(f"{OBJECTS_DIR}/{fp[:2]}/{fp}.tar.gz")
                    except KeyError:
                        member = None
                    if member is None:
                        logger.warning("Skipping %s: object missing from archive", fp[:16])
                        continue
                    blob = Path(tmp) / f"{fp}.tar.gz"
                    with blob.open("wb") as out:
                        shutil.copyfileobj(member, out)
                    if compute_file_sha256(blob) != entry.artifact_sha256:
                        logger.warning("Skipping %s: digest mismatch", fp[:16])
                        continue
                    result = self.put(fp, blob, entry.package, entry.version, push=False)
                    if result == PutResult.STORED:
                        imported += 1
                    blob.unlink()
        except KeyError as e:
            raise CacheError(f"{src}: missing archive member {e}", code="invalid_archive") from e
        except (OSError, tarfile.TarError, json.JSONDecodeError) as e:
            raise CacheError(f"Failed to import {src}: {e}", code="import_error") from e
        logger.info("Imported %d cache entries from %s", imported, src)
        return imported


__all__ = ["BuildCache", "CacheEntry", "CacheError", "CacheInfo", "FINGERPRINT_PATTERN"]
