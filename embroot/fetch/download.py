"""Source download manager.

This module handles:
- Streaming downloads with SHA256 verification
- Skipping downloads whose destination already verifies
- Deleting corrupt or partial files before any retry
- Retry with exponential backoff and a chained failure history
- Bounding the number of parallel downloads
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from embroot.fetch.checksum import VerificationError, file_matches

logger = logging.getLogger(__name__)

# Total attempts per artifact
MAX_DOWNLOAD_RETRIES = 3

# Default number of parallel downloads
DEFAULT_PARALLEL_DOWNLOADS = 4

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


@dataclass
class FailedAttempt:
    """One failed download attempt."""

    attempt: int
    code: str
    message: str

    def __str__(self) -> str:
        return f"attempt {self.attempt}: {self.message}"


class DownloadError(Exception):
    """Raised when a download fails after all retries.

    Attributes:
        code: Error code for structured error handling.
        attempts: Every failed attempt, oldest first.
    """

    def __init__(
        self,
        message: str,
        code: str = "download_error",
        attempts: list[FailedAttempt] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.attempts = attempts or []


@dataclass(frozen=True)
class DownloadRequest:
    """A file to download and the digest it must have."""

    url: str
    dest: Path
    sha256: str


@dataclass
class DownloadResult:
    """Result of a fetch.

    Attributes:
        path: Verified destination file.
        checksum: SHA256 hex digest of the file.
        size_bytes: File size.
        attempts: Number of network attempts made (0 when skipped).
        skipped: True when the destination already verified.
    """

    path: Path
    checksum: str
    size_bytes: int
    attempts: int = 0
    skipped: bool = False
    failures: list[FailedAttempt] = field(default_factory=list)


class DownloadManager:
    """Fetches remote artifacts with retry, verification and a parallelism bound.

    Args:
        client: HTTPX client; one is created if not given.
        max_concurrent: Maximum simultaneous transfers; excess requests wait.
        retries: Total attempts per artifact.
        base_delay: Backoff base in seconds; attempt k waits
            ``base_delay * 2 ** (k - 1)`` before attempt k + 1.
        timeout: Per-request timeout in seconds.
        offline: Refuse network access; only verified local files succeed.
        sleep: Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        max_concurrent: int = DEFAULT_PARALLEL_DOWNLOADS,
        retries: int = MAX_DOWNLOAD_RETRIES,
        base_delay: float = 1.0,
        timeout: float = DOWNLOAD_TIMEOUT,
        offline: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self.max_concurrent = max_concurrent
        self.retries = max(1, retries)
        self.base_delay = base_delay
        self.timeout = timeout
        self.offline = offline
        self._sleep = sleep
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._dest_locks: dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(follow_redirects=True)
        return self._client

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> DownloadManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _lock_for(self, dest: Path) -> threading.Lock:
        key = dest.resolve()
        with self._locks_guard:
            return self._dest_locks.setdefault(key, threading.Lock())

    def fetch(
        self,
        url: str,
        dest: Path,
        expected_sha256: str | None,
        force: bool = False,
    ) -> DownloadResult:
        """Fetch one file, verifying it against ``expected_sha256``.

        Args:
            url: URL to download from.
            dest: Destination file path.
            expected_sha256: Required SHA256 hex digest. None skips
                verification and always downloads.
            force: Download even if ``dest`` already verifies.

        Returns:
            DownloadResult for the verified file.

        Raises:
            DownloadError: If every attempt failed or downloading is not
                allowed in offline mode.
        """
        expected = expected_sha256.lower() if expected_sha256 else None
        with self._lock_for(dest):
            if expected and not force and file_matches(dest, expected):
                logger.debug("Already present and verified: %s", dest)
                return DownloadResult(
                    path=dest,
                    checksum=expected,
                    size_bytes=dest.stat().st_size,
                    skipped=True,
                )

            if dest.exists():
                logger.info("Removing stale file %s", dest)
                dest.unlink()

            if self.offline:
                raise DownloadError(
                    f"Offline mode: {dest.name} is not available locally ({url}). "
                    f"Disable offline mode or place the file at {dest}",
                    code="offline",
                )

            failures: list[FailedAttempt] = []
            for attempt in range(1, self.retries + 1):
                try:
                    with self._slots:
                        size, computed = self._download_once(url, dest, expected)
                    return DownloadResult(
                        path=dest,
                        checksum=computed,
                        size_bytes=size,
                        attempts=attempt,
                        failures=failures,
                    )
                except (DownloadError, VerificationError) as e:
                    failures.append(FailedAttempt(attempt, e.code, str(e)))
                    logger.warning(
                        "Download attempt %d/%d of %s failed: %s",
                        attempt,
                        self.retries,
                        url,
                        e,
                    )
                    if attempt < self.retries:
                        self._sleep(self.base_delay * 2 ** (attempt - 1))

            history = "; ".join(str(f) for f in failures)
            raise DownloadError(
                f"Failed to download {url} after {self.retries} attempts: {history}",
                code="retries_exhausted",
                attempts=failures,
            )

    def _download_once(
        self, url: str, dest: Path, expected: str | None
    ) -> tuple[int, str]:
        """Run a single transfer into a partial file and move it into place."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".part")
        logger.info("Downloading %s to %s", url, dest)

        try:
            with self.client.stream("GET", url, timeout=self.timeout) as response:
                response.raise_for_status()
                sha256 = hashlib.sha256()
                total_bytes = 0
                with partial.open("wb") as f:
                    for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
                        sha256.update(chunk)
                        total_bytes += len(chunk)
        except httpx.HTTPStatusError as e:
            partial.unlink(missing_ok=True)
            raise DownloadError(
                f"HTTP error downloading {url}: {e.response.status_code} "
                f"{e.response.reason_phrase}",
                code="http_error",
            ) from e
        except httpx.TimeoutException as e:
            partial.unlink(missing_ok=True)
            raise DownloadError(f"Timeout downloading {url}", code="timeout") from e
        except httpx.RequestError as e:
            partial.unlink(missing_ok=True)
            raise DownloadError(
                f"Network error downloading {url}: {e}", code="network_error"
            ) from e
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise DownloadError(f"Failed to write {partial}: {e}", code="io_error") from e

        computed = sha256.hexdigest()
        if expected and computed != expected:
            partial.unlink(missing_ok=True)
            raise VerificationError(
                f"Checksum mismatch for {url}: expected {expected}, got {computed}",
                code="checksum_mismatch",
            )

        os.replace(partial, dest)
        logger.info(
            "Downloaded %s (%d bytes, checksum: %s)",
            dest.name,
            total_bytes,
            computed[:16] + "...",
        )
        return total_bytes, computed

    def fetch_all(self, requests: Iterable[DownloadRequest]) -> list[DownloadResult]:
        """Fetch several files in parallel.

        At most ``max_concurrent`` transfers run at once; the rest queue.

        Args:
            requests: Files to fetch.

        Returns:
            Results in request order.

        Raises:
            DownloadError: The first failure, after every request finished.
        """
        requests = list(requests)
        if not requests:
            return []
        with ThreadPoolExecutor(max_workers=self.max_concurrent) as pool:
            futures = [pool.submit(self.fetch, r.url, r.dest, r.sha256) for r in requests]
        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            raise errors[0]  # type: ignore[misc]
        return [f.result() for f in futures]


__all__ = [
    "DEFAULT_PARALLEL_DOWNLOADS",
    "DownloadError",
    "DownloadManager",
    "DownloadRequest",
    "DownloadResult",
    "FailedAttempt",
    "MAX_DOWNLOAD_RETRIES",
]
