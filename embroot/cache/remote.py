"""Remote build cache backend over HTTP.

Objects are addressed as ``<base>/<fingerprint>.tar.gz`` with optional
``<base>/<fingerprint>.json`` metadata. A 404 is a miss; every other
failure raises CacheError, which callers treat as a miss.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Any

import httpx

from embroot.cache.store import CacheError

logger = logging.getLogger(__name__)

# Timeout for remote cache requests (seconds)
REMOTE_TIMEOUT = 300

# Chunk size for downloads (bytes)
CHUNK_SIZE = 64 * 1024


class RemoteCache:
    """HTTP remote cache.

    Args:
        base_url: Base URL of the cache.
        client: HTTPX client; one is created if not given.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.Client | None = None,
        timeout: float = REMOTE_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(follow_redirects=True)
        self.timeout = timeout

    def _url(self, fingerprint: str, suffix: str) -> str:
        return f"{self.base_url}/{fingerprint}{suffix}"

    def fetch(self, fingerprint: str, dest: Path) -> dict[str, Any] | None:
        """Download an object into ``dest``.

        Args:
            fingerprint: Build fingerprint.
            dest: Where to write the blob.

        Returns:
            Metadata dict (possibly empty) on a hit, None on a miss.

        Raises:
            CacheError: On any failure other than a miss, including a blob
                that does not match the advertised digest.
        """
        url = self._url(fingerprint, ".tar.gz")
        try:
            with self.client.stream("GET", url, timeout=self.timeout) as response:
                if response.status_code == 404:
                    return None
                response.raise_for_status()
                sha256 = hashlib.sha256()
                with dest.open("wb") as f:
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                        sha256.update(chunk)

            meta: dict[str, Any] = {}
            meta_response = self.client.get(self._url(fingerprint, ".json"), timeout=self.timeout)
            if meta_response.status_code == 200:
                parsed = meta_response.json()
                if isinstance(parsed, dict):
                    meta = parsed
        except httpx.HTTPStatusError as e:
            dest.unlink(missing_ok=True)
            raise CacheError(
                f"Remote cache error for {fingerprint[:16]}: {e.response.status_code}",
                code="remote_http_error",
            ) from e
        except (httpx.RequestError, ValueError) as e:
            dest.unlink(missing_ok=True)
            raise CacheError(
                f"Remote cache unavailable for {fingerprint[:16]}: {e}",
                code="remote_unavailable",
            ) from e

        expected = meta.get("artifact_sha256")
        if expected and expected != sha256.hexdigest():
            dest.unlink(missing_ok=True)
            raise CacheError(
                f"Remote object {fingerprint[:16]} does not match its digest",
                code="remote_digest_mismatch",
            )
        logger.debug("Fetched %s from remote cache", fingerprint[:16])
        return meta

    def upload(self, fingerprint: str, blob: Path, metadata: dict[str, Any]) -> None:
        """Upload an object and its metadata.

        Raises:
            CacheError: If the upload fails.
        """
        try:
            response = self.client.put(
                self._url(fingerprint, ".tar.gz"),
                content=blob.read_bytes(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            response = self.client.put(
                self._url(fingerprint, ".json"), json=metadata, timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CacheError(
                f"Remote cache rejected {fingerprint[:16]}: {e.response.status_code}",
                code="remote_http_error",
            ) from e
        except (httpx.RequestError, OSError) as e:
            raise CacheError(
                f"Remote cache upload failed for {fingerprint[:16]}: {e}",
                code="remote_unavailable",
            ) from e

    def close(self) -> None:
        self.client.close()


__all__ = ["RemoteCache"]
