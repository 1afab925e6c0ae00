"""Checksum computation and verification."""

from __future__ import annotations

import hashlib
from pathlib import Path

# Chunk size for hashing (bytes)
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB


class VerificationError(Exception):
    """Raised when checksum verification fails."""

    def __init__(self, message: str, code: str = "verification_error") -> None:
        """Initialize VerificationError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


def compute_file_sha256(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute SHA256 checksum of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks to read.

    Returns:
        SHA256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def file_matches(file_path: Path, expected_sha256: str) -> bool:
    """Check whether a file exists and has the expected digest."""
    if not file_path.is_file():
        return False
    return compute_file_sha256(file_path) == expected_sha256.lower()


def verify_file(file_path: Path, expected_sha256: str) -> str:
    """Verify a file against an expected SHA256 digest.

    Args:
        file_path: Path to the file.
        expected_sha256: Expected hex digest.

    Returns:
        The computed digest.

    Raises:
        VerificationError: If the digest differs.
        FileNotFoundError: If the file does not exist.
    """
    computed = compute_file_sha256(file_path)
    if computed != expected_sha256.lower():
        raise VerificationError(
            f"Checksum mismatch for {file_path.name}: "
            f"expected {expected_sha256}, got {computed}",
            code="checksum_mismatch",
        )
    return computed


__all__ = [
    "HASH_CHUNK_SIZE",
    "VerificationError",
    "compute_file_sha256",
    "file_matches",
    "verify_file",
]
