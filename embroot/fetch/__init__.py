"""Source fetching module.

This module handles:
- Checksum verification of downloaded files
- Bounded, retrying downloads
- Git checkouts with commit capture
- Safe archive extraction
"""

from embroot.fetch.checksum import VerificationError, compute_file_sha256, verify_file
from embroot.fetch.download import (
    DownloadError,
    DownloadManager,
    DownloadRequest,
    DownloadResult,
)
from embroot.fetch.extract import ExtractionError, extract_archive, place_source_file
from embroot.fetch.git import GitError, GitFetchResult, fetch_git, resolve_remote_ref

__all__ = [
    "DownloadError",
    "DownloadManager",
    "DownloadRequest",
    "DownloadResult",
    "ExtractionError",
    "GitError",
    "GitFetchResult",
    "VerificationError",
    "compute_file_sha256",
    "extract_archive",
    "fetch_git",
    "place_source_file",
    "resolve_remote_ref",
    "verify_file",
]
