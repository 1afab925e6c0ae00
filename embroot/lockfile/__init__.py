"""Lock file module.

This module handles:
- The lock file document and source locators
- Atomic lock file reads and writes
- Locked-mode verification of resolved plans
"""

from embroot.lockfile.model import (
    LOCK_FILE_NAME,
    LockEntry,
    LockFile,
    LockFileError,
    SourceLocator,
    read_lock_file,
    write_lock_file,
)
from embroot.lockfile.verify import LockMismatch, LockMismatchError, verify_plan

__all__ = [
    "LOCK_FILE_NAME",
    "LockEntry",
    "LockFile",
    "LockFileError",
    "LockMismatch",
    "LockMismatchError",
    "SourceLocator",
    "read_lock_file",
    "verify_plan",
    "write_lock_file",
]
