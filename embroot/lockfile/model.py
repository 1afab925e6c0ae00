"""Lock file model and I/O.

This module handles:
- The lock file document (header plus one entry per resolved package)
- Source locator strings (``registry``, ``registry:<url>``, ``path:<p>``,
  ``git:<url>#<ref-or-commit>``)
- Reading with validation and atomic writing
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

LOCK_FILE_NAME = "embroot.lock"
LOCK_FORMAT_VERSION = 1


class LockFileError(Exception):
    """Raised when a lock file cannot be read, parsed or written."""

    def __init__(self, message: str, code: str = "lock_file_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class SourceLocator:
    """Where a package came from.

    Attributes:
        kind: ``registry``, ``path`` or ``git``.
        location: Registry URL, relative path or repository URL.
        ref: Git ref or resolved commit.
    """

    kind: Literal["registry", "path", "git"]
    location: str | None = None
    ref: str | None = None

    @classmethod
    def parse(cls, text: str) -> SourceLocator:
        """Parse a locator string.

        Raises:
            LockFileError: If the string is not a valid locator.
        """
        if text == "registry":
            return cls("registry")
        kind, sep, rest = text.partition(":")
        if not sep or not rest:
            raise LockFileError(f"Invalid source locator '{text}'", code="invalid_locator")
        if kind == "registry":
            return cls("registry", rest)
        if kind == "path":
            return cls("path", rest)
        if kind == "git":
            url, hash_sep, ref = rest.rpartition("#")
            if not hash_sep or not url or not ref:
                raise LockFileError(
                    f"Invalid git locator '{text}': expected git:<url>#<ref>",
                    code="invalid_locator",
                )
            return cls("git", url, ref)
        raise LockFileError(f"Unknown source locator kind '{kind}'", code="invalid_locator")

    def __str__(self) -> str:
        if self.kind == "git":
            return f"git:{self.location}#{self.ref}"
        if self.location is None:
            return self.kind
        return f"{self.kind}:{self.location}"


class LockEntry(BaseModel):
    """One locked package.

    Attributes:
        name: Package name.
        version: Resolved version.
        checksum: Source content digest (sha256, or commit for git).
        source: Source locator string.
        dependencies: Resolved build-time dependency versions.
        toolchain: Toolchain identity used to build the package.
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    version: str
    checksum: str
    source: str
    dependencies: dict[str, str] = Field(default_factory=dict)
    toolchain: str

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str) -> str:
        """Validate the source locator."""
        try:
            SourceLocator.parse(v)
        except LockFileError as e:
            raise ValueError(str(e)) from e
        return v

    @property
    def locator(self) -> SourceLocator:
        return SourceLocator.parse(self.source)


class LockFile(BaseModel):
    """Lock file document."""

    model_config = ConfigDict(extra="forbid")

    version: int = LOCK_FORMAT_VERSION
    tool_version: str
    toolchain_version: str
    generated_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    packages: list[LockEntry] = Field(default_factory=list)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        """Validate the lock format version is supported."""
        if v != LOCK_FORMAT_VERSION:
            raise ValueError(f"unsupported lock file version {v}")
        return v

    def get(self, name: str) -> LockEntry | None:
        for entry in self.packages:
            if entry.name == name:
                return entry
        return None


def read_lock_file(path: Path) -> LockFile:
    """Read and validate a lock file.

    Args:
        path: Lock file path.

    Returns:
        The parsed LockFile.

    Raises:
        LockFileError: If the file is missing, malformed or invalid.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise LockFileError(
            f"Lock file not found: {path}. Run a build without --locked to create it",
            code="lock_file_missing",
        ) from e
    except (OSError, yaml.YAMLError) as e:
        raise LockFileError(f"Cannot read lock file {path}: {e}", code="parse_error") from e

    if not isinstance(data, dict):
        raise LockFileError(f"Lock file {path} must be a mapping", code="parse_error")
    try:
        return LockFile.model_validate(data)
    except ValidationError as e:
        raise LockFileError(f"Invalid lock file {path}: {e}", code="invalid_lock_file") from e


def write_lock_file(lock: LockFile, path: Path) -> None:
    """Write a lock file atomically.

    Raises:
        LockFileError: If the file cannot be written.
    """
    text = "# This file is generated by embroot. Do not edit.\n" + yaml.safe_dump(
        lock.model_dump(), default_flow_style=False, allow_unicode=True, sort_keys=False
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except OSError as e:
        Path(tmp).unlink(missing_ok=True)
        raise LockFileError(f"Cannot write lock file {path}: {e}", code="write_error") from e


__all__ = [
    "LOCK_FILE_NAME",
    "LockEntry",
    "LockFile",
    "LockFileError",
    "SourceLocator",
    "read_lock_file",
    "write_lock_file",
]
