"""Shared type definitions for embroot.

This module contains enums and small helpers shared across subpackages
to avoid circular imports.
"""

import re
from enum import Enum


class PackageState(str, Enum):
    """State of a package in the build pipeline."""

    PENDING = "pending"
    SOURCE_READY = "source_ready"
    TOOLCHAIN_READY = "toolchain_ready"
    BUILT = "built"
    INSTALLED = "installed"
    CACHED = "cached"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is possible."""
        return self in (PackageState.INSTALLED, PackageState.CACHED, PackageState.FAILED)

    @property
    def is_success(self) -> bool:
        """Whether the package's installed tree is available."""
        return self in (PackageState.INSTALLED, PackageState.CACHED)


class BuildSystem(str, Enum):
    """Predefined build system types."""

    AUTOTOOLS = "autotools"
    CMAKE = "cmake"
    MESON = "meson"
    MAKE = "make"
    CUSTOM = "custom"


class OptionType(str, Enum):
    """Type of a package build option."""

    BOOL = "bool"
    STRING = "string"
    CHOICE = "choice"
    NUMBER = "number"


class PutResult(str, Enum):
    """Outcome of storing an artifact in the build cache."""

    STORED = "stored"
    ALREADY_PRESENT = "already_present"
    DISCREPANCY = "discrepancy"


_ENV_UNSAFE = re.compile(r"[^A-Z0-9_]")


def env_var_name(prefix: str, name: str) -> str:
    """Build an environment variable name such as ``OPT_WITH_SSL``.

    Args:
        prefix: Variable prefix (e.g. ``OPT``).
        name: Free-form name; uppercased, other characters become ``_``.

    Returns:
        Environment-safe variable name.
    """
    return f"{prefix}_{_ENV_UNSAFE.sub('_', name.upper())}"


__all__ = [
    "BuildSystem",
    "OptionType",
    "PackageState",
    "PutResult",
    "env_var_name",
]
