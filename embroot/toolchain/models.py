"""Toolchain requirement and environment types.

A toolchain requirement is one of three variants:

- ``DefaultCross``: the built-in cross compiler, no download needed
- ``ExternalAuto``: a prebuilt GCC toolchain chosen from the target
- ``ExternalExplicit``: a prebuilt toolchain URL per host platform
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class DefaultCross:
    """Built-in cross compiler for a target triple."""

    target: str


@dataclass(frozen=True)
class ExternalAuto:
    """External GCC toolchain resolved automatically from the target."""

    target: str
    libc: str = "glibc"
    release: str = "stable-2024.02-1"


@dataclass(frozen=True)
class ExternalExplicit:
    """External toolchain with explicit archive URLs per host platform."""

    target: str
    url_by_host: dict[str, str] = field(default_factory=dict, hash=False)


ToolchainRequirement = DefaultCross | ExternalAuto | ExternalExplicit


@dataclass(frozen=True)
class ResolvedToolchain:
    """A toolchain requirement resolved for the current host.

    Attributes:
        target: Target triple.
        identity: Stable identity used in fingerprints and the lock file.
        url: Archive URL for external toolchains, None for the built-in one.
        compiler: Built-in compiler command (default toolchains only).
    """

    target: str
    identity: str
    url: str | None = None
    compiler: str | None = None

    @property
    def is_external(self) -> bool:
        return self.url is not None


@dataclass(frozen=True)
class ToolchainEnvironment:
    """Ready-to-use compiler environment.

    Attributes:
        target: Target triple.
        identity: Toolchain identity.
        cc: C compiler command.
        cxx: C++ compiler command.
        ar: Archiver command, for external toolchains.
        bin_dir: Directory prepended to PATH, for external toolchains.
    """

    target: str
    identity: str
    cc: str
    cxx: str
    ar: str | None = None
    bin_dir: Path | None = None

    def to_env(self) -> dict[str, str]:
        env = {"CC": self.cc, "CXX": self.cxx, "TARGET": self.target}
        if self.ar:
            env["AR"] = self.ar
        return env


__all__ = [
    "DefaultCross",
    "ExternalAuto",
    "ExternalExplicit",
    "ResolvedToolchain",
    "ToolchainEnvironment",
    "ToolchainRequirement",
]
