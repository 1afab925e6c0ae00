"""Toolchain resolution.

This module handles:
- Deriving a toolchain requirement from a package definition
- Host platform detection
- Mapping targets to prebuilt GCC toolchain archives
- Resolving each requirement variant to a concrete toolchain

Resolution is pure; downloading happens in the toolchain cache.
"""

from __future__ import annotations

import platform
import sys
from collections.abc import Callable

from embroot.packages.schema import SUPPORTED_HOSTS, ToolchainSchema
from embroot.toolchain.models import (
    DefaultCross,
    ExternalAuto,
    ExternalExplicit,
    ResolvedToolchain,
    ToolchainEnvironment,
    ToolchainRequirement,
)

BOOTLIN_BASE_URL = "https://toolchains.bootlin.com/downloads/releases/toolchains"

# Normalized target triple -> toolchain architecture name
BOOTLIN_ARCHES: dict[str, str] = {
    "arm-linux-gnueabihf": "armv7-eabihf",
    "armv7-linux-gnueabihf": "armv7-eabihf",
    "arm-linux-musleabihf": "armv7-eabihf",
    "aarch64-linux-gnu": "aarch64",
    "aarch64-linux-musl": "aarch64",
    "x86_64-linux-gnu": "x86-64",
    "x86_64-linux-musl": "x86-64",
    "riscv64-linux-gnu": "riscv64-lp64d",
    "riscv64-linux-musl": "riscv64-lp64d",
}

# Hosts that can run the prebuilt toolchains
AUTO_HOSTS = ("linux-x86_64", "linux-aarch64")

_MACHINE_ALIASES = {"amd64": "x86_64", "x64": "x86_64", "arm64": "aarch64"}


class ToolchainError(Exception):
    """Raised when a toolchain cannot be resolved or installed."""

    def __init__(self, message: str, code: str = "toolchain_error") -> None:
        super().__init__(message)
        self.code = code


def detect_host_platform() -> str:
    """Return the host key, e.g. ``linux-x86_64`` or ``darwin-aarch64``."""
    system = "darwin" if sys.platform == "darwin" else platform.system().lower()
    machine = platform.machine().lower()
    return f"{system}-{_MACHINE_ALIASES.get(machine, machine)}"


def normalize_target(target: str) -> str:
    """Drop the vendor field from a target triple.

    ``aarch64-unknown-linux-gnu`` becomes ``aarch64-linux-gnu``.
    """
    parts = target.split("-")
    if len(parts) == 4:
        parts = [parts[0], *parts[2:]]
    return "-".join(parts)


def requirement_for(schema: ToolchainSchema | None, board_target: str) -> ToolchainRequirement:
    """Derive the toolchain requirement for a package.

    Args:
        schema: The package's ``build.toolchain`` section, if any.
        board_target: Target triple of the board being built.

    Returns:
        The requirement variant.
    """
    if schema is None:
        return DefaultCross(target=board_target)
    target = schema.target or board_target
    if schema.url:
        return ExternalExplicit(target=target, url_by_host=dict(schema.url))
    return ExternalAuto(target=target, libc=schema.libc, release=schema.release)


def resolve_bootlin_url(target: str, libc: str, release: str, host: str) -> str:
    """Map a target to a prebuilt toolchain archive URL.

    Args:
        target: Target triple.
        libc: C library (``glibc``, ``musl`` or ``uclibc``).
        release: Toolchain release name.
        host: Host platform key.

    Returns:
        The archive URL.

    Raises:
        ToolchainError: If the host or target has no prebuilt toolchain.
    """
    if host not in AUTO_HOSTS:
        raise ToolchainError(
            f"No prebuilt toolchain for host '{host}'. Use explicit URLs for "
            f"this platform, or build in Docker",
            code="unsupported_host",
        )
    arch = BOOTLIN_ARCHES.get(normalize_target(target))
    if arch is None:
        raise ToolchainError(
            f"No prebuilt toolchain for target '{target}'. Supported targets: "
            f"{', '.join(sorted(BOOTLIN_ARCHES))}. Use explicit URLs, or build in Docker",
            code="unsupported_target",
        )
    return f"{BOOTLIN_BASE_URL}/{arch}/tarballs/{arch}--{libc}--{release}.tar.bz2"


def _resolve_default(
    requirement: DefaultCross, host: str, compiler: str, compiler_version: str
) -> ResolvedToolchain:
    return ResolvedToolchain(
        target=requirement.target,
        identity=f"{compiler} {compiler_version}",
        compiler=compiler,
    )


def _resolve_auto(
    requirement: ExternalAuto, host: str, compiler: str, compiler_version: str
) -> ResolvedToolchain:
    url = resolve_bootlin_url(requirement.target, requirement.libc, requirement.release, host)
    return ResolvedToolchain(target=requirement.target, identity=f"gcc {url}", url=url)


def _resolve_explicit(
    requirement: ExternalExplicit, host: str, compiler: str, compiler_version: str
) -> ResolvedToolchain:
    url = requirement.url_by_host.get(host)
    if url is None:
        available = ", ".join(sorted(requirement.url_by_host)) or "none"
        raise ToolchainError(
            f"No toolchain URL for host '{host}'. Available hosts: {available}. "
            f"Supported host keys: {', '.join(SUPPORTED_HOSTS)}",
            code="missing_host",
        )
    return ResolvedToolchain(target=requirement.target, identity=f"gcc {url}", url=url)


_HANDLERS: dict[type, Callable[..., ResolvedToolchain]] = {
    DefaultCross: _resolve_default,
    ExternalAuto: _resolve_auto,
    ExternalExplicit: _resolve_explicit,
}


def resolve_toolchain(
    requirement: ToolchainRequirement,
    host: str | None = None,
    compiler: str = "zig",
    compiler_version: str = "0.11.0",
) -> ResolvedToolchain:
    """Resolve a toolchain requirement for a host.

    Args:
        requirement: The requirement variant.
        host: Host platform key; detected if not given.
        compiler: Built-in cross compiler command.
        compiler_version: Identity of the built-in compiler.

    Returns:
        The ResolvedToolchain.

    Raises:
        ToolchainError: If the requirement cannot be met on this host.
    """
    handler = _HANDLERS.get(type(requirement))
    if handler is None:
        raise ToolchainError(f"Unsupported toolchain requirement {requirement!r}")
    return handler(requirement, host or detect_host_platform(), compiler, compiler_version)


def default_environment(toolchain: ResolvedToolchain) -> ToolchainEnvironment:
    """Compiler environment for the built-in cross compiler."""
    compiler = toolchain.compiler or "zig"
    return ToolchainEnvironment(
        target=toolchain.target,
        identity=toolchain.identity,
        cc=f"{compiler} cc -target {toolchain.target}",
        cxx=f"{compiler} c++ -target {toolchain.target}",
    )


__all__ = [
    "AUTO_HOSTS",
    "BOOTLIN_ARCHES",
    "ToolchainError",
    "default_environment",
    "detect_host_platform",
    "normalize_target",
    "requirement_for",
    "resolve_bootlin_url",
    "resolve_toolchain",
]
