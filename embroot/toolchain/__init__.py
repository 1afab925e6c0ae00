"""Toolchain module.

This module handles:
- Toolchain requirement variants
- Pure resolution of requirements for the current host
- Installing external toolchains once per URL
"""

from embroot.toolchain.cache import ToolchainCache
from embroot.toolchain.models import (
    DefaultCross,
    ExternalAuto,
    ExternalExplicit,
    ResolvedToolchain,
    ToolchainEnvironment,
    ToolchainRequirement,
)
from embroot.toolchain.resolver import (
    ToolchainError,
    detect_host_platform,
    requirement_for,
    resolve_toolchain,
)

__all__ = [
    "DefaultCross",
    "ExternalAuto",
    "ExternalExplicit",
    "ResolvedToolchain",
    "ToolchainCache",
    "ToolchainEnvironment",
    "ToolchainError",
    "ToolchainRequirement",
    "detect_host_platform",
    "requirement_for",
    "resolve_toolchain",
]
