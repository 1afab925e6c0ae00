"""Locked-mode verification.

Compares a freshly resolved plan with a lock file before any build step
runs. Every divergence in version, source digest or toolchain identity
is collected and reported together.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from embroot.builds.fingerprint import static_source_digest
from embroot.lockfile.model import LockFile
from embroot.resolver.service import BuildPlan

ABSENT = "<absent>"


@dataclass(frozen=True)
class LockMismatch:
    """One difference between the lock file and the resolved plan."""

    package: str
    field: str
    locked: str
    resolved: str

    def __str__(self) -> str:
        return f"{self.package}: {self.field} locked {self.locked}, resolved {self.resolved}"


class LockMismatchError(Exception):
    """Raised when the resolved plan diverges from the lock file in locked mode.

    Attributes:
        mismatches: Every divergence found.
    """

    def __init__(self, mismatches: list[LockMismatch], code: str = "lock_mismatch") -> None:
        self.mismatches = mismatches
        self.code = code
        listed = "; ".join(str(m) for m in mismatches)
        super().__init__(
            f"Resolution does not match the lock file: {listed}. "
            f"Update the lock file by building without --locked"
        )


def find_mismatches(
    plan: BuildPlan,
    lock: LockFile,
    toolchains: Mapping[str, str],
) -> list[LockMismatch]:
    """Compare a plan with a lock file.

    Args:
        plan: Resolved build plan.
        lock: Lock file to compare with.
        toolchains: Toolchain identity per package name.

    Returns:
        Divergences sorted by package and field.
    """
    mismatches: list[LockMismatch] = []
    planned = {p.name: p for p in plan.packages}
    locked_names = {e.name for e in lock.packages}

    for name in sorted(set(planned) - locked_names):
        mismatches.append(LockMismatch(name, "package", ABSENT, str(planned[name].version)))
    for name in sorted(locked_names - set(planned)):
        entry = lock.get(name)
        mismatches.append(LockMismatch(name, "package", entry.version if entry else "", ABSENT))

    for name in sorted(set(planned) & locked_names):
        p = planned[name]
        entry = lock.get(name)
        if entry is None:
            continue
        if entry.version != str(p.version):
            mismatches.append(LockMismatch(name, "version", entry.version, str(p.version)))

        source = p.spec.source
        if source.kind == "git":
            locator = entry.locator
            if locator.kind != "git" or locator.location != source.git:
                mismatches.append(
                    LockMismatch(name, "source", entry.source, f"git:{source.git}")
                )
        digest = static_source_digest(p.spec)
        if digest is not None and digest != entry.checksum:
            mismatches.append(LockMismatch(name, "checksum", entry.checksum, digest))

        identity = toolchains.get(name)
        if identity is not None and identity != entry.toolchain:
            mismatches.append(LockMismatch(name, "toolchain", entry.toolchain, identity))

    return sorted(mismatches, key=lambda m: (m.package, m.field))


def verify_plan(plan: BuildPlan, lock: LockFile, toolchains: Mapping[str, str]) -> None:
    """Fail if the plan diverges from the lock file.

    Raises:
        LockMismatchError: Listing every divergence.
    """
    mismatches = find_mismatches(plan, lock, toolchains)
    if mismatches:
        raise LockMismatchError(mismatches)


__all__ = ["LockMismatch", "LockMismatchError", "find_mismatches", "verify_plan"]
