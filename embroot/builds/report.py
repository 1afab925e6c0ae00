"""Build report."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from embroot.types import PackageState


@dataclass
class PackageReport:
    """Outcome of one package.

    Attributes:
        name: Package name.
        version: Package version.
        state: Final state.
        reason: Failure reason, if any.
        elapsed_seconds: Wall time spent on the package.
        bytes_produced: Size of the installed tree.
        fingerprint: Build fingerprint, if computed.
        log_path: Build log, if the package was compiled.
        staging_dir: Installed tree, if any.
    """

    name: str
    version: str
    state: PackageState
    reason: str | None = None
    elapsed_seconds: float = 0.0
    bytes_produced: int = 0
    fingerprint: str | None = None
    log_path: Path | None = None
    staging_dir: Path | None = None

    @property
    def ok(self) -> bool:
        return self.state.is_success

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "state": self.state.value,
            "reason": self.reason,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "bytes_produced": self.bytes_produced,
            "fingerprint": self.fingerprint,
            "log_path": str(self.log_path) if self.log_path else None,
            "staging_dir": str(self.staging_dir) if self.staging_dir else None,
        }


@dataclass
class BuildReport:
    """Outcome of a whole build, packages in plan order."""

    packages: list[PackageReport] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    lock_path: Path | None = None
    runtime_requirements: dict[str, list[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True only if every package was installed or restored."""
        return all(p.ok for p in self.packages)

    @property
    def failed(self) -> list[PackageReport]:
        return [p for p in self.packages if p.state == PackageState.FAILED]

    @property
    def bytes_produced(self) -> int:
        return sum(p.bytes_produced for p in self.packages)

    def get(self, name: str) -> PackageReport | None:
        for package in self.packages:
            if package.name == name:
                return package
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "bytes_produced": self.bytes_produced,
            "lock_path": str(self.lock_path) if self.lock_path else None,
            "runtime_requirements": self.runtime_requirements,
            "packages": [p.to_dict() for p in self.packages],
        }


__all__ = ["BuildReport", "PackageReport"]
