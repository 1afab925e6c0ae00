"""Resolution errors.

Every error names the offending package or constraint and suggests what
to change.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class ConstraintSource:
    """A constraint together with whoever imposed it.

    Attributes:
        required_by: ``project`` for top-level requests, otherwise
            ``<name> <version>`` of the depending package.
        constraint: The constraint text.
    """

    required_by: str
    constraint: str

    def __str__(self) -> str:
        return f"{self.constraint} (required by {self.required_by})"


class ResolutionError(Exception):
    """Base class for dependency resolution failures."""

    def __init__(self, message: str, code: str = "resolution_error") -> None:
        super().__init__(message)
        self.code = code


class VersionConflict(ResolutionError):
    """Raised when no available version satisfies every constraint on a package."""

    def __init__(
        self,
        package: str,
        constraints: list[ConstraintSource],
        available: list[str] | None = None,
    ) -> None:
        self.package = package
        self.constraints = sorted(constraints)
        self.available = available or []
        listed = "; ".join(str(c) for c in self.constraints)
        versions = ", ".join(self.available) or "none"
        super().__init__(
            f"No version of '{package}' satisfies all constraints: {listed}. "
            f"Available versions: {versions}. Relax one of the constraints "
            f"or add a compatible version.",
            code="version_conflict",
        )


class CycleDetected(ResolutionError):
    """Raised when build-time dependencies form a cycle.

    Attributes:
        path: Packages on the cycle in discovery order; the first package is
            repeated at the end.
    """

    def __init__(self, path: list[str]) -> None:
        self.path = list(path)
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(self.path)}. "
            f"Remove one of these build dependencies.",
            code="cycle_detected",
        )


class UnknownPackage(ResolutionError):
    """Raised when a required package is not in the package universe."""

    def __init__(self, name: str, required_by: str | None = None) -> None:
        self.name = name
        self.required_by = required_by
        origin = f" (required by {required_by})" if required_by else ""
        super().__init__(
            f"Unknown package '{name}'{origin}. Check the name or add a "
            f"definition to the package tree.",
            code="unknown_package",
        )


__all__ = [
    "ConstraintSource",
    "CycleDetected",
    "ResolutionError",
    "UnknownPackage",
    "VersionConflict",
]
