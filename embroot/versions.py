"""Semantic versions and version constraints.

This module handles:
- Parsing versions (MAJOR.MINOR.PATCH[-pre][+build], missing parts are 0)
- Semver precedence ordering, including pre-release identifiers
- Parsing constraint expressions (^, ~, >=, >, <=, <, =, ==, wildcards)
- Parsing ``name<constraint>`` requirement strings from package files
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import total_ordering

VERSION_PATTERN = re.compile(
    r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?"
    r"(?:-([0-9A-Za-z.\-]+))?(?:\+([0-9A-Za-z.\-]+))?$"
)
REQUIREMENT_PATTERN = re.compile(r"^([A-Za-z0-9][A-Za-z0-9_.+\-]*?)\s*([\^~<>=*\s].*|)$")
OPERATORS = ("^", "~", ">=", "<=", "==", ">", "<", "=")


class VersionError(ValueError):
    """Raised when a version or constraint string cannot be parsed."""

    def __init__(self, message: str, code: str = "invalid_version") -> None:
        super().__init__(message)
        self.code = code


def _prerelease_key(ident: str) -> tuple[int, int | str]:
    # Numeric identifiers sort before alphanumeric ones
    if ident.isdigit():
        return (0, int(ident))
    return (1, ident)


@total_ordering
@dataclass(frozen=True)
class Version:
    """A semantic version.

    Build metadata is kept for display but ignored for ordering and equality.
    """

    major: int
    minor: int = 0
    patch: int = 0
    prerelease: tuple[str, ...] = ()
    build: str | None = field(default=None, compare=False)

    @classmethod
    def parse(cls, text: str) -> Version:
        """Parse a version string.

        Args:
            text: Version text such as ``1.2.3``, ``1.2`` or ``2.0.0-rc.1``.

        Returns:
            Parsed Version.

        Raises:
            VersionError: If the text is not a version.
        """
        match = VERSION_PATTERN.match(text.strip())
        if not match:
            raise VersionError(f"Invalid version: '{text}'")
        major, minor, patch, pre, build = match.groups()
        return cls(
            major=int(major),
            minor=int(minor or 0),
            patch=int(patch or 0),
            prerelease=tuple(pre.split(".")) if pre else (),
            build=build,
        )

    @property
    def release(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def _sort_key(self) -> tuple:
        # A release sorts after any of its pre-releases
        if not self.prerelease:
            return (self.release, 1, ())
        return (self.release, 0, tuple(_prerelease_key(p) for p in self.prerelease))

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        if self.build:
            text += "+" + self.build
        return text


@dataclass(frozen=True)
class Comparator:
    """A single ``<op> <version>`` comparison."""

    op: str
    version: Version

    def matches(self, version: Version) -> bool:
        if self.op == ">=":
            return version >= self.version
        if self.op == ">":
            return version > self.version
        if self.op == "<=":
            return version <= self.version
        if self.op == "<":
            return version < self.version
        return version == self.version

    def __str__(self) -> str:
        return f"{self.op}{self.version}"


def _partial(text: str) -> tuple[Version, int]:
    """Parse a possibly partial version and count the components given."""
    version = Version.parse(text)
    core = text.strip().lstrip("v").split("-", 1)[0].split("+", 1)[0]
    return version, len(core.split("."))


def _expand(op: str | None, operand: str) -> list[Comparator]:
    """Expand one constraint term into primitive comparators."""
    if operand in ("*", "x", "X"):
        return []

    if operand.endswith((".*", ".x", ".X")):
        if op not in (None, "=", "=="):
            raise VersionError(f"Wildcard cannot be combined with '{op}': '{operand}'")
        base, parts = _partial(operand[:-2])
        if parts == 1:
            upper = Version(base.major + 1)
        else:
            upper = Version(base.major, base.minor + 1)
        return [Comparator(">=", base), Comparator("<", upper)]

    version, parts = _partial(operand)

    if op == "^":
        if version.major > 0 or parts == 1:
            upper = Version(version.major + 1)
        elif version.minor > 0 or parts == 2:
            upper = Version(0, version.minor + 1)
        else:
            upper = Version(0, 0, version.patch + 1)
        return [Comparator(">=", version), Comparator("<", upper)]

    if op == "~":
        if parts == 1:
            upper = Version(version.major + 1)
        else:
            upper = Version(version.major, version.minor + 1)
        return [Comparator(">=", version), Comparator("<", upper)]

    if op in (None, "==", "="):
        return [Comparator("=", version)]

    return [Comparator(op, version)]


def _tokenize(text: str) -> list[tuple[str | None, str]]:
    terms: list[tuple[str | None, str]] = []
    pending_op: str | None = None
    for token in text.replace(",", " ").split():
        op = next((o for o in OPERATORS if token.startswith(o)), None)
        operand = token[len(op) :] if op else token
        if pending_op is not None:
            if op is not None:
                raise VersionError(f"Operator '{pending_op}' has no version")
            op, pending_op = pending_op, None
        if not operand:
            pending_op = op
            continue
        terms.append((op, operand))
    if pending_op is not None:
        raise VersionError(f"Operator '{pending_op}' has no version")
    return terms


@dataclass(frozen=True)
class Constraint:
    """A conjunction of version comparators.

    Attributes:
        text: The constraint as written, used in error messages.
        comparators: Primitive comparators that must all match.
    """

    text: str
    comparators: tuple[Comparator, ...] = ()

    @classmethod
    def parse(cls, text: str | None) -> Constraint:
        """Parse a constraint expression.

        An empty expression or ``*`` matches every release. A bare version
        is an exact pin.

        Args:
            text: Constraint text such as ``>=1.2, <2`` or ``^0.3``.

        Returns:
            Parsed Constraint.

        Raises:
            VersionError: If the expression is malformed.
        """
        text = (text or "").strip()
        comparators: list[Comparator] = []
        try:
            for op, operand in _tokenize(text):
                comparators.extend(_expand(op, operand))
        except VersionError as e:
            raise VersionError(
                f"Invalid constraint '{text}': {e}", code="invalid_constraint"
            ) from e
        return cls(text=text or "*", comparators=tuple(comparators))

    @classmethod
    def exact(cls, version: Version) -> Constraint:
        return cls(text=f"={version}", comparators=(Comparator("=", version),))

    def allows(self, version: Version) -> bool:
        """Check whether a version satisfies every comparator.

        A pre-release only matches when some comparator names a pre-release
        of the same major.minor.patch.
        """
        if not all(c.matches(version) for c in self.comparators):
            return False
        if version.is_prerelease:
            return any(
                c.version.is_prerelease and c.version.release == version.release
                for c in self.comparators
            )
        return True

    def __str__(self) -> str:
        return self.text


def parse_requirement(text: str) -> tuple[str, Constraint]:
    """Split a requirement such as ``zlib>=1.2.11`` into name and constraint.

    Args:
        text: Requirement string; the constraint part is optional.

    Returns:
        Tuple of (package name, constraint).

    Raises:
        VersionError: If the requirement is malformed.
    """
    match = REQUIREMENT_PATTERN.match(text.strip())
    if not match:
        raise VersionError(f"Invalid requirement: '{text}'", code="invalid_requirement")
    name, constraint = match.groups()
    return name, Constraint.parse(constraint)


__all__ = [
    "Comparator",
    "Constraint",
    "Version",
    "VersionError",
    "parse_requirement",
]
