"""Package universes.

A universe answers ``lookup(name)`` with every available definition of a
package. The resolver only depends on that callable, so registries, local
package trees and test fixtures are interchangeable.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from embroot.packages.io import load_packages_from_directory
from embroot.packages.schema import ConfigurationError, PackageSpec

logger = logging.getLogger(__name__)


class PackageUniverse(Protocol):
    """Anything that can list the available versions of a package."""

    def lookup(self, name: str) -> list[PackageSpec]: ...


class InMemoryUniverse:
    """Universe backed by already-parsed package definitions."""

    def __init__(self, packages: Iterable[PackageSpec] = ()) -> None:
        self._packages: dict[str, list[PackageSpec]] = defaultdict(list)
        for spec in packages:
            self.add(spec)

    def add(self, spec: PackageSpec) -> None:
        """Add a definition; a duplicate name and version replaces the old one."""
        versions = self._packages[spec.name]
        versions[:] = [s for s in versions if s.version != spec.version]
        versions.append(spec)

    def lookup(self, name: str) -> list[PackageSpec]:
        return sorted(self._packages.get(name, []), key=lambda s: s.version)

    def names(self) -> list[str]:
        return sorted(self._packages)


class DirectoryUniverse(InMemoryUniverse):
    """Universe loaded from a local package tree.

    Args:
        directory: Root of the tree (``<name>/<version>.yaml`` files).
        strict: Raise on the first invalid definition instead of
            skipping it with a warning.
    """

    def __init__(self, directory: Path, strict: bool = True) -> None:
        result = load_packages_from_directory(directory)
        if result.errors:
            if strict:
                path, message = next(iter(result.errors.items()))
                raise ConfigurationError(message, fields=[path], code="invalid_package")
            for path, message in result.errors.items():
                logger.warning("Skipping invalid package definition %s: %s", path, message)
        super().__init__(result.packages)
        self.directory = directory


class LayeredUniverse:
    """Universe that returns the first layer that knows a package.

    Local package trees are layered in front of registry records so a
    project can override a registry package.
    """

    def __init__(self, *layers: PackageUniverse) -> None:
        self.layers = layers

    def lookup(self, name: str) -> list[PackageSpec]:
        for layer in self.layers:
            found = layer.lookup(name)
            if found:
                return found
        return []


__all__ = ["DirectoryUniverse", "InMemoryUniverse", "LayeredUniverse", "PackageUniverse"]
