"""Dependency resolution.

This module handles:
- Transitive expansion of requested packages and their build dependencies
- Merging every constraint on a package and picking the highest match
- Building the dependency graph and rejecting cycles
- Producing the immutable, deterministically ordered BuildPlan

Resolution performs no I/O: package definitions come from a lookup
callable supplied by the caller.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from embroot.packages.schema import PackageSpec
from embroot.resolver.errors import (
    ConstraintSource,
    ResolutionError,
    UnknownPackage,
    VersionConflict,
)
from embroot.resolver.graph import DependencyGraph
from embroot.versions import Constraint, Version

logger = logging.getLogger(__name__)

# Upper bound on constraint-merge rounds before giving up
MAX_RESOLUTION_ROUNDS = 100

PROJECT = "project"

Lookup = Callable[[str], list[PackageSpec]]


@dataclass(frozen=True)
class PlannedPackage:
    """One resolved package in a build plan.

    Attributes:
        name: Package name.
        version: Selected version.
        spec: The selected package definition.
        build_dependencies: Names of resolved build-time dependencies.
        runtime_requirements: Names required at runtime in the final image.
    """

    name: str
    version: Version
    spec: PackageSpec = field(compare=False, repr=False)
    build_dependencies: tuple[str, ...] = ()
    runtime_requirements: tuple[str, ...] = ()


@dataclass(frozen=True)
class BuildPlan:
    """Immutable ordered sequence of resolved packages.

    Every package appears after all of its build-time dependencies; ties
    are broken by ascending name.
    """

    packages: tuple[PlannedPackage, ...] = ()

    @property
    def order(self) -> list[tuple[str, Version]]:
        return [(p.name, p.version) for p in self.packages]

    @property
    def names(self) -> list[str]:
        return [p.name for p in self.packages]

    def get(self, name: str) -> PlannedPackage:
        for planned in self.packages:
            if planned.name == name:
                return planned
        raise KeyError(name)

    @property
    def runtime_requirements(self) -> dict[str, tuple[str, ...]]:
        """Runtime requirements per package, recorded for the final image."""
        return {p.name: p.runtime_requirements for p in self.packages if p.runtime_requirements}

    def graph(self) -> DependencyGraph:
        graph = DependencyGraph()
        for planned in self.packages:
            graph.add_node(planned.name)
            for dep in planned.build_dependencies:
                graph.add_edge(planned.name, dep)
        return graph

    def __len__(self) -> int:
        return len(self.packages)


def _as_lookup(universe: Lookup | object) -> Lookup:
    lookup = getattr(universe, "lookup", universe)
    if not callable(lookup):
        raise TypeError("universe must be callable or provide lookup(name)")
    return lookup  # type: ignore[return-value]


def _select(
    name: str,
    sources: list[tuple[Constraint, str]],
    lookup: Lookup,
) -> PackageSpec:
    candidates = lookup(name)
    if not candidates:
        raise UnknownPackage(name, required_by=min(s for _, s in sources))

    matching = [
        spec for spec in candidates if all(c.allows(spec.version) for c, _ in sources)
    ]
    if not matching:
        raise VersionConflict(
            name,
            [ConstraintSource(required_by=s, constraint=str(c)) for c, s in sources],
            available=[str(v) for v in sorted({spec.version for spec in candidates})],
        )
    return max(matching, key=lambda spec: spec.version)


def resolve(
    requested: Mapping[str, str | Constraint],
    universe: Lookup | object,
) -> BuildPlan:
    """Resolve requested packages into an ordered build plan.

    Constraints are merged per package name from the requests and from
    the build dependencies of every currently selected package; selection
    repeats until it no longer changes. A conflict only fails resolution
    once the packages that imposed it keep their selection.

    Args:
        requested: Top-level package names mapped to constraints.
        universe: Callable ``lookup(name) -> list[PackageSpec]`` or an
            object with such a ``lookup`` method.

    Returns:
        The resolved BuildPlan.

    Raises:
        UnknownPackage: If a package is missing from the universe.
        VersionConflict: If no version satisfies the merged constraints.
        CycleDetected: If build dependencies form a cycle.
        ResolutionError: If selection does not settle.
    """
    lookup = _as_lookup(universe)
    roots = {
        name: c if isinstance(c, Constraint) else Constraint.parse(c)
        for name, c in requested.items()
    }

    selected: dict[str, PackageSpec] = {}
    for round_number in range(1, MAX_RESOLUTION_ROUNDS + 1):
        merged: dict[str, list[tuple[Constraint, str]]] = defaultdict(list)
        origins: dict[str, set[str]] = defaultdict(set)
        for name, constraint in roots.items():
            merged[name].append((constraint, PROJECT))
        for spec in selected.values():
            for dep, constraint in spec.build_dependencies:
                merged[dep].append((constraint, f"{spec.name} {spec.version}"))
                origins[dep].add(spec.name)

        choice: dict[str, PackageSpec] = {}
        failures: dict[str, ResolutionError] = {}
        for name in sorted(merged):
            try:
                choice[name] = _select(name, merged[name], lookup)
            except (UnknownPackage, VersionConflict) as e:
                failures[name] = e
                # Hold the previous pick until the constraints settle
                if name in selected:
                    choice[name] = selected[name]

        changed = {
            name
            for name in choice.keys() | selected.keys()
            if name not in choice
            or name not in selected
            or choice[name].version != selected[name].version
        }
        for name, error in failures.items():
            # A constraint from a package being replaced this round may go away
            if not origins[name] & changed:
                raise error
        if not changed:
            logger.debug("Resolution settled after %d rounds", round_number)
            break
        selected = choice
    else:
        raise ResolutionError(
            f"Resolution did not settle after {MAX_RESOLUTION_ROUNDS} rounds",
            code="resolution_unstable",
        )

    graph = DependencyGraph()
    for name, spec in selected.items():
        graph.add_node(name)
        for dep, _ in spec.build_dependencies:
            graph.add_edge(name, dep)

    packages = tuple(
        PlannedPackage(
            name=name,
            version=selected[name].version,
            spec=selected[name],
            build_dependencies=tuple(graph.dependencies(name)),
            runtime_requirements=tuple(sorted(set(selected[name].runtime_requirements))),
        )
        for name in graph.topological_order()
    )
    logger.info(
        "Resolved %d packages: %s",
        len(packages),
        ", ".join(f"{p.name} {p.version}" for p in packages),
    )
    return BuildPlan(packages=packages)


__all__ = ["BuildPlan", "Lookup", "PlannedPackage", "resolve"]
