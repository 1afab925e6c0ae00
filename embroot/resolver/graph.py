"""Dependency graph over resolved packages.

Nodes live in a flat map keyed by package name; an edge ``a -> b`` means
``a`` needs ``b`` at build time. Self-loops and mutual references are
allowed in the structure and reported by ``find_cycle``.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable

from embroot.resolver.errors import CycleDetected

WHITE, GRAY, BLACK = 0, 1, 2


class DependencyGraph:
    """Build-time dependency graph keyed by package name."""

    def __init__(self) -> None:
        self._deps: dict[str, set[str]] = {}

    def add_node(self, name: str) -> None:
        self._deps.setdefault(name, set())

    def add_edge(self, dependent: str, dependency: str) -> None:
        """Record that ``dependent`` needs ``dependency`` at build time."""
        self.add_node(dependent)
        self.add_node(dependency)
        self._deps[dependent].add(dependency)

    @property
    def nodes(self) -> list[str]:
        return sorted(self._deps)

    def dependencies(self, name: str) -> list[str]:
        return sorted(self._deps.get(name, ()))

    def dependents(self, name: str) -> list[str]:
        return sorted(n for n, deps in self._deps.items() if name in deps)

    def transitive_dependents(self, names: Iterable[str]) -> set[str]:
        """Return every package that depends, directly or not, on ``names``."""
        reverse: dict[str, set[str]] = {n: set() for n in self._deps}
        for node, deps in self._deps.items():
            for dep in deps:
                reverse[dep].add(node)
        seen: set[str] = set()
        stack = list(names)
        while stack:
            for dependent in reverse.get(stack.pop(), ()):
                if dependent not in seen:
                    seen.add(dependent)
                    stack.append(dependent)
        return seen

    def find_cycle(self) -> list[str] | None:
        """Find a cycle with a three-colour depth-first search.

        Roots and neighbours are visited in ascending name order so the
        reported cycle is deterministic.

        Returns:
            The cycle path in discovery order with the first node repeated
            at the end, or None if the graph is acyclic.
        """
        color = {n: WHITE for n in self._deps}
        for root in self.nodes:
            if color[root] != WHITE:
                continue
            path: list[str] = [root]
            stack = [iter(self.dependencies(root))]
            color[root] = GRAY
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    color[path.pop()] = BLACK
                    stack.pop()
                    continue
                if color[child] == GRAY:
                    return path[path.index(child) :] + [child]
                if color[child] == WHITE:
                    color[child] = GRAY
                    path.append(child)
                    stack.append(iter(self.dependencies(child)))
        return None

    def topological_order(self) -> list[str]:
        """Order nodes so dependencies precede dependents.

        Uses Kahn's algorithm; among ready nodes the smallest name goes
        first.

        Raises:
            CycleDetected: If the graph has a cycle.
        """
        cycle = self.find_cycle()
        if cycle:
            raise CycleDetected(cycle)

        remaining = {n: len(deps) for n, deps in self._deps.items()}
        reverse: dict[str, list[str]] = {n: [] for n in self._deps}
        for node, deps in self._deps.items():
            for dep in deps:
                reverse[dep].append(node)

        ready = [n for n, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for dependent in reverse[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, dependent)
        return order


__all__ = ["DependencyGraph"]
