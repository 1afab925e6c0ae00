"""Tests for resolver module.

Resolution runs against in-memory package universes; no I/O.
"""

import pytest

from embroot.packages.universe import InMemoryUniverse
from embroot.resolver import (
    CycleDetected,
    DependencyGraph,
    UnknownPackage,
    VersionConflict,
    resolve,
)
from embroot.versions import Version


@pytest.fixture
def universe(make_spec):
    """A small universe with a linear chain and several versions."""
    return InMemoryUniverse(
        [
            make_spec("A", "1.0.0", depends=["B>=1.0"]),
            make_spec("B", "1.0.0", depends=["C"]),
            make_spec("B", "1.4.0", depends=["C"]),
            make_spec("B", "2.0.0", depends=["C"]),
            make_spec("C", "0.9.0"),
            make_spec("C", "1.0.0"),
        ]
    )


class TestResolve:
    """Tests for resolve function."""

    def test_linear_chain_order(self, universe):
        """Should order dependencies before dependents and pick the highest."""
        plan = resolve({"A": "*"}, universe)

        assert plan.order == [
            ("C", Version.parse("1.0.0")),
            ("B", Version.parse("2.0.0")),
            ("A", Version.parse("1.0.0")),
        ]

    def test_project_constraint_limits_dependency(self, universe):
        """Should merge project and package constraints on the same name."""
        plan = resolve({"A": "*", "B": "<2"}, universe)

        assert plan.get("B").version == Version.parse("1.4.0")

    def test_independent_packages_sorted_by_name(self, make_spec):
        """Should break ties by ascending name."""
        universe = InMemoryUniverse(
            [make_spec("zlib"), make_spec("busybox"), make_spec("musl")]
        )
        plan = resolve({"zlib": "*", "busybox": "*", "musl": "*"}, universe)

        assert plan.names == ["busybox", "musl", "zlib"]

    def test_diamond(self, make_spec):
        """Should place a shared dependency once, before both dependents."""
        universe = InMemoryUniverse(
            [
                make_spec("app", depends=["left", "right"]),
                make_spec("left", depends=["base"]),
                make_spec("right", depends=["base"]),
                make_spec("base"),
            ]
        )
        plan = resolve({"app": "*"}, universe)

        assert plan.names == ["base", "left", "right", "app"]
        assert plan.get("app").build_dependencies == ("left", "right")

    def test_deterministic(self, universe):
        """Should produce the same plan for the same inputs."""
        first = resolve({"A": "*"}, universe)
        second = resolve({"A": "*"}, universe)
        assert first.order == second.order

    def test_accepts_lookup_callable(self, universe):
        """Should accept a plain lookup function."""
        plan = resolve({"C": "^1"}, universe.lookup)
        assert plan.order == [("C", Version.parse("1.0.0"))]

    def test_runtime_requirements_recorded(self, make_spec):
        """Should record runtime requirements without building them."""
        universe = InMemoryUniverse([make_spec("dropbear", requires=["zlib"])])
        plan = resolve({"dropbear": "*"}, universe)

        assert plan.names == ["dropbear"]
        assert plan.runtime_requirements == {"dropbear": ("zlib",)}

    def test_version_conflict(self, make_spec):
        """Should report every conflicting constraint with its origin."""
        universe = InMemoryUniverse(
            [
                make_spec("X", depends=["Z>=2.0"]),
                make_spec("Y", depends=["Z<2.0"]),
                make_spec("Z", "1.5.0"),
                make_spec("Z", "2.1.0"),
            ]
        )
        with pytest.raises(VersionConflict) as exc_info:
            resolve({"X": "*", "Y": "*"}, universe)

        error = exc_info.value
        assert error.code == "version_conflict"
        assert error.package == "Z"
        assert [str(c.constraint) for c in error.constraints] == [">=2.0", "<2.0"]
        assert [c.required_by for c in error.constraints] == ["X 1.0.0", "Y 1.0.0"]
        assert error.available == ["1.5.0", "2.1.0"]
        assert "X 1.0.0" in str(error) and "Y 1.0.0" in str(error)

    def test_conflict_from_replaced_version(self, make_spec):
        """Should not fail on constraints of a version that is being replaced."""
        universe = InMemoryUniverse(
            [
                make_spec("A", "2.0.0", depends=["C>=2.0"]),
                make_spec("A", "1.0.0", depends=["C<2.0"]),
                make_spec("B", depends=["A<2.0"]),
                make_spec("C", "1.0.0"),
            ]
        )

        plan = resolve({"A": "*", "B": "*"}, universe)

        assert plan.order == [
            ("C", Version.parse("1.0.0")),
            ("A", Version.parse("1.0.0")),
            ("B", Version.parse("1.0.0")),
        ]

    def test_cycle(self, make_spec):
        """Should report the cycle path."""
        universe = InMemoryUniverse(
            [
                make_spec("A", depends=["B"]),
                make_spec("B", depends=["C"]),
                make_spec("C", depends=["A"]),
            ]
        )
        with pytest.raises(CycleDetected) as exc_info:
            resolve({"A": "*"}, universe)

        assert exc_info.value.path == ["A", "B", "C", "A"]
        assert exc_info.value.code == "cycle_detected"

    def test_unknown_package(self, make_spec):
        """Should name the missing package and who needs it."""
        universe = InMemoryUniverse([make_spec("A", depends=["ghost"])])
        with pytest.raises(UnknownPackage) as exc_info:
            resolve({"A": "*"}, universe)

        assert exc_info.value.name == "ghost"
        assert exc_info.value.required_by == "A 1.0.0"

    def test_unknown_requested_package(self):
        """Should report unknown top-level requests as coming from the project."""
        with pytest.raises(UnknownPackage) as exc_info:
            resolve({"nothing": "*"}, InMemoryUniverse())
        assert exc_info.value.required_by == "project"


class TestDependencyGraph:
    """Tests for DependencyGraph."""

    def test_self_loop(self):
        """Should report a self-loop as a cycle."""
        graph = DependencyGraph()
        graph.add_edge("A", "A")
        assert graph.find_cycle() == ["A", "A"]
        with pytest.raises(CycleDetected):
            graph.topological_order()

    def test_transitive_dependents(self):
        """Should collect direct and indirect dependents."""
        graph = DependencyGraph()
        graph.add_edge("B", "A")
        graph.add_edge("C", "B")
        graph.add_node("D")
        assert graph.transitive_dependents(["A"]) == {"B", "C"}
        assert graph.dependents("A") == ["B"]
