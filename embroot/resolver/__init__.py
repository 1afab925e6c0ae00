"""Dependency resolution module.

This module handles:
- Constraint merging and version selection
- Cycle detection over build-time dependencies
- Deterministic build ordering
"""

from embroot.resolver.errors import (
    ConstraintSource,
    CycleDetected,
    ResolutionError,
    UnknownPackage,
    VersionConflict,
)
from embroot.resolver.graph import DependencyGraph
from embroot.resolver.service import BuildPlan, PlannedPackage, resolve

__all__ = [
    "BuildPlan",
    "ConstraintSource",
    "CycleDetected",
    "DependencyGraph",
    "PlannedPackage",
    "ResolutionError",
    "UnknownPackage",
    "VersionConflict",
    "resolve",
]
