"""Build orchestration module.

This module handles:
- Build fingerprints and incremental stamps
- Build environments and step execution
- Installed tree packing
- The per-package state machine and scheduler
- Project-level resolve, fetch and build entry points
"""

from embroot.builds.models import BuildStamp

__all__ = ["BuildStamp"]

# Submodules are imported explicitly (embroot.builds.orchestrator, etc.)
# because the cache and lock file modules depend on parts of this package.
