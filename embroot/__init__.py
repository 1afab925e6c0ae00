"""embroot - package resolution and build orchestration for embedded rootfs images.

This package resolves declared packages into a deterministic build plan,
fetches and verifies their sources, builds each one with the right
cross toolchain, and caches the installed trees by content fingerprint.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
