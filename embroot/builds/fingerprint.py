"""Build fingerprint computation.

This module handles:
- Canonical input snapshot creation from a package definition
- Source and patch content digests
- Deterministic hash computation over normalized inputs

A fingerprint changes whenever anything that can change a package's
installed tree changes, including the fingerprint of any build-time
dependency. Identical inputs always produce the identical fingerprint.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from embroot.fetch.checksum import compute_file_sha256
from embroot.fetch.git import COMMIT_PATTERN
from embroot.packages.schema import ConfigurationError, PackageSpec

# Schema version for fingerprint format; bump when the fingerprint format changes
FINGERPRINT_SCHEMA_VERSION = "1"


@dataclass
class FingerprintInputs:
    """Canonical representation of everything that affects a build.

    It is serialized to JSON and hashed to produce the fingerprint.

    Attributes:
        schema_version: Version of the fingerprint schema.
        name: Package name.
        version: Package version.
        source_digest: Digest of the source content.
        patch_digests: Patch digests in application order.
        build_config: Normalized build and install sections.
        options: Effective option values.
        dependency_fingerprints: Fingerprints of build-time dependencies.
        target: Target triple.
        board: Board CPU, features and options.
        toolchain: Toolchain identity.
    """

    schema_version: str = FINGERPRINT_SCHEMA_VERSION
    name: str = ""
    version: str = ""
    source_digest: str = ""
    patch_digests: list[str] = field(default_factory=list)
    build_config: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    dependency_fingerprints: dict[str, str] = field(default_factory=dict)
    target: str = ""
    board: dict[str, Any] = field(default_factory=dict)
    toolchain: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def static_source_digest(spec: PackageSpec) -> str | None:
    """Digest of a package's source that is known without fetching.

    URL sources use their declared sha256, multi-file sources a digest
    over the declared file digests, and git sources a full commit given
    as ``rev``. Tags and branches need resolving and return None.
    """
    source = spec.source
    if source.kind == "url":
        return source.sha256
    if source.kind == "sources":
        listing = [
            {"filename": f.effective_filename, "sha256": f.sha256} for f in source.files()
        ]
        canonical = json.dumps(listing, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    if source.rev and COMMIT_PATTERN.fullmatch(source.rev):
        return source.rev
    return None


def source_digest(spec: PackageSpec, git_commit: str | None = None) -> str:
    """Digest of a package's source content.

    Args:
        spec: Package definition.
        git_commit: Resolved commit for git sources.

    Returns:
        The digest.

    Raises:
        ValueError: If a git source has no resolved commit.
    """
    if spec.source.kind == "git" and git_commit:
        return git_commit
    digest = static_source_digest(spec)
    if digest is None:
        raise ValueError(f"git source of '{spec.name}' needs a resolved commit")
    return digest


def patch_paths(spec: PackageSpec) -> list[Path]:
    """Resolve patch files relative to the package definition.

    Raises:
        ConfigurationError: If a patch file does not exist.
    """
    base = spec.base_dir or Path.cwd()
    paths = []
    for index, patch in enumerate(spec.build.patches):
        path = (base / patch).resolve()
        if not path.is_file():
            raise ConfigurationError(
                f"Patch '{patch}' of package '{spec.name}' not found at {path}",
                fields=[f"build.patches.{index}"],
                code="missing_patch",
            )
        paths.append(path)
    return paths


def normalize_build_config(spec: PackageSpec) -> dict[str, Any]:
    """Extract the build and install settings that affect output."""
    build = spec.build.model_dump(mode="json", exclude={"patches"})
    install = spec.install.model_dump(mode="json", exclude_none=True)
    return {"build": build, "install": install}


def create_fingerprint_inputs(
    spec: PackageSpec,
    source: str,
    options: dict[str, Any],
    dependency_fingerprints: dict[str, str],
    target: str,
    toolchain: str,
    board: dict[str, Any] | None = None,
) -> FingerprintInputs:
    """Create canonical fingerprint inputs for a package.

    Args:
        spec: Package definition.
        source: Source content digest.
        options: Effective option values.
        dependency_fingerprints: Fingerprint of every build-time dependency.
        target: Target triple.
        toolchain: Toolchain identity.
        board: Board CPU, features and options.

    Returns:
        FingerprintInputs with normalized values.
    """
    return FingerprintInputs(
        schema_version=FINGERPRINT_SCHEMA_VERSION,
        name=spec.name,
        version=str(spec.version),
        source_digest=source,
        patch_digests=[compute_file_sha256(p) for p in patch_paths(spec)],
        build_config=normalize_build_config(spec),
        options=dict(sorted(options.items())),
        dependency_fingerprints=dict(sorted(dependency_fingerprints.items())),
        target=target,
        board=board or {},
        toolchain=toolchain,
    )


def compute_fingerprint(inputs: FingerprintInputs) -> str:
    """Compute a fingerprint from build inputs.

    The fingerprint is a SHA-256 hash of the canonical JSON representation
    of the inputs.

    Args:
        inputs: FingerprintInputs instance.

    Returns:
        Fingerprint as a 64-character hex string.
    """
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


__all__ = [
    "FINGERPRINT_SCHEMA_VERSION",
    "FingerprintInputs",
    "compute_fingerprint",
    "create_fingerprint_inputs",
    "normalize_build_config",
    "patch_paths",
    "source_digest",
    "static_source_digest",
]
