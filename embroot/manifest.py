"""Project manifest.

The manifest (``embroot.yaml``) names the board being built for, the
packages to install with their version constraints, per-package option
overrides and where local package definitions live::

    project:
      name: gateway
    board:
      name: rpi4
      target: aarch64-linux-gnu
      cpu: cortex_a72
      features: [neon]
      options: {console: ttyS0}
    packages:
      busybox: "^1.36"
      dropbear: ">=2022.83"
      mylib: {version: "1.0.0", source: "path:vendor/mylib"}
    options:
      busybox: {with_ssl: true}
    build:
      package_dirs: [packages]
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from embroot.packages.options import format_option_value
from embroot.packages.schema import ConfigurationError
from embroot.types import env_var_name
from embroot.versions import Constraint, VersionError

MANIFEST_FILE_NAME = "embroot.yaml"


class ProjectSchema(BaseModel):
    """Schema for the ``project`` section."""

    model_config = ConfigDict(extra="forbid")

    name: str
    version: str = "0.1.0"
    description: str = ""


class BoardSchema(BaseModel):
    """Schema for the board/target descriptor.

    Attributes:
        name: Board name.
        target: Target triple, e.g. ``aarch64-linux-gnu``.
        cpu: CPU model passed to the compiler.
        features: CPU features.
        options: Board options exposed as ``BOARD_<NAME>``.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = "generic"
    target: str
    cpu: str = "generic"
    features: list[str] = Field(default_factory=list)
    options: dict[str, bool | int | float | str] = Field(default_factory=dict)

    def snapshot(self) -> dict[str, Any]:
        """Board settings that affect build output."""
        return {
            "cpu": self.cpu,
            "features": sorted(self.features),
            "options": dict(sorted(self.options.items())),
        }

    def env(self) -> dict[str, str]:
        return {
            env_var_name("BOARD", name): format_option_value(value)
            for name, value in sorted(self.options.items())
        }


class ProjectBuildSchema(BaseModel):
    """Schema for the ``build`` section."""

    model_config = ConfigDict(extra="forbid")

    jobs: int | None = Field(default=None, ge=1)
    package_dirs: list[str] = Field(default_factory=lambda: ["packages"])


class PackageRequestSchema(BaseModel):
    """One requested package: a version constraint and optional origin.

    ``source`` is a locator such as ``path:vendor/busybox``; the package
    is then taken only from that location.
    """

    model_config = ConfigDict(extra="forbid")

    version: str = "*"
    source: str | None = None

    @field_validator("version", mode="before")
    @classmethod
    def validate_version(cls, v: Any) -> str:
        text = "*" if v is None else str(v)
        try:
            Constraint.parse(text)
        except VersionError as e:
            raise ValueError(str(e)) from e
        return text

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str | None) -> str | None:
        if v is not None and v != "registry" and not v.startswith("path:"):
            raise ValueError(f"unsupported package source '{v}'; use path:<dir> or registry")
        return v


class ProjectManifest(BaseModel):
    """Complete project manifest."""

    model_config = ConfigDict(extra="forbid")

    project: ProjectSchema
    board: BoardSchema
    packages: dict[str, PackageRequestSchema] = Field(default_factory=dict)
    options: dict[str, dict[str, Any]] = Field(default_factory=dict)
    build: ProjectBuildSchema = Field(default_factory=ProjectBuildSchema)

    @field_validator("packages", mode="before")
    @classmethod
    def validate_packages(cls, v: Any) -> Any:
        """Accept ``name: constraint`` shorthand, including bare YAML numbers."""
        if not isinstance(v, dict):
            return v
        return {
            str(name): item if isinstance(item, dict) else {"version": item}
            for name, item in v.items()
        }

    def requested(self) -> dict[str, Constraint]:
        return {name: Constraint.parse(r.version) for name, r in self.packages.items()}

    def sources(self) -> dict[str, str]:
        """Source locators of packages pinned to a specific origin."""
        return {name: r.source for name, r in self.packages.items() if r.source}

    def package_dirs(self, root: Path) -> list[Path]:
        return [root / d for d in self.build.package_dirs]


def parse_manifest_data(data: dict[str, Any], origin: str = MANIFEST_FILE_NAME) -> ProjectManifest:
    """Validate manifest data.

    Raises:
        ConfigurationError: If the data is invalid, naming every field.
    """
    try:
        return ProjectManifest.model_validate(data)
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(
            f"{origin}: invalid manifest: {details}",
            fields=fields,
            code="invalid_manifest",
        ) from e


def load_manifest(path: Path) -> ProjectManifest:
    """Load and validate a project manifest.

    Args:
        path: Path to ``embroot.yaml``.

    Returns:
        Validated ProjectManifest.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Manifest not found: {path}", code="manifest_missing"
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{path}: parse error: {e}", code="parse_error") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: expected a YAML mapping", code="parse_error")
    return parse_manifest_data(data, origin=str(path))


__all__ = [
    "BoardSchema",
    "PackageRequestSchema",
    "MANIFEST_FILE_NAME",
    "ProjectManifest",
    "load_manifest",
    "parse_manifest_data",
]
