"""Pydantic models for package definition validation.

This module defines the models for validating package definitions loaded
from YAML/JSON files: package metadata, the source descriptor (exactly one
of URL+digest, git repository+ref, or a list of named source files), the
build descriptor, typed build options and install rules.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)

from embroot.types import BuildSystem, OptionType
from embroot.versions import Constraint, Version, VersionError, parse_requirement

PACKAGE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.+\-]*$")
SHA256_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")
SUPPORTED_HOSTS = ("linux-x86_64", "linux-aarch64", "darwin-x86_64", "darwin-aarch64")

# Keys that select a source kind, grouped by kind
SOURCE_KIND_KEYS: dict[str, tuple[str, ...]] = {
    "url": ("url",),
    "git": ("git",),
    "sources": ("sources",),
}
GIT_REF_KEYS = ("tag", "branch", "rev")


class ConfigurationError(Exception):
    """Raised when a package, option or manifest definition is invalid.

    Attributes:
        fields: Dotted paths of the offending fields.
        code: Error code for structured error handling.
    """

    def __init__(
        self,
        message: str,
        fields: list[str] | None = None,
        code: str = "configuration_error",
    ) -> None:
        super().__init__(message)
        self.fields = fields or []
        self.code = code


def declared_source_kinds(source: dict[str, Any]) -> list[str]:
    """Return the source kinds a raw ``source`` mapping declares."""
    return [
        kind
        for kind, keys in SOURCE_KIND_KEYS.items()
        if any(source.get(k) not in (None, "", []) for k in keys)
    ]


def _check_sha256(v: str) -> str:
    if not SHA256_PATTERN.match(v):
        raise ValueError("sha256 must be 64 hexadecimal characters")
    return v.lower()


class PackageMetaSchema(BaseModel):
    """Schema for the ``package`` section.

    Attributes:
        name: Package name.
        version: Package version.
        depends: Build-time dependencies as ``name<constraint>`` strings.
        requires: Runtime requirements, names only.
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    version: str
    description: str = ""
    license: str | None = None
    homepage: str | None = None
    keywords: list[str] = Field(default_factory=list)
    depends: list[str] = Field(default_factory=list)
    requires: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate package name characters."""
        if not PACKAGE_NAME_PATTERN.match(v):
            raise ValueError(f"invalid package name '{v}'")
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version is a semantic version."""
        try:
            Version.parse(v)
        except VersionError as e:
            raise ValueError(str(e)) from e
        return v

    @field_validator("depends")
    @classmethod
    def validate_depends(cls, v: list[str]) -> list[str]:
        """Validate each dependency requirement parses."""
        for item in v:
            try:
                parse_requirement(item)
            except VersionError as e:
                raise ValueError(str(e)) from e
        return v

    @field_validator("requires")
    @classmethod
    def validate_requires(cls, v: list[str]) -> list[str]:
        """Validate runtime requirements are bare names."""
        for item in v:
            if not PACKAGE_NAME_PATTERN.match(item):
                raise ValueError(f"runtime requirement must be a package name: '{item}'")
        return v


class SourceFileSchema(BaseModel):
    """Schema for one named file in a multi-file source."""

    model_config = ConfigDict(extra="forbid")

    url: str
    sha256: str
    filename: str | None = None

    @field_validator("sha256")
    @classmethod
    def validate_sha256(cls, v: str) -> str:
        """Validate sha256 format."""
        return _check_sha256(v)

    @property
    def effective_filename(self) -> str:
        return self.filename or self.url.rstrip("/").rsplit("/", 1)[-1]


class SourceSchema(BaseModel):
    """Schema for the ``source`` section.

    Exactly one kind must be declared: ``url`` with ``sha256``, ``git`` with
    exactly one of ``tag``/``branch``/``rev``, or a ``sources`` list.
    """

    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    sha256: str | None = None
    git: str | None = None
    tag: str | None = None
    branch: str | None = None
    rev: str | None = None
    sources: list[SourceFileSchema] | None = None
    filename: str | None = None

    @field_validator("sha256")
    @classmethod
    def validate_sha256(cls, v: str | None) -> str | None:
        """Validate sha256 format."""
        return None if v is None else _check_sha256(v)

    @model_validator(mode="after")
    def validate_kind(self) -> SourceSchema:
        """Validate that exactly one source kind is declared."""
        kinds = declared_source_kinds(self.model_dump())
        if len(kinds) != 1:
            found = ", ".join(kinds) if kinds else "none"
            raise ValueError(
                f"exactly one of url, git or sources is required (found: {found})"
            )
        kind = kinds[0]
        if kind == "url" and not self.sha256:
            raise ValueError("url sources require sha256")
        refs = [k for k in GIT_REF_KEYS if getattr(self, k)]
        if kind == "git":
            if len(refs) != 1:
                raise ValueError("git sources require exactly one of tag, branch or rev")
            if self.sha256:
                raise ValueError("sha256 is not allowed for git sources")
        elif refs:
            raise ValueError(f"{', '.join(refs)} is only valid for git sources")
        if kind == "sources" and self.sha256:
            raise ValueError("sha256 belongs on each entry of sources")
        return self

    @property
    def kind(self) -> Literal["url", "git", "sources"]:
        return declared_source_kinds(self.model_dump())[0]  # type: ignore[return-value]

    @property
    def git_ref(self) -> tuple[str, str] | None:
        """Return (ref kind, ref value) for git sources."""
        for key in GIT_REF_KEYS:
            value = getattr(self, key)
            if value:
                return key, value
        return None

    def files(self) -> list[SourceFileSchema]:
        """Return downloadable files for URL and multi-file sources."""
        if self.sources:
            return list(self.sources)
        if self.url and self.sha256:
            return [SourceFileSchema(url=self.url, sha256=self.sha256, filename=self.filename)]
        return []


class ToolchainSchema(BaseModel):
    """Schema for an external toolchain requirement.

    Without ``url`` the toolchain is resolved automatically from the target;
    with ``url`` it maps host platforms to archive URLs.
    """

    model_config = ConfigDict(extra="forbid")

    type: Literal["gcc"] = "gcc"
    target: str | None = None
    libc: str = "glibc"
    release: str = "stable-2024.02-1"
    url: dict[str, str] | None = None

    @field_validator("url")
    @classmethod
    def validate_hosts(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        """Validate host keys of explicit toolchain URLs."""
        if v is None:
            return v
        if not v:
            raise ValueError("url must map at least one host platform")
        unknown = sorted(set(v) - set(SUPPORTED_HOSTS))
        if unknown:
            raise ValueError(
                f"unknown host platform(s) {unknown}; supported: {list(SUPPORTED_HOSTS)}"
            )
        return v


class BuildStepSchema(BaseModel):
    """Schema for one explicit build step."""

    model_config = ConfigDict(extra="forbid")

    run: str
    args: list[str] = Field(default_factory=list)


class BuildSchema(BaseModel):
    """Schema for the ``build`` section."""

    model_config = ConfigDict(extra="forbid")

    type: BuildSystem | None = None
    steps: list[BuildStepSchema] = Field(default_factory=list)
    configure_args: list[str] = Field(default_factory=list)
    make_args: list[str] = Field(default_factory=list)
    cmake_args: list[str] = Field(default_factory=list)
    meson_args: list[str] = Field(default_factory=list)
    patches: list[str] = Field(default_factory=list)
    toolchain: ToolchainSchema | None = None

    @model_validator(mode="after")
    def validate_steps(self) -> BuildSchema:
        """Validate the combination of build type and explicit steps."""
        if self.type is None:
            self.type = BuildSystem.CUSTOM if self.steps else BuildSystem.AUTOTOOLS
        if self.type == BuildSystem.CUSTOM and not self.steps:
            raise ValueError("custom builds require at least one step")
        if self.type != BuildSystem.CUSTOM and self.steps:
            raise ValueError(f"steps cannot be combined with build type '{self.type.value}'")
        return self


class OptionSchema(BaseModel):
    """Schema for one typed build option."""

    model_config = ConfigDict(extra="forbid")

    type: OptionType
    default: bool | int | float | str
    description: str = ""
    choices: list[str] | None = None
    pattern: str | None = None
    allow_empty: bool = True
    min: float | None = None
    max: float | None = None

    @model_validator(mode="after")
    def validate_definition(self) -> OptionSchema:
        """Validate option attributes and that the default is acceptable."""
        if self.type == OptionType.CHOICE and not self.choices:
            raise ValueError("choice options require choices")
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"invalid pattern '{self.pattern}': {e}") from e
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min must not exceed max")
        self.default = self.check(self.default)
        return self

    def check(self, value: Any) -> bool | int | float | str:
        """Validate and normalize a value for this option.

        Args:
            value: Candidate value.

        Returns:
            The normalized value.

        Raises:
            ValueError: If the value is not acceptable.
        """
        if self.type == OptionType.BOOL:
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.lower() in ("true", "false"):
                return value.lower() == "true"
            raise ValueError(f"expected a boolean, got {value!r}")

        if self.type == OptionType.NUMBER:
            if isinstance(value, bool):
                raise ValueError(f"expected a number, got {value!r}")
            try:
                number = float(value)
            except (TypeError, ValueError) as e:
                raise ValueError(f"expected a number, got {value!r}") from e
            if self.min is not None and number < self.min:
                raise ValueError(f"{value} is below minimum {self.min:g}")
            if self.max is not None and number > self.max:
                raise ValueError(f"{value} is above maximum {self.max:g}")
            return int(number) if number.is_integer() else number

        if not isinstance(value, str):
            raise ValueError(f"expected a string, got {value!r}")

        if self.type == OptionType.CHOICE:
            if value not in (self.choices or []):
                raise ValueError(f"'{value}' is not one of {self.choices}")
            return value

        if not value and not self.allow_empty:
            raise ValueError("empty value is not allowed")
        if value and self.pattern and not re.fullmatch(self.pattern, value):
            raise ValueError(f"'{value}' does not match pattern '{self.pattern}'")
        return value


class InstallFileSchema(BaseModel):
    """Schema for one declarative install copy rule."""

    model_config = ConfigDict(extra="forbid")

    src: str
    dst: str
    mode: str | None = None

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str | None) -> str | None:
        """Validate mode is a valid octal string."""
        if v is not None and not re.match(r"^0?[0-7]{3,4}$", v):
            raise ValueError(f"mode must be a valid octal string (e.g., '0644'), got '{v}'")
        return v


class InstallSchema(BaseModel):
    """Schema for the ``install`` section."""

    model_config = ConfigDict(extra="forbid")

    script: str | None = None
    files: list[InstallFileSchema] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_exclusive(self) -> InstallSchema:
        if self.script and self.files:
            raise ValueError("install accepts either script or files, not both")
        return self


class PackageSpec(BaseModel):
    """Complete package definition.

    The ``locator`` and ``base_dir`` private attributes record where the
    definition came from; they are set by the loaders, not by the file.
    """

    model_config = ConfigDict(extra="forbid")

    package: PackageMetaSchema
    source: SourceSchema
    build: BuildSchema = Field(default_factory=BuildSchema)
    options: dict[str, OptionSchema] = Field(default_factory=dict)
    install: InstallSchema = Field(default_factory=InstallSchema)

    _locator: str = PrivateAttr(default="registry")
    _base_dir: Path | None = PrivateAttr(default=None)

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def version(self) -> Version:
        return Version.parse(self.package.version)

    @property
    def build_dependencies(self) -> list[tuple[str, Constraint]]:
        return [parse_requirement(item) for item in self.package.depends]

    @property
    def runtime_requirements(self) -> list[str]:
        return list(self.package.requires)

    @property
    def locator(self) -> str:
        return self._locator

    @property
    def base_dir(self) -> Path | None:
        return self._base_dir

    def with_origin(self, locator: str, base_dir: Path | None = None) -> PackageSpec:
        """Record where this definition was loaded from and return self."""
        self._locator = locator
        self._base_dir = base_dir
        return self


__all__ = [
    "BuildSchema",
    "BuildStepSchema",
    "ConfigurationError",
    "InstallFileSchema",
    "InstallSchema",
    "OptionSchema",
    "PackageMetaSchema",
    "PackageSpec",
    "SourceFileSchema",
    "SourceSchema",
    "SUPPORTED_HOSTS",
    "ToolchainSchema",
    "declared_source_kinds",
]
