"""Package definition loading.

This module provides helpers for loading package definitions from
YAML/JSON files and package directory trees, converting schema
validation failures into field-level ConfigurationErrors.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from embroot.packages.schema import (
    ConfigurationError,
    PackageSpec,
    declared_source_kinds,
)

PACKAGE_FILE_SUFFIXES = (".yaml", ".yml", ".json")


@dataclass
class PackageLoadResult:
    """Result of loading every package definition under a directory.

    Attributes:
        packages: Successfully loaded definitions.
        errors: Mapping of file path to error message for failed files.
    """

    packages: list[PackageSpec] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the document is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _error_fields(error: ValidationError) -> list[str]:
    return [".".join(str(p) for p in e["loc"]) for e in error.errors()]


def parse_package_data(data: dict[str, Any], origin: str = "<data>") -> PackageSpec:
    """Parse and validate package definition data.

    Args:
        data: Dictionary containing the package definition.
        origin: Where the data came from, used in error messages.

    Returns:
        Validated PackageSpec instance.

    Raises:
        ConfigurationError: If the definition is invalid. ``fields`` names
            every offending field.
    """
    source = data.get("source")
    if isinstance(source, dict):
        kinds = declared_source_kinds(source)
        if len(kinds) != 1:
            fields = [f"source.{k}" for k in kinds] or ["source"]
            found = " and ".join(fields) if kinds else "no source kind"
            raise ConfigurationError(
                f"{origin}: source must declare exactly one of url, git or "
                f"sources, found {found}",
                fields=fields,
                code="invalid_source",
            )

    try:
        return PackageSpec.model_validate(data)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(
            f"{origin}: invalid package definition: {details}",
            fields=_error_fields(e),
            code="invalid_package",
        ) from e


def load_package(path: Path, locator: str | None = None) -> PackageSpec:
    """Load and validate a package definition from a YAML or JSON file.

    Args:
        path: Path to the package file.
        locator: Source locator to record; defaults to ``path:<path>``.

    Returns:
        Validated PackageSpec with its origin recorded.

    Raises:
        ConfigurationError: If the file cannot be parsed or is invalid.
        FileNotFoundError: If the file does not exist.
    """
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = load_yaml(path)
        elif suffix == ".json":
            data = load_json(path)
        else:
            raise ConfigurationError(
                f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json",
                code="unsupported_format",
            )
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigurationError(f"{path}: parse error: {e}", code="parse_error") from e

    spec = parse_package_data(data, origin=str(path))
    return spec.with_origin(locator or f"path:{path}", base_dir=path.parent)


def load_packages_from_directory(directory: Path) -> PackageLoadResult:
    """Load every package definition under a package tree.

    Definitions live at ``<directory>/<name>/*.yaml`` (one file per
    version) or directly at ``<directory>/*.yaml``. Locators are recorded
    as ``path:<file relative to directory>``.

    Args:
        directory: Root of the package tree.

    Returns:
        PackageLoadResult with loaded definitions and per-file errors.

    Raises:
        FileNotFoundError: If the directory does not exist.
    """
    if not directory.is_dir():
        raise FileNotFoundError(f"Directory not found: {directory}")

    result = PackageLoadResult()
    files = sorted(
        p
        for p in list(directory.glob("*")) + list(directory.glob("*/*"))
        if p.is_file() and p.suffix.lower() in PACKAGE_FILE_SUFFIXES
    )
    for file_path in files:
        relative = file_path.relative_to(directory).as_posix()
        try:
            result.packages.append(load_package(file_path, locator=f"path:{relative}"))
        except ConfigurationError as e:
            result.errors[relative] = str(e)
    return result


__all__ = [
    "PackageLoadResult",
    "load_json",
    "load_package",
    "load_packages_from_directory",
    "load_yaml",
    "parse_package_data",
]
