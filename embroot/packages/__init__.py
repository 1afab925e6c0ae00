"""Package definition module.

This module handles:
- Validation of package definitions (YAML/JSON)
- Loading single files and package directory trees
- Typed build option resolution
- Package universes consulted by the resolver
"""

from embroot.packages.io import (
    PackageLoadResult,
    load_package,
    load_packages_from_directory,
    parse_package_data,
)
from embroot.packages.options import option_env, resolve_options
from embroot.packages.schema import ConfigurationError, PackageSpec
from embroot.packages.universe import (
    DirectoryUniverse,
    InMemoryUniverse,
    LayeredUniverse,
    PackageUniverse,
)

__all__ = [
    # Schema
    "ConfigurationError",
    "PackageSpec",
    # IO functions
    "PackageLoadResult",
    "load_package",
    "load_packages_from_directory",
    "parse_package_data",
    # Options
    "option_env",
    "resolve_options",
    # Universes
    "DirectoryUniverse",
    "InMemoryUniverse",
    "LayeredUniverse",
    "PackageUniverse",
]
