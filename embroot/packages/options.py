"""Build option resolution.

This module handles:
- Merging option defaults with per-package overrides
- Validating override values against typed option definitions
- Rendering effective values for the build environment
"""

from __future__ import annotations

from typing import Any

from embroot.packages.schema import ConfigurationError, PackageSpec
from embroot.types import env_var_name

OptionValue = bool | int | float | str


def resolve_options(
    spec: PackageSpec,
    overrides: dict[str, Any] | None = None,
) -> dict[str, OptionValue]:
    """Compute the effective option values for a package.

    Args:
        spec: Package definition declaring the options.
        overrides: Values chosen by the project for this package.

    Returns:
        Mapping of every declared option to its effective value,
        sorted by option name.

    Raises:
        ConfigurationError: If an override names an unknown option or
            its value is not valid for the option's type.
    """
    overrides = overrides or {}
    unknown = sorted(set(overrides) - set(spec.options))
    if unknown:
        raise ConfigurationError(
            f"Unknown option(s) {', '.join(unknown)} for package '{spec.name}'; "
            f"declared options: {', '.join(sorted(spec.options)) or 'none'}",
            fields=[f"options.{spec.name}.{name}" for name in unknown],
            code="unknown_option",
        )

    values: dict[str, OptionValue] = {}
    for name in sorted(spec.options):
        definition = spec.options[name]
        if name not in overrides:
            values[name] = definition.default
            continue
        try:
            values[name] = definition.check(overrides[name])
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for option '{name}' of package '{spec.name}': {e}",
                fields=[f"options.{spec.name}.{name}"],
                code="invalid_option",
            ) from e
    return values


def format_option_value(value: OptionValue) -> str:
    """Render an option value as an environment string."""
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def option_env(values: dict[str, OptionValue]) -> dict[str, str]:
    """Map effective option values to ``OPT_<NAME>`` variables."""
    return {env_var_name("OPT", name): format_option_value(v) for name, v in values.items()}


__all__ = ["OptionValue", "format_option_value", "option_env", "resolve_options"]
