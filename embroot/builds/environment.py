"""Per-package build environment.

The environment handed to build steps contains the compiler, target and
directory variables, one ``DEP_<NAME>_DIR`` per build-time dependency,
one ``OPT_<NAME>`` per package option and one ``BOARD_<NAME>`` per board
option.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from embroot.packages.options import OptionValue, option_env
from embroot.toolchain.models import ToolchainEnvironment
from embroot.types import env_var_name

DEFAULT_PREFIX = "/usr"


@dataclass
class BuildEnvironment:
    """Everything a package's build steps see.

    Attributes:
        toolchain: Compiler environment.
        cpu: Board CPU.
        src_dir: Source directory (``SRCDIR``).
        dest_dir: Staging directory (``DESTDIR``).
        prefix: Install prefix (``PREFIX``).
        jobs: Parallel jobs for the build system (``JOBS``).
        dependency_dirs: Installed tree of each build-time dependency.
        options: Effective package option values.
        board_env: ``BOARD_<NAME>`` variables.
    """

    toolchain: ToolchainEnvironment
    cpu: str
    src_dir: Path
    dest_dir: Path
    prefix: str = DEFAULT_PREFIX
    jobs: int = 1
    dependency_dirs: dict[str, Path] = field(default_factory=dict)
    options: dict[str, OptionValue] = field(default_factory=dict)
    board_env: dict[str, str] = field(default_factory=dict)

    def to_env_map(self) -> dict[str, str]:
        """Return the package-specific variables."""
        env = self.toolchain.to_env()
        env.update(
            {
                "CPU": self.cpu,
                "SRCDIR": str(self.src_dir),
                "DESTDIR": str(self.dest_dir),
                "PREFIX": self.prefix,
                "JOBS": str(self.jobs),
            }
        )
        for name, path in sorted(self.dependency_dirs.items()):
            env[f"{env_var_name('DEP', name)}_DIR"] = str(path)
        env.update(option_env(self.options))
        env.update(self.board_env)
        return env

    def process_env(self, base: dict[str, str] | None = None) -> dict[str, str]:
        """Full process environment: ``base`` (default ``os.environ``) plus the map."""
        env = dict(os.environ if base is None else base)
        env.update(self.to_env_map())
        if self.toolchain.bin_dir is not None:
            env["PATH"] = os.pathsep.join(
                p for p in (str(self.toolchain.bin_dir), env.get("PATH", "")) if p
            )
        return env


__all__ = ["DEFAULT_PREFIX", "BuildEnvironment"]
