"""Build step runner.

This module handles:
- Composing build and install commands for the predefined build systems
- Expanding ``${VAR}`` references in explicit steps
- Executing steps with subprocess, appending output to the package log
- Enforcing step timeouts
- Declarative install copy rules
"""

from __future__ import annotations

import glob
import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from string import Template
from typing import Protocol

from embroot.packages.schema import InstallFileSchema, PackageSpec
from embroot.types import BuildSystem

logger = logging.getLogger(__name__)

CMAKE_BUILD_DIR = "build"
MESON_BUILD_DIR = "build"


class BuildExecutionError(Exception):
    """Raised when a build step fails or cannot be executed."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class BuildCommand:
    """One command to run in a package's build.

    Attributes:
        argv: Command and arguments.
        cwd: Working directory.
    """

    argv: list[str]
    cwd: Path

    def display(self) -> str:
        return shlex.join(self.argv)


@dataclass
class StepResult:
    """Result of running one command."""

    exit_code: int
    started_at: datetime
    finished_at: datetime

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class StepRunner(Protocol):
    """Executes build commands."""

    def run(
        self,
        command: BuildCommand,
        env: dict[str, str],
        log_path: Path,
        timeout: int | None = None,
    ) -> StepResult: ...


class SubprocessStepRunner:
    """Runs commands with subprocess, appending output to a log file."""

    def run(
        self,
        command: BuildCommand,
        env: dict[str, str],
        log_path: Path,
        timeout: int | None = None,
    ) -> StepResult:
        """Execute one command.

        Args:
            command: Command to run.
            env: Complete process environment.
            log_path: Log file; stdout and stderr are appended.
            timeout: Timeout in seconds (None = no timeout).

        Returns:
            StepResult with the exit code.

        Raises:
            BuildExecutionError: If the command times out or cannot start.
        """
        cmd_str = command.display()
        logger.debug("Executing: %s (cwd %s)", cmd_str, command.cwd)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        started_at = datetime.now(timezone.utc)

        try:
            with log_path.open("a") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write(f"# CWD: {command.cwd}\n")
                log_file.write("# " + "=" * 70 + "\n\n")
                log_file.flush()

                result = subprocess.run(
                    command.argv,
                    cwd=command.cwd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=timeout,
                    env=env,
                    check=False,
                )
                exit_code = result.returncode

        except subprocess.TimeoutExpired as e:
            message = f"Step timed out after {timeout} seconds: {cmd_str}"
            logger.error("%s. See log: %s", message, log_path)
            with log_path.open("a") as log_file:
                log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
            raise BuildExecutionError(message, exit_code=-1, code="build_timeout") from e

        except OSError as e:
            message = f"Failed to execute '{cmd_str}': {e}"
            logger.error(message)
            with log_path.open("a") as log_file:
                log_file.write(f"\n# ERROR: {e}\n")
            raise BuildExecutionError(message, code="execution_error") from e

        finished_at = datetime.now(timezone.utc)
        with log_path.open("a") as log_file:
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Duration: {duration:.1f}s\n\n")

        return StepResult(exit_code=exit_code, started_at=started_at, finished_at=finished_at)


def expand(text: str, env_map: dict[str, str]) -> str:
    """Substitute ``${VAR}`` and ``$VAR`` references; unknown names are kept."""
    return Template(text).safe_substitute(env_map)


def _target_arch(target: str) -> str:
    return target.split("-", 1)[0]


def compose_patch_commands(patches: list[Path], src_dir: Path) -> list[BuildCommand]:
    """Commands applying patches in declared order."""
    return [BuildCommand(["patch", "-p1", "-i", str(p)], src_dir) for p in patches]


def compose_build_commands(
    spec: PackageSpec, env_map: dict[str, str], src_dir: Path
) -> list[BuildCommand]:
    """Compose the ordered build commands of a package.

    Args:
        spec: Package definition.
        env_map: Package build variables (``TARGET``, ``PREFIX``, ``JOBS``...).
        src_dir: Source directory the commands run in.

    Returns:
        Commands in execution order.
    """
    build = spec.build
    target = env_map.get("TARGET", "")
    prefix = env_map.get("PREFIX", "/usr")
    jobs = env_map.get("JOBS", "1")

    if build.type == BuildSystem.AUTOTOOLS:
        return [
            BuildCommand(
                ["./configure", f"--host={target}", f"--prefix={prefix}", *build.configure_args],
                src_dir,
            ),
            BuildCommand(["make", f"-j{jobs}", *build.make_args], src_dir),
        ]

    if build.type == BuildSystem.CMAKE:
        return [
            BuildCommand(
                [
                    "cmake",
                    "-S",
                    ".",
                    "-B",
                    CMAKE_BUILD_DIR,
                    f"-DCMAKE_INSTALL_PREFIX={prefix}",
                    "-DCMAKE_SYSTEM_NAME=Linux",
                    f"-DCMAKE_SYSTEM_PROCESSOR={_target_arch(target)}",
                    "-DCMAKE_BUILD_TYPE=Release",
                    *build.cmake_args,
                ],
                src_dir,
            ),
            BuildCommand(["cmake", "--build", CMAKE_BUILD_DIR, "-j", jobs], src_dir),
        ]

    if build.type == BuildSystem.MESON:
        return [
            BuildCommand(
                ["meson", "setup", MESON_BUILD_DIR, f"--prefix={prefix}", *build.meson_args],
                src_dir,
            ),
            BuildCommand(["meson", "compile", "-C", MESON_BUILD_DIR, "-j", jobs], src_dir),
        ]

    if build.type == BuildSystem.MAKE:
        cc = env_map.get("CC", "cc")
        return [BuildCommand(["make", f"-j{jobs}", f"CC={cc}", *build.make_args], src_dir)]

    commands = []
    for step in build.steps:
        if step.args:
            argv = [expand(step.run, env_map), *(expand(a, env_map) for a in step.args)]
        else:
            argv = ["sh", "-c", expand(step.run, env_map)]
        commands.append(BuildCommand(argv, src_dir))
    return commands


def compose_install_commands(
    spec: PackageSpec, env_map: dict[str, str], src_dir: Path
) -> list[BuildCommand]:
    """Compose the install commands of a package.

    A script runs through ``sh -c``; without a script or copy rules the
    build system's default install is used. Custom builds without an
    install section are expected to populate ``DESTDIR`` themselves.
    """
    install = spec.install
    if install.script:
        return [BuildCommand(["sh", "-c", expand(install.script, env_map)], src_dir)]
    if install.files:
        return []

    dest = env_map.get("DESTDIR", "")
    prefix = env_map.get("PREFIX", "/usr")
    build_type = spec.build.type
    if build_type == BuildSystem.AUTOTOOLS:
        return [BuildCommand(["make", "install", f"DESTDIR={dest}"], src_dir)]
    if build_type == BuildSystem.CMAKE:
        # cmake --install reads DESTDIR from the environment
        return [BuildCommand(["cmake", "--install", CMAKE_BUILD_DIR], src_dir)]
    if build_type == BuildSystem.MESON:
        return [
            BuildCommand(["meson", "install", "-C", MESON_BUILD_DIR, "--destdir", dest], src_dir)
        ]
    if build_type == BuildSystem.MAKE:
        return [
            BuildCommand(["make", "install", f"DESTDIR={dest}", f"PREFIX={prefix}"], src_dir)
        ]
    return []


def install_files(
    rules: list[InstallFileSchema],
    src_dir: Path,
    dest_dir: Path,
    env_map: dict[str, str] | None = None,
) -> list[Path]:
    """Apply declarative copy rules.

    ``src`` is a path or glob relative to the source directory; ``dst`` is
    a path inside the staging directory. A ``dst`` ending in ``/`` (or any
    glob source) is treated as a directory.

    Args:
        rules: Copy rules.
        src_dir: Source directory.
        dest_dir: Staging directory.
        env_map: Variables for ``${VAR}`` expansion.

    Returns:
        Installed file paths.

    Raises:
        BuildExecutionError: If a source matches nothing or escapes its root.
    """
    env_map = env_map or {}
    installed: list[Path] = []
    src_root = src_dir.resolve()
    dest_root = dest_dir.resolve()

    for rule in rules:
        pattern = expand(rule.src, env_map)
        matches = sorted(glob.glob(str(src_dir / pattern)))
        if not matches:
            raise BuildExecutionError(
                f"Install source '{rule.src}' matched no files in {src_dir}",
                code="install_source_missing",
            )

        dst_text = expand(rule.dst, env_map)
        dst = (dest_dir / dst_text.lstrip("/")).resolve()
        if not dst.is_relative_to(dest_root):
            raise BuildExecutionError(
                f"Install destination '{rule.dst}' escapes the staging directory",
                code="unsafe_path",
            )
        as_dir = dst_text.endswith("/") or glob.has_magic(pattern) or len(matches) > 1

        for match in matches:
            source = Path(match)
            if not source.resolve().is_relative_to(src_root):
                raise BuildExecutionError(
                    f"Install source '{rule.src}' escapes the source directory",
                    code="unsafe_path",
                )
            target = dst / source.name if as_dir else dst
            target.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
            else:
                shutil.copy2(source, target)
            if rule.mode:
                target.chmod(int(rule.mode, 8))
            installed.append(target)
            logger.debug("Installed %s -> %s", source, target)

    return installed


def run_commands(
    commands: list[BuildCommand],
    runner: StepRunner,
    env: dict[str, str],
    log_path: Path,
    timeout: int | None = None,
) -> None:
    """Run commands in order, stopping at the first failure.

    Raises:
        BuildExecutionError: If a command exits non-zero, times out or
            cannot start.
    """
    for command in commands:
        result = runner.run(command, env, log_path, timeout)
        if result.exit_code != 0:
            message = (
                f"Step failed with exit code {result.exit_code}: {command.display()}. "
                f"See log: {log_path}"
            )
            logger.error(message)
            raise BuildExecutionError(message, exit_code=result.exit_code, code="step_failed")


__all__ = [
    "BuildCommand",
    "BuildExecutionError",
    "StepResult",
    "StepRunner",
    "SubprocessStepRunner",
    "compose_build_commands",
    "compose_install_commands",
    "compose_patch_commands",
    "expand",
    "install_files",
    "run_commands",
]
