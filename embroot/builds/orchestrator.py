"""Build orchestrator.

This module handles:
- The per-package state machine (pending, source ready, toolchain ready,
  built, installed; cached and failed)
- Fingerprinting and reuse through incremental stamps and the build cache
- Scheduling eligible packages on a bounded worker pool in plan order
- Propagating failures to dependents that have not started
- Locked-mode verification and lock file generation
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Callable, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from embroot import __version__
from embroot.builds.artifacts import ArtifactError, pack_tree, tree_size
from embroot.builds.environment import BuildEnvironment
from embroot.builds.fingerprint import (
    compute_fingerprint,
    create_fingerprint_inputs,
    patch_paths,
    source_digest,
    static_source_digest,
)
from embroot.builds.report import BuildReport, PackageReport
from embroot.builds.runner import (
    BuildExecutionError,
    StepRunner,
    SubprocessStepRunner,
    compose_build_commands,
    compose_install_commands,
    compose_patch_commands,
    install_files,
    run_commands,
)
from embroot.builds.sources import GitFetcher, fetch_sources, prepare_source_tree
from embroot.builds.stamps import StampStore
from embroot.cache.store import BuildCache, CacheError
from embroot.config import Settings
from embroot.fetch.download import DownloadError, DownloadManager
from embroot.fetch.extract import ExtractionError
from embroot.fetch.git import COMMIT_PATTERN, GitError, fetch_git, resolve_remote_ref
from embroot.lockfile.model import LockEntry, LockFile, LockFileError, write_lock_file
from embroot.lockfile.verify import verify_plan
from embroot.manifest import BoardSchema
from embroot.packages.options import OptionValue, resolve_options
from embroot.packages.schema import ConfigurationError
from embroot.resolver.service import BuildPlan, PlannedPackage
from embroot.toolchain.cache import ToolchainCache
from embroot.toolchain.models import ResolvedToolchain
from embroot.toolchain.resolver import ToolchainError, requirement_for, resolve_toolchain
from embroot.types import PackageState

logger = logging.getLogger(__name__)

BLOCKED_REASON = "blocked by dependency failure"

ALLOWED_TRANSITIONS: dict[PackageState, frozenset[PackageState]] = {
    PackageState.PENDING: frozenset(
        {PackageState.SOURCE_READY, PackageState.CACHED, PackageState.FAILED}
    ),
    PackageState.SOURCE_READY: frozenset({PackageState.TOOLCHAIN_READY, PackageState.FAILED}),
    PackageState.TOOLCHAIN_READY: frozenset({PackageState.BUILT, PackageState.FAILED}),
    PackageState.BUILT: frozenset({PackageState.INSTALLED, PackageState.FAILED}),
    PackageState.INSTALLED: frozenset(),
    PackageState.CACHED: frozenset(),
    PackageState.FAILED: frozenset(),
}

# Errors that fail a single package; anything else aborts the build
PACKAGE_ERRORS = (
    BuildExecutionError,
    ConfigurationError,
    DownloadError,
    ExtractionError,
    GitError,
    OSError,
    ToolchainError,
)

GitResolver = Callable[[str, str], str]


class InvalidTransitionError(Exception):
    """Raised on a state change the package lifecycle does not allow."""

    def __init__(self, message: str, code: str = "invalid_transition") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class BuildTask:
    """Mutable build state of one planned package.

    A task is only touched by the worker running it, or by the scheduler
    while it is not running.
    """

    planned: PlannedPackage
    state: PackageState = PackageState.PENDING
    history: list[PackageState] = field(default_factory=lambda: [PackageState.PENDING])
    reason: str | None = None
    options: dict[str, OptionValue] = field(default_factory=dict)
    toolchain: ResolvedToolchain | None = None
    toolchain_error: ToolchainError | None = None
    fingerprint: str | None = None
    source_digest: str | None = None
    git_commit: str | None = None
    staging_dir: Path | None = None
    log_path: Path | None = None
    bytes_produced: int = 0
    elapsed_seconds: float = 0.0

    @property
    def name(self) -> str:
        return self.planned.name

    @property
    def version(self) -> str:
        return str(self.planned.version)

    def transition(self, state: PackageState) -> None:
        """Move to ``state``.

        Raises:
            InvalidTransitionError: If the lifecycle does not allow it.
        """
        if state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"{self.name}: cannot move from {self.state.value} to {state.value}"
            )
        logger.debug("%s %s: %s -> %s", self.name, self.version, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def fail(self, reason: str) -> None:
        self.reason = reason
        self.transition(PackageState.FAILED)

    def to_report(self) -> PackageReport:
        return PackageReport(
            name=self.name,
            version=self.version,
            state=self.state,
            reason=self.reason,
            elapsed_seconds=self.elapsed_seconds,
            bytes_produced=self.bytes_produced,
            fingerprint=self.fingerprint,
            log_path=self.log_path,
            staging_dir=self.staging_dir,
        )


class Orchestrator:
    """Drives a build plan to installed trees.

    Collaborators are passed in so tests can substitute fakes.

    Args:
        settings: Application settings (directories, timeouts, jobs).
        board: Board being built for.
        downloads: Download manager for sources.
        toolchains: Toolchain cache for external toolchains.
        cache: Content-addressed build cache.
        stamps: Incremental stamp store; stamps are skipped if None.
        runner: Executes build steps.
        option_overrides: Per-package option overrides.
        jobs: Packages built in parallel; defaults to ``settings.jobs``.
        host: Host platform key; detected if None.
        git_resolver: Resolves a remote ref to a commit.
        git_fetcher: Checks out git sources.
    """

    def __init__(
        self,
        settings: Settings,
        board: BoardSchema,
        downloads: DownloadManager,
        toolchains: ToolchainCache,
        cache: BuildCache,
        stamps: StampStore | None = None,
        runner: StepRunner | None = None,
        option_overrides: Mapping[str, Mapping[str, Any]] | None = None,
        jobs: int | None = None,
        host: str | None = None,
        git_resolver: GitResolver = resolve_remote_ref,
        git_fetcher: GitFetcher = fetch_git,
    ) -> None:
        self.settings = settings
        self.board = board
        self.downloads = downloads
        self.toolchains = toolchains
        self.cache = cache
        self.stamps = stamps
        self.runner = runner or SubprocessStepRunner()
        self.option_overrides = dict(option_overrides or {})
        self.jobs = max(1, jobs or settings.jobs)
        self.host = host
        self.git_resolver = git_resolver
        self.git_fetcher = git_fetcher

    @property
    def src_root(self) -> Path:
        return self.settings.build_dir / "src"

    @property
    def staging_root(self) -> Path:
        return self.settings.build_dir / "staging"

    @property
    def logs_dir(self) -> Path:
        return self.settings.build_dir / "logs"

    def build(
        self,
        plan: BuildPlan,
        lock: LockFile | None = None,
        locked: bool = False,
        lock_path: Path | None = None,
    ) -> BuildReport:
        """Build every package of a plan.

        Args:
            plan: Resolved build plan.
            lock: Existing lock file, if any. Its git commits are reused
                in locked mode.
            locked: Fail before any work if the plan diverges from ``lock``.
            lock_path: Where to write the lock file after a successful
                build (not written in locked mode).

        Returns:
            BuildReport in plan order.

        Raises:
            ConfigurationError: If options or patches are invalid.
            LockFileError: If locked mode is requested without a lock file.
            LockMismatchError: If the plan diverges from the lock file.
        """
        started = time.monotonic()
        tasks = self._prepare(plan)

        if locked:
            if lock is None:
                raise LockFileError(
                    "Locked mode requires a lock file. Run a build without --locked first",
                    code="lock_file_missing",
                )
            verify_plan(
                plan,
                lock,
                {name: t.toolchain.identity for name, t in tasks.items() if t.toolchain},
            )

        logger.info("Building %d package(s) with %d job(s)", len(plan), self.jobs)
        self._schedule(plan, tasks, lock if locked else None)

        report = BuildReport(
            packages=[tasks[name].to_report() for name in plan.names],
            elapsed_seconds=time.monotonic() - started,
            runtime_requirements={k: list(v) for k, v in plan.runtime_requirements.items()},
        )
        if report.ok:
            logger.info("Build succeeded in %.1fs", report.elapsed_seconds)
            if lock_path is not None and not locked:
                write_lock_file(self.lock_for(plan, tasks), lock_path)
                report.lock_path = lock_path
                logger.info("Wrote lock file %s", lock_path)
        else:
            logger.error(
                "Build failed: %s", ", ".join(p.name for p in report.failed)
            )
        return report

    def _prepare(self, plan: BuildPlan) -> dict[str, BuildTask]:
        """Validate options and patches and resolve toolchains for every package."""
        unknown = sorted(set(self.option_overrides) - set(plan.names))
        for name in unknown:
            logger.warning("Ignoring options for '%s': not part of the build plan", name)

        tasks: dict[str, BuildTask] = {}
        for planned in plan.packages:
            spec = planned.spec
            task = BuildTask(planned=planned)
            task.options = resolve_options(spec, dict(self.option_overrides.get(planned.name, {})))
            patch_paths(spec)
            requirement = requirement_for(spec.build.toolchain, self.board.target)
            try:
                task.toolchain = resolve_toolchain(
                    requirement,
                    host=self.host,
                    compiler=self.settings.default_compiler,
                    compiler_version=self.settings.compiler_version,
                )
            except ToolchainError as e:
                # Surfaces when the package reaches its toolchain step
                task.toolchain_error = e
            tasks[planned.name] = task
        return tasks

    def _schedule(
        self, plan: BuildPlan, tasks: dict[str, BuildTask], lock: LockFile | None
    ) -> None:
        graph = plan.graph()
        waiting = list(plan.names)
        running: dict[Future[None], str] = {}

        with ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="embroot-build") as pool:
            while waiting or running:
                for name in list(waiting):
                    if len(running) >= self.jobs:
                        break
                    deps = tasks[name].planned.build_dependencies
                    if all(tasks[d].state.is_success for d in deps):
                        waiting.remove(name)
                        future = pool.submit(self._run_task, tasks[name], tasks, lock)
                        running[future] = name

                if not running:
                    for name in waiting:
                        tasks[name].fail(BLOCKED_REASON)
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    future.result()
                    if tasks[name].state != PackageState.FAILED:
                        continue
                    for dependent in sorted(graph.transitive_dependents([name])):
                        if dependent in waiting:
                            waiting.remove(dependent)
                            tasks[dependent].fail(f"{BLOCKED_REASON}: {name}")
                            logger.warning("Skipping %s: %s failed", dependent, name)

    def _run_task(
        self, task: BuildTask, tasks: dict[str, BuildTask], lock: LockFile | None
    ) -> None:
        started = time.monotonic()
        try:
            self._run_pipeline(task, tasks, lock)
        except PACKAGE_ERRORS as e:
            logger.error("%s %s failed: %s", task.name, task.version, e)
            task.fail(str(e))
        finally:
            task.elapsed_seconds = time.monotonic() - started

    def _run_pipeline(
        self, task: BuildTask, tasks: dict[str, BuildTask], lock: LockFile | None
    ) -> None:
        spec = task.planned.spec
        deps = {d: tasks[d] for d in task.planned.build_dependencies}

        # Pending: fingerprint, then stamp and cache
        commit = self._locked_commit(task, lock) or self._resolve_commit(task)
        self._compute_fingerprint(task, commit, deps)
        if task.fingerprint is not None and self._reuse(task):
            return

        # Source ready
        fetched = fetch_sources(
            spec,
            self.downloads,
            self.settings.downloads_dir,
            pinned_commit=commit,
            git_fetcher=self.git_fetcher,
        )
        if fetched.commit:
            commit = fetched.commit
        task.transition(PackageState.SOURCE_READY)

        # Toolchain ready
        if task.toolchain_error is not None:
            raise task.toolchain_error
        if task.toolchain is None:
            raise ToolchainError(f"No toolchain resolved for '{task.name}'")
        toolchain_env = self.toolchains.environment(task.toolchain)
        if task.fingerprint is None:
            self._compute_fingerprint(task, commit, deps)
        task.transition(PackageState.TOOLCHAIN_READY)

        # Built
        label = f"{task.name}-{task.version}"
        src_dir = self.src_root / label
        staging_dir = self.staging_root / label
        task.log_path = self.logs_dir / f"{label}.log"
        task.log_path.parent.mkdir(parents=True, exist_ok=True)
        task.log_path.unlink(missing_ok=True)
        self._forget_stamp(task)
        if staging_dir.exists():
            shutil.rmtree(staging_dir)
        staging_dir.mkdir(parents=True)

        environment = BuildEnvironment(
            toolchain=toolchain_env,
            cpu=self.board.cpu,
            src_dir=src_dir.resolve(),
            dest_dir=staging_dir.resolve(),
            jobs=self.jobs,
            dependency_dirs={
                name: dep.staging_dir for name, dep in deps.items() if dep.staging_dir
            },
            options=task.options,
            board_env=self.board.env(),
        )
        env_map = environment.to_env_map()
        process_env = environment.process_env()

        logger.info("Building %s %s", task.name, task.version)
        prepare_source_tree(fetched, src_dir)
        commands = compose_patch_commands(patch_paths(spec), src_dir)
        commands += compose_build_commands(spec, env_map, src_dir)
        run_commands(
            commands, self.runner, process_env, task.log_path, self.settings.build_timeout
        )
        task.transition(PackageState.BUILT)

        # Installed
        run_commands(
            compose_install_commands(spec, env_map, src_dir),
            self.runner,
            process_env,
            task.log_path,
            self.settings.build_timeout,
        )
        if spec.install.files:
            install_files(spec.install.files, src_dir, staging_dir, env_map)
        task.staging_dir = staging_dir
        task.bytes_produced = tree_size(staging_dir)
        task.transition(PackageState.INSTALLED)
        logger.info(
            "Installed %s %s (%d bytes)", task.name, task.version, task.bytes_produced
        )
        self._register(task)

    def _locked_commit(self, task: BuildTask, lock: LockFile | None) -> str | None:
        if lock is None or task.planned.spec.source.kind != "git":
            return None
        entry = lock.get(task.name)
        if entry is None:
            return None
        locator = entry.locator
        if locator.kind == "git" and locator.ref and COMMIT_PATTERN.fullmatch(locator.ref):
            return locator.ref
        return None

    def _resolve_commit(self, task: BuildTask) -> str | None:
        """Resolve a git tag or branch to a commit without cloning."""
        source = task.planned.spec.source
        if source.kind != "git" or source.git is None or source.git_ref is None:
            return None
        ref_kind, ref = source.git_ref
        if COMMIT_PATTERN.fullmatch(ref):
            return ref
        if ref_kind == "rev" or self.settings.offline:
            return None
        try:
            return self.git_resolver(source.git, ref)
        except GitError as e:
            logger.warning("Cannot resolve %s of %s: %s", ref, task.name, e)
            return None

    def _compute_fingerprint(
        self, task: BuildTask, commit: str | None, deps: Mapping[str, BuildTask]
    ) -> None:
        spec = task.planned.spec
        if commit:
            task.git_commit = commit
        if task.toolchain is None:
            return
        try:
            digest = source_digest(spec, task.git_commit)
        except ValueError:
            return
        dependency_fingerprints = {}
        for name, dep in deps.items():
            if dep.fingerprint is None:
                return
            dependency_fingerprints[name] = dep.fingerprint

        task.source_digest = digest
        inputs = create_fingerprint_inputs(
            spec,
            source=digest,
            options=task.options,
            dependency_fingerprints=dependency_fingerprints,
            target=task.toolchain.target,
            toolchain=task.toolchain.identity,
            board=self.board.snapshot(),
        )
        task.fingerprint = compute_fingerprint(inputs)
        logger.debug("Fingerprint of %s: %s", task.name, task.fingerprint)

    def _reuse(self, task: BuildTask) -> bool:
        """Reuse a stamped tree or a cached artifact; True on success."""
        fingerprint = task.fingerprint
        if fingerprint is None:
            return False

        if self.stamps is not None:
            stamped = self.stamps.lookup(task.name, task.version, fingerprint)
            if stamped is not None:
                logger.info("%s %s is up to date", task.name, task.version)
                task.staging_dir = stamped
                task.bytes_produced = tree_size(stamped)
                task.transition(PackageState.CACHED)
                return True

        staging_dir = self.staging_root / f"{task.name}-{task.version}"
        self._forget_stamp(task)
        try:
            entry = self.cache.restore(fingerprint, staging_dir)
        except CacheError as e:
            logger.warning("Cache lookup for %s failed, rebuilding: %s", task.name, e)
            return False
        if entry is None:
            return False

        logger.info("Restored %s %s from cache", task.name, task.version)
        task.staging_dir = staging_dir
        task.bytes_produced = tree_size(staging_dir)
        task.transition(PackageState.CACHED)
        if self.stamps is not None:
            self.stamps.record(task.name, task.version, fingerprint, staging_dir)
        return True

    def _forget_stamp(self, task: BuildTask) -> None:
        """Drop the stamp of a tree that is about to be replaced."""
        if self.stamps is not None:
            self.stamps.clear(task.name)

    def _register(self, task: BuildTask) -> None:
        """Store the installed tree in the cache and write the stamp."""
        if task.fingerprint is None or task.staging_dir is None:
            return
        artifact = self.settings.build_dir / "artifacts" / f"{task.fingerprint}.tar.gz"
        try:
            packed = pack_tree(task.staging_dir, artifact)
            self.cache.put(task.fingerprint, packed.path, task.name, task.version)
        except (ArtifactError, CacheError) as e:
            logger.warning("Could not cache %s %s: %s", task.name, task.version, e)
        finally:
            artifact.unlink(missing_ok=True)

        if self.stamps is not None:
            self.stamps.record(
                task.name, task.version, task.fingerprint, task.staging_dir, task.log_path
            )

    def lock_for(self, plan: BuildPlan, tasks: Mapping[str, BuildTask]) -> LockFile:
        """Lock file describing a completed build, entries in plan order."""
        entries = []
        for planned in plan.packages:
            task = tasks[planned.name]
            spec = planned.spec
            checksum = task.source_digest or static_source_digest(spec) or ""
            if spec.source.kind == "git" and task.git_commit:
                source = f"git:{spec.source.git}#{task.git_commit}"
            else:
                source = spec.locator
            entries.append(
                LockEntry(
                    name=planned.name,
                    version=str(planned.version),
                    checksum=checksum,
                    source=source,
                    dependencies={
                        dep: str(plan.get(dep).version) for dep in planned.build_dependencies
                    },
                    toolchain=task.toolchain.identity if task.toolchain else "",
                )
            )
        return LockFile(
            tool_version=__version__,
            toolchain_version=f"{self.settings.default_compiler} {self.settings.compiler_version}",
            packages=entries,
        )


__all__ = [
    "ALLOWED_TRANSITIONS",
    "BLOCKED_REASON",
    "BuildTask",
    "InvalidTransitionError",
    "Orchestrator",
]
