"""Git source fetching.

This module handles:
- Cloning a repository and checking out a tag, branch or revision
- Capturing the resolved commit so branch builds can be locked
- Reusing checkouts cached by commit
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

COMMIT_PATTERN = re.compile(r"^[0-9a-f]{40}$")

# Timeout for a single git command (seconds)
GIT_TIMEOUT = 1800


class GitError(Exception):
    """Raised when a git operation fails."""

    def __init__(self, message: str, code: str = "git_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class GitFetchResult:
    """Result of a git fetch.

    Attributes:
        path: Checkout directory.
        commit: Resolved 40-character commit SHA.
        ref_kind: ``tag``, ``branch`` or ``rev``.
        ref: The requested ref.
    """

    path: Path
    commit: str
    ref_kind: str
    ref: str


def _run_git(argv: list[str], cwd: Path | None = None) -> str:
    command = ["git", *argv]
    try:
        completed = subprocess.run(
            command,
            cwd=cwd,
            check=False,
            text=True,
            capture_output=True,
            timeout=GIT_TIMEOUT,
        )
    except subprocess.TimeoutExpired as e:
        raise GitError(f"git {argv[0]} timed out after {GIT_TIMEOUT}s", code="timeout") from e
    except OSError as e:
        raise GitError(f"Failed to run git: {e}", code="execution_error") from e
    if completed.returncode != 0:
        raise GitError(
            f"git {' '.join(argv)} failed: {completed.stderr.strip()}",
            code="git_command_failed",
        )
    return completed.stdout.strip()


def resolve_remote_ref(repo: str, ref: str) -> str:
    """Resolve a remote tag or branch to a commit with ``git ls-remote``.

    Annotated tags resolve to the commit they point at.

    Args:
        repo: Repository URL.
        ref: Tag, branch or full commit SHA.

    Returns:
        The commit SHA.

    Raises:
        GitError: If the ref does not exist on the remote.
    """
    if COMMIT_PATTERN.fullmatch(ref):
        return ref
    output = _run_git(["ls-remote", repo, ref, f"{ref}^{{}}"])
    lines = [line.split() for line in output.splitlines() if line.strip()]
    if not lines:
        raise GitError(f"Unable to resolve '{ref}' in {repo}", code="unknown_ref")
    peeled = [sha for sha, name in lines if name.endswith("^{}")]
    return peeled[0] if peeled else lines[0][0]


def _rev_expression(ref_kind: str, ref: str) -> str:
    if ref_kind == "branch":
        return f"origin/{ref}^{{commit}}"
    if ref_kind == "tag":
        return f"refs/tags/{ref}^{{commit}}"
    return f"{ref}^{{commit}}"


def fetch_git(
    repo: str,
    ref_kind: str,
    ref: str,
    cache_dir: Path,
    pinned_commit: str | None = None,
) -> GitFetchResult:
    """Fetch a git source into a checkout cached by commit.

    Args:
        repo: Repository URL.
        ref_kind: ``tag``, ``branch`` or ``rev``.
        ref: The ref to check out.
        cache_dir: Directory holding ``<commit>`` checkouts.
        pinned_commit: Commit recorded in a lock file; checked out instead
            of the branch head.

    Returns:
        GitFetchResult with the resolved commit.

    Raises:
        GitError: If cloning or checkout fails.
    """
    if ref_kind not in ("tag", "branch", "rev"):
        raise GitError(f"Unsupported git ref kind '{ref_kind}'", code="invalid_ref")

    cache_dir.mkdir(parents=True, exist_ok=True)
    wanted = pinned_commit or (ref if COMMIT_PATTERN.fullmatch(ref) else None)
    if wanted and (cache_dir / wanted).is_dir():
        logger.debug("Using cached checkout %s", cache_dir / wanted)
        return GitFetchResult(cache_dir / wanted, wanted, ref_kind, ref)

    temp_root = Path(tempfile.mkdtemp(prefix="git-", dir=str(cache_dir)))
    try:
        logger.info("Cloning %s (%s %s)", repo, ref_kind, ref)
        _run_git(["clone", "--quiet", repo, str(temp_root)])
        commit = wanted or _run_git(
            ["rev-parse", "--verify", _rev_expression(ref_kind, ref)], cwd=temp_root
        )
        _run_git(["checkout", "--quiet", "--detach", commit], cwd=temp_root)
        commit = _run_git(["rev-parse", "HEAD"], cwd=temp_root)

        final_path = cache_dir / commit
        if not final_path.exists():
            shutil.move(str(temp_root), final_path)
    finally:
        if temp_root.exists():
            shutil.rmtree(temp_root, ignore_errors=True)

    logger.info("Checked out %s at %s", repo, commit[:12])
    return GitFetchResult(final_path, commit, ref_kind, ref)


__all__ = ["COMMIT_PATTERN", "GitError", "GitFetchResult", "fetch_git", "resolve_remote_ref"]
