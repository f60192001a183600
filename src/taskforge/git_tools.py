"""Git helper utilities for worktrees, diffs, commits and pushes."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from taskforge.file_io import ensure_line

logger = logging.getLogger(__name__)

_NETWORK_TIMEOUT = 60


class GitError(RuntimeError):
    """Raised when a git command fails unexpectedly."""


def _run_git(
    *args: str,
    cwd: Path,
    check: bool = True,
    timeout: int = 30,
) -> subprocess.CompletedProcess[str]:
    """Run a git command and return the CompletedProcess."""
    cmd = ["git", *args]
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise GitError(f"`git {' '.join(args)}` timed out after {timeout}s") from exc
    except OSError as exc:
        raise GitError(f"`git {' '.join(args)}` could not start: {exc}") from exc
    if check and result.returncode != 0:
        raise GitError(
            f"`git {' '.join(args)}` failed (rc={result.returncode}): {result.stderr.strip()}"
        )
    return result


def _succeeds(*args: str, cwd: Path, timeout: int = 30) -> bool:
    try:
        return _run_git(*args, cwd=cwd, check=False, timeout=timeout).returncode == 0
    except GitError:
        return False


# ---------------------------------------------------------------------------
# Repository facts
# ---------------------------------------------------------------------------


def is_git_repo(repo: str | Path) -> bool:
    """Return True when *repo* is the top of a git working tree."""
    path = Path(repo)
    if not path.is_dir():
        return False
    return (path / ".git").exists()


def default_branch(repo: str | Path) -> str:
    """Return the default branch: remote HEAD, then ``main``, then ``master``."""
    cwd = Path(repo)
    result = _run_git("symbolic-ref", "refs/remotes/origin/HEAD", cwd=cwd, check=False)
    ref = result.stdout.strip()
    if result.returncode == 0 and ref:
        return ref.removeprefix("refs/remotes/origin/")
    for candidate in ("main", "master"):
        if _succeeds("rev-parse", "--verify", "--quiet", candidate, cwd=cwd):
            return candidate
    return "main"


def has_remote(repo: str | Path) -> bool:
    """Return True when at least one remote is configured."""
    result = _run_git("remote", cwd=Path(repo), check=False)
    return result.returncode == 0 and bool(result.stdout.strip())


def can_push_to_remote(repo: str | Path) -> bool:
    """Return True when ``origin`` is reachable with the current credentials."""
    return _succeeds(
        "ls-remote", "--exit-code", "origin", "HEAD", cwd=Path(repo), timeout=_NETWORK_TIMEOUT
    )


def head_sha(repo: str | Path) -> str:
    """Return the full SHA of HEAD."""
    return _run_git("rev-parse", "HEAD", cwd=Path(repo)).stdout.strip()


def status_porcelain(repo: str | Path) -> str:
    """Return ``git status --porcelain`` output."""
    return _run_git("status", "--porcelain", cwd=Path(repo)).stdout.strip()


# ---------------------------------------------------------------------------
# Worktrees
# ---------------------------------------------------------------------------


def fetch_origin(repo: str | Path) -> None:
    _run_git("fetch", "origin", cwd=Path(repo), timeout=_NETWORK_TIMEOUT)


def create_worktree(
    repo: str | Path,
    worktree: str | Path,
    branch: str,
    base_branch: str,
    *,
    from_remote: bool,
) -> str:
    """Create *worktree* on a new *branch* and return the start point used.

    Prefers ``origin/<base_branch>`` when *from_remote* is set, falling back
    to the local branch and finally ``HEAD`` when a ref does not resolve.
    """
    cwd = Path(repo)
    candidates = [f"origin/{base_branch}"] if from_remote else []
    candidates += [base_branch, "HEAD"]
    start_point = next(
        (ref for ref in candidates if _succeeds("rev-parse", "--verify", "--quiet", ref, cwd=cwd)),
        "HEAD",
    )
    Path(worktree).parent.mkdir(parents=True, exist_ok=True)
    _run_git("worktree", "add", "-b", branch, str(worktree), start_point, cwd=cwd, timeout=120)
    logger.info("Created worktree %s on %s (from %s)", worktree, branch, start_point)
    return start_point


def remove_worktree(repo: str | Path, worktree: str | Path) -> None:
    """Force-remove *worktree*; a missing worktree is not an error."""
    cwd = Path(repo)
    if not Path(worktree).exists():
        _run_git("worktree", "prune", cwd=cwd, check=False)
        return
    _run_git("worktree", "remove", "--force", str(worktree), cwd=cwd)
    logger.info("Removed worktree %s", worktree)


def exclude_locally(repo: str | Path, pattern: str) -> bool:
    """Add *pattern* to the repository's ``info/exclude`` file."""
    cwd = Path(repo)
    git_path = _run_git("rev-parse", "--git-path", "info/exclude", cwd=cwd).stdout.strip()
    exclude_file = Path(git_path)
    if not exclude_file.is_absolute():
        exclude_file = cwd / exclude_file
    return ensure_line(exclude_file, pattern)


# ---------------------------------------------------------------------------
# Diffs
# ---------------------------------------------------------------------------


def stage_all(repo: str | Path) -> None:
    _run_git("add", "-A", cwd=Path(repo))


def diff(repo: str | Path, base: str = "HEAD") -> str:
    """Return the diff of everything in the tree (including new files) against *base*."""
    stage_all(repo)
    return _run_git("diff", "--cached", base, cwd=Path(repo)).stdout.strip()


def diff_stat(repo: str | Path, base: str = "HEAD") -> str:
    """Return ``git diff --stat`` of the tree against *base*."""
    stage_all(repo)
    return _run_git("diff", "--cached", "--stat", base, cwd=Path(repo)).stdout.strip()


def changed_files(repo: str | Path, base: str = "HEAD") -> list[str]:
    """Return paths changed against *base*."""
    stage_all(repo)
    out = _run_git("diff", "--cached", "--name-only", base, cwd=Path(repo)).stdout
    return [line for line in out.splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def ensure_git_identity(repo: str | Path) -> None:
    """Ensure the repo has a git identity configured for commits.

    Checks ``user.name`` and ``user.email``. If either is missing, sets a
    repo-local default so ``git commit`` won't fail.
    """
    cwd = Path(repo)
    for key, fallback in [
        ("user.name", "taskforge"),
        ("user.email", "taskforge@localhost"),
    ]:
        result = _run_git("config", key, cwd=cwd, check=False)
        if result.returncode != 0 or not result.stdout.strip():
            _run_git("config", key, fallback, cwd=cwd)
            logger.info("Set %s = %s in %s", key, fallback, cwd)


def commit(repo: str | Path, message: str) -> str:
    """Commit the staged tree (hooks skipped) and return the new HEAD SHA."""
    cwd = Path(repo)
    _run_git("commit", "--no-verify", "-m", message, cwd=cwd, timeout=60)
    return head_sha(cwd)


def push(repo: str | Path, branch: str) -> None:
    """Push *branch* to ``origin`` and set upstream."""
    _run_git("push", "-u", "origin", branch, cwd=Path(repo), timeout=_NETWORK_TIMEOUT * 2)
    logger.info("Pushed %s to origin", branch)


def remote_url(repo: str | Path, remote: str = "origin") -> str:
    result = _run_git("remote", "get-url", remote, cwd=Path(repo), check=False)
    return result.stdout.strip() if result.returncode == 0 else ""
