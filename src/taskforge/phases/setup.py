"""Setup: create the isolated worktree, install dependencies, record the baseline commit."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from taskforge import git_tools
from taskforge.artifacts import prepare_handoff_dir
from taskforge.check_runner import parse_command, truncate_output
from taskforge.config import AgentConfig
from taskforge.git_tools import GitError
from taskforge.phases import elapsed_ms, log_phase
from taskforge.phases.intake import SetupError
from taskforge.pipeline.states import PipelinePhase
from taskforge.schemas import PackageManager, PhaseResult, ProjectInfo, Task

logger = logging.getLogger(__name__)

BASELINE_COMMIT_MESSAGE = "chore: baseline setup (deps, .agent dir)"
_SLUG_MAX_CHARS = 40

INSTALL_COMMANDS: dict[PackageManager, str] = {
    "npm": "npm ci",
    "yarn": "yarn install --frozen-lockfile",
    "pnpm": "pnpm install --frozen-lockfile",
    "bun": "bun install --frozen-lockfile",
    "uv": "uv sync",
    "poetry": "poetry install",
}


@dataclass(frozen=True)
class SetupOutcome:
    result: PhaseResult
    worktree: Path
    branch: str
    baseline_sha: str


def slugify(title: str) -> str:
    """Lowercase, dash-separated, ``[a-z0-9-]`` only, at most 40 characters."""
    slug = re.sub(r"\s+", "-", title.lower())
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return slug[:_SLUG_MAX_CHARS]


def branch_name_for(task: Task, prefix: str) -> str:
    slug = slugify(task.title)
    name = f"{task.id}-{slug}" if slug else task.id
    return f"{prefix.strip('/')}/{name}" if prefix.strip("/") else name


def worktree_path_for(task: Task, worktree_base: str) -> Path:
    return (Path(task.repo_path) / worktree_base / task.id).resolve()


def install_dependencies(project: ProjectInfo, worktree: Path, timeout: int) -> bool:
    """Run the package manager's install command; failures are logged, not raised."""
    if project.package_manager is None:
        return True
    command = INSTALL_COMMANDS.get(project.package_manager)
    argv = parse_command(command)
    if not argv:
        return True

    log_phase(PipelinePhase.SETUP, f"Installing dependencies: {command}")
    try:
        proc = subprocess.run(
            argv,
            cwd=worktree,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        logger.warning("Dependency installation skipped: %s", exc)
        return False
    except OSError as exc:
        logger.warning("Dependency installation could not start: %s", exc)
        return False
    except subprocess.TimeoutExpired:
        logger.warning("Dependency installation timed out after %ss", timeout)
        return False
    if proc.returncode != 0:
        logger.warning(
            "Dependency installation failed (rc=%s): %s",
            proc.returncode,
            truncate_output(proc.stderr.strip(), 20),
        )
        return False
    return True


def _has_staged_changes(worktree: Path) -> bool:
    return bool(git_tools.diff(worktree))


def setup(task: Task, project: ProjectInfo, config: AgentConfig) -> SetupOutcome:
    """Create the worktree and baseline commit every later diff is measured against.

    Raises :class:`SetupError` when the worktree cannot be prepared; a
    partially created worktree is removed before raising.
    """
    started = time.monotonic()
    repo = Path(task.repo_path)
    branch = branch_name_for(task, config.branch_prefix)
    worktree = worktree_path_for(task, config.worktree_base)
    log_phase(PipelinePhase.SETUP, f"Creating worktree {worktree} on branch {branch}")

    if project.has_remote:
        try:
            git_tools.fetch_origin(repo)
        except GitError as exc:
            logger.warning("Failed to fetch origin, continuing anyway: %s", exc)

    try:
        git_tools.exclude_locally(repo, f"/{config.worktree_base.strip('/')}/")
        git_tools.create_worktree(
            repo,
            worktree,
            branch,
            project.default_branch,
            from_remote=project.has_remote,
        )
    except (GitError, OSError) as exc:
        raise SetupError(f"Could not create worktree: {exc}") from exc

    try:
        prepare_handoff_dir(worktree)
        claude_md = repo / "CLAUDE.md"
        if claude_md.is_file() and not (worktree / "CLAUDE.md").exists():
            shutil.copyfile(claude_md, worktree / "CLAUDE.md")

        install_dependencies(project, worktree, config.install_timeout_seconds)

        git_tools.ensure_git_identity(worktree)
        if _has_staged_changes(worktree):
            git_tools.commit(worktree, BASELINE_COMMIT_MESSAGE)
            log_phase(PipelinePhase.SETUP, "Baseline commit created")
        baseline_sha = git_tools.head_sha(worktree)
    except (GitError, OSError) as exc:
        try:
            git_tools.remove_worktree(repo, worktree)
        except GitError as cleanup_exc:
            logger.warning("Could not remove worktree after failed setup: %s", cleanup_exc)
        raise SetupError(f"Could not prepare worktree: {exc}") from exc

    result = PhaseResult(phase=PipelinePhase.SETUP, duration_ms=elapsed_ms(started))
    return SetupOutcome(result=result, worktree=worktree, branch=branch, baseline_sha=baseline_sha)
