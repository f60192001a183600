"""Commit: commit the worktree, push the branch, open the PR, remove the worktree.

The same routine serves the salvage path, where the commit message and PR
body record why the run stopped and the PR is always a draft.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from taskforge import git_tools
from taskforge.config import AgentConfig
from taskforge.git_tools import GitError
from taskforge.phases import elapsed_ms, log_phase
from taskforge.pipeline.states import PipelinePhase
from taskforge.pull_requests import create_pull_request, render_pr_body
from taskforge.schemas import PhaseResult, ProjectInfo, SideEffectOutcome, Task, TestResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitOutcome:
    result: PhaseResult
    commit_sha: str
    push: SideEffectOutcome | None = None
    pull_request: SideEffectOutcome | None = None

    @property
    def pr_url(self) -> str | None:
        if self.pull_request is not None and self.pull_request.ok:
            return self.pull_request.value
        return None


def commit_message(task: Task, failure_reason: str | None = None) -> str:
    if failure_reason:
        return (
            f"wip(agent): {task.title}\n\nTask ID: {task.id}\n\n"
            f"Salvaged after a failed run: {failure_reason}"
        )
    return f"feat(agent): {task.title}\n\nTask ID: {task.id}"


def push_branch(repo: Path, branch: str) -> SideEffectOutcome:
    """Push from the main repository so its credential helpers apply."""
    try:
        git_tools.push(repo, branch)
    except GitError as exc:
        return SideEffectOutcome.failure(str(exc))
    return SideEffectOutcome.success(branch)


def commit_and_publish(
    task: Task,
    project: ProjectInfo,
    config: AgentConfig,
    worktree: Path,
    branch: str,
    *,
    baseline_sha: str,
    phases: Sequence[PhaseResult],
    total_cost_usd: float,
    test_result: TestResult | None = None,
    review_summary: str | None = None,
    is_draft: bool = False,
    failure_reason: str | None = None,
    phase: PipelinePhase = PipelinePhase.COMMIT,
) -> CommitOutcome:
    """Commit all changes; push and open a PR when the remote allows it.

    Commit failures raise :class:`GitError`. Push and PR failures are
    returned as failed :class:`SideEffectOutcome` values and logged.
    """
    started = time.monotonic()
    repo = Path(task.repo_path)
    log_phase(
        phase,
        "Salvaging partial work" if failure_reason else "Committing changes and creating PR",
    )

    diff_stat = git_tools.diff_stat(worktree, baseline_sha)
    git_tools.ensure_git_identity(worktree)
    sha = git_tools.commit(worktree, commit_message(task, failure_reason))
    log_phase(phase, f"Committed {sha[:12]} on {branch}")

    push: SideEffectOutcome | None = None
    pull_request: SideEffectOutcome | None = None
    if project.can_push and not config.no_push:
        push = push_branch(repo, branch)
        if not push.ok:
            logger.warning("Failed to push branch: %s", push.reason)
        else:
            body = render_pr_body(
                title=task.title,
                description=task.description,
                task_id=task.id,
                diff_stat=diff_stat,
                phases=phases,
                total_cost_usd=total_cost_usd,
                test_result=test_result,
                review_summary=review_summary,
                failure_reason=failure_reason,
            )
            pull_request = create_pull_request(
                repo,
                branch,
                task.title,
                body,
                project.default_branch,
                is_draft or failure_reason is not None,
            )
            if not pull_request.ok:
                logger.warning("Failed to create PR: %s", pull_request.reason)
    elif config.no_push:
        log_phase(phase, "Push skipped (--skip-push)")
    elif project.has_remote:
        logger.warning("Remote exists but cannot push (no auth). Commit saved locally.")

    try:
        git_tools.remove_worktree(repo, worktree)
    except GitError as exc:
        logger.warning("Could not remove worktree %s: %s", worktree, exc)

    result = PhaseResult(phase=phase, duration_ms=elapsed_ms(started))
    return CommitOutcome(result=result, commit_sha=sha, push=push, pull_request=pull_request)
