"""Execute: the agent implements the approved plan, or fixes review findings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from taskforge import git_tools
from taskforge.agent_runner import AgentRunner
from taskforge.config import AgentConfig
from taskforge.phases import PhaseError, call_agent, log_phase
from taskforge.pipeline.states import EXECUTE_TOOLS, PipelinePhase
from taskforge.prompts import PromptCatalog
from taskforge.schemas import PhaseResult, Task


class EmptyDiffError(PhaseError):
    """The implementation step finished without changing any file."""


@dataclass(frozen=True)
class ExecuteOutcome:
    result: PhaseResult
    diff: str
    session_id: str


def execute(
    task: Task,
    config: AgentConfig,
    worktree: Path,
    runner: AgentRunner,
    catalog: PromptCatalog,
    *,
    budget_usd: float,
    plan_session_id: str | None,
    baseline_sha: str,
) -> ExecuteOutcome:
    """Implement the plan, resuming the planner's session.

    Raises :class:`EmptyDiffError` when nothing changed against the baseline.
    """
    log_phase(PipelinePhase.EXECUTE, f"Implementing plan for task: {task.title}")
    agent, result = call_agent(
        runner,
        catalog.render("execute"),
        phase=PipelinePhase.EXECUTE,
        model=config.execute_model,
        worktree=worktree,
        max_turns=config.max_execute_turns,
        tools=EXECUTE_TOOLS,
        budget_usd=budget_usd,
        resume_session_id=plan_session_id or None,
    )

    diff = git_tools.diff(worktree, baseline_sha)
    if not diff:
        failed = result.model_copy(
            update={"success": False, "error": "Execution produced no code changes"}
        )
        raise EmptyDiffError("Execution produced no code changes", result=failed)

    return ExecuteOutcome(
        result=result,
        diff=diff,
        session_id=agent.session_id or plan_session_id or "",
    )


def execute_fix_from_review(
    config: AgentConfig,
    worktree: Path,
    runner: AgentRunner,
    catalog: PromptCatalog,
    *,
    budget_usd: float,
    session_id: str | None,
    issues_text: str,
    previous_diff: str,
    baseline_sha: str,
) -> ExecuteOutcome:
    """Address review findings; the previous diff is kept if nothing new changed."""
    log_phase(PipelinePhase.EXECUTE, "Fixing issues found during code review")
    agent, result = call_agent(
        runner,
        catalog.render("execute", "fix_from_review", issues=issues_text),
        phase=PipelinePhase.EXECUTE,
        model=config.execute_model,
        worktree=worktree,
        max_turns=config.max_execute_turns,
        tools=EXECUTE_TOOLS,
        budget_usd=budget_usd,
        resume_session_id=session_id or None,
        cost_label="execute (fix from review)",
    )
    diff = git_tools.diff(worktree, baseline_sha) or previous_diff
    return ExecuteOutcome(result=result, diff=diff, session_id=agent.session_id or session_id or "")
