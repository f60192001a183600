"""Plan: an agent explores the worktree and writes ``.agent/plan.md``."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from taskforge.agent_runner import AgentRunner
from taskforge.artifacts import PlanArtifactError, read_plan
from taskforge.config import AgentConfig
from taskforge.phases import PhaseError, call_agent, log_phase
from taskforge.pipeline.states import PLAN_TOOLS, PipelinePhase
from taskforge.prompts import PromptCatalog
from taskforge.schemas import PhaseResult, ProjectInfo, Task


class PlanFailedError(PhaseError):
    """The planner ran but left no usable plan."""


@dataclass(frozen=True)
class PlanOutcome:
    result: PhaseResult
    plan_text: str
    session_id: str


def build_plan_prompt(
    catalog: PromptCatalog,
    task: Task,
    project: ProjectInfo,
    feedback: str | None = None,
    *,
    revising: bool = False,
) -> str:
    if revising and feedback:
        return catalog.render("plan", "revise", feedback=feedback)
    return catalog.render(
        "plan",
        title=task.title,
        description=task.description,
        project_type=project.project_type,
        test_command=project.test_command or "unknown",
        lint_command=project.lint_command or "none",
        typecheck_command=project.typecheck_command or "none",
    )


def plan(
    task: Task,
    project: ProjectInfo,
    config: AgentConfig,
    worktree: Path,
    runner: AgentRunner,
    catalog: PromptCatalog,
    *,
    budget_usd: float,
    resume_session_id: str | None = None,
    feedback: str | None = None,
) -> PlanOutcome:
    """Run the planner; revisions resume the earlier plan session with *feedback*.

    Raises :class:`PlanFailedError` when the plan file is missing or lacks a
    required section.
    """
    revising = bool(feedback)
    log_phase(
        PipelinePhase.PLAN,
        "Revising plan based on review feedback" if revising else "Planning implementation",
    )
    prompt = build_plan_prompt(catalog, task, project, feedback, revising=revising)
    agent, result = call_agent(
        runner,
        prompt,
        phase=PipelinePhase.PLAN,
        model=config.plan_model,
        worktree=worktree,
        max_turns=config.max_plan_turns,
        tools=PLAN_TOOLS,
        budget_usd=budget_usd,
        resume_session_id=(resume_session_id or None) if revising else None,
    )

    try:
        plan_text = read_plan(worktree)
    except PlanArtifactError as exc:
        failed = result.model_copy(update={"success": False, "error": str(exc)})
        raise PlanFailedError(str(exc), result=failed) from exc

    return PlanOutcome(
        result=result,
        plan_text=plan_text,
        session_id=agent.session_id or resume_session_id or "",
    )
