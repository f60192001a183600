"""Plan review: an independent agent judges the plan (approve / revise / reject)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from taskforge.agent_runner import AgentRunner
from taskforge.artifacts import PLAN_REVIEW_FILE, clear_document, read_json_document
from taskforge.config import AgentConfig
from taskforge.phases import call_agent, log_phase
from taskforge.pipeline.states import REVIEW_TOOLS, PipelinePhase
from taskforge.prompts import PromptCatalog
from taskforge.schemas import PhaseResult, PlanReviewVerdict, Task
from taskforge.verdicts import plan_verdict_from_document, resolve_plan_verdict, scan_verdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanReviewOutcome:
    result: PhaseResult
    verdict: PlanReviewVerdict


def read_plan_verdict(worktree: Path, result_text: str) -> PlanReviewVerdict:
    """Prefer ``plan-review.json``; fall back to the ``VERDICT:`` marker in the answer."""
    document = plan_verdict_from_document(read_json_document(worktree, PLAN_REVIEW_FILE))
    if document is not None:
        return document
    logger.debug("No usable %s; scanning review text", PLAN_REVIEW_FILE)
    return resolve_plan_verdict(scan_verdict(result_text))


def plan_review(
    task: Task,
    plan_text: str,
    config: AgentConfig,
    worktree: Path,
    runner: AgentRunner,
    catalog: PromptCatalog,
    *,
    budget_usd: float,
) -> PlanReviewOutcome:
    log_phase(PipelinePhase.PLAN_REVIEW, "Reviewing implementation plan")
    clear_document(worktree, PLAN_REVIEW_FILE)
    prompt = catalog.render(
        "plan_review",
        title=task.title,
        description=task.description,
        plan=plan_text,
    )
    agent, result = call_agent(
        runner,
        prompt,
        phase=PipelinePhase.PLAN_REVIEW,
        model=config.review_model,
        worktree=worktree,
        max_turns=config.max_plan_review_turns,
        tools=REVIEW_TOOLS,
        budget_usd=budget_usd,
        append_system_prompt=catalog.system("reviewer"),
    )
    verdict = read_plan_verdict(worktree, agent.result_text)
    log_phase(
        PipelinePhase.PLAN_REVIEW,
        f"Verdict: {verdict.verdict} ({len(verdict.issues)} issue(s)) {verdict.summary}".rstrip(),
    )
    return PlanReviewOutcome(result=result, verdict=verdict)
