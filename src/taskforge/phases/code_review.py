"""Code review: an independent agent reviews the diff against the plan (pass / fail)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from taskforge.agent_runner import AgentRunner
from taskforge.artifacts import CODE_REVIEW_FILE, clear_document, read_json_document
from taskforge.config import AgentConfig
from taskforge.phases import call_agent, log_phase
from taskforge.pipeline.states import REVIEW_TOOLS, PipelinePhase
from taskforge.prompts import PromptCatalog
from taskforge.schemas import CodeReviewVerdict, PhaseResult, Task
from taskforge.verdicts import code_verdict_from_document, resolve_code_verdict, scan_verdict

logger = logging.getLogger(__name__)

MAX_DIFF_CHARS = 50_000


@dataclass(frozen=True)
class CodeReviewOutcome:
    result: PhaseResult
    verdict: CodeReviewVerdict


def truncate_diff(diff: str, limit: int = MAX_DIFF_CHARS) -> str:
    if len(diff) <= limit:
        return diff
    return f"{diff[:limit]}\n\n[diff truncated, {len(diff)} chars total]"


def read_code_verdict(worktree: Path, result_text: str) -> CodeReviewVerdict:
    """Prefer ``code-review.json``; fall back to the ``VERDICT:`` marker in the answer."""
    document = code_verdict_from_document(read_json_document(worktree, CODE_REVIEW_FILE))
    if document is not None:
        return document
    logger.debug("No usable %s; scanning review text", CODE_REVIEW_FILE)
    return resolve_code_verdict(scan_verdict(result_text))


def code_review(
    task: Task,
    plan_text: str,
    diff: str,
    config: AgentConfig,
    worktree: Path,
    runner: AgentRunner,
    catalog: PromptCatalog,
    *,
    budget_usd: float,
) -> CodeReviewOutcome:
    log_phase(PipelinePhase.CODE_REVIEW, f"Reviewing code changes for task: {task.title}")
    clear_document(worktree, CODE_REVIEW_FILE)
    prompt = catalog.render(
        "code_review",
        title=task.title,
        description=task.description,
        plan=plan_text,
        diff=truncate_diff(diff),
    )
    agent, result = call_agent(
        runner,
        prompt,
        phase=PipelinePhase.CODE_REVIEW,
        model=config.review_model,
        worktree=worktree,
        max_turns=config.max_code_review_turns,
        tools=REVIEW_TOOLS,
        budget_usd=budget_usd,
        append_system_prompt=catalog.system("reviewer"),
    )
    verdict = read_code_verdict(worktree, agent.result_text)
    log_phase(
        PipelinePhase.CODE_REVIEW,
        f"Verdict: {verdict.verdict} ({len(verdict.issues)} issue(s)) {verdict.summary}".rstrip(),
    )
    return CodeReviewOutcome(result=result, verdict=verdict)
