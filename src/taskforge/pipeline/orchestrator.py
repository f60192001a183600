"""Pipeline orchestrator: drives one task from intake to a committed branch.

The orchestrator is a small state machine::

    intake → setup → [baseline] → plan ⇄ plan-review → execute ⇄ code-review
           → test ⇄ test-fix → commit → done

Three loops are bounded by the config's cycle caps. Reaching a cap logs a
warning and carries on with the best artifact so far. Every agent call is
recorded in a :class:`CostLedger` and the total budget is checked before
and after each one.

Anything that escapes a phase is caught in :meth:`PipelineOrchestrator.run`,
which salvages work into a draft PR when there is a diff to keep. The
worktree is removed on every exit path.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from taskforge import git_tools
from taskforge.agent_runner import AgentRunError, AgentRunner
from taskforge.check_runner import CheckRunner
from taskforge.config import AgentConfig
from taskforge.git_tools import GitError
from taskforge.ledger import BudgetExceededError, CostLedger
from taskforge.phases import PhaseError
from taskforge.phases.code_review import code_review
from taskforge.phases.commit import commit_and_publish
from taskforge.phases.execute import EmptyDiffError, execute, execute_fix_from_review
from taskforge.phases.intake import intake
from taskforge.phases.plan import plan
from taskforge.phases.plan_review import plan_review
from taskforge.phases.setup import setup
from taskforge.phases.test import run_baseline, run_checks
from taskforge.phases.test_fix import run_test_fix
from taskforge.pipeline.states import OrchestratorState, PipelinePhase
from taskforge.prompts import PromptCatalog
from taskforge.schemas import (
    CodeReviewVerdict,
    ControllerResult,
    PhaseResult,
    PlanReviewVerdict,
    ProjectInfo,
    RunStatus,
    Task,
    TestBaseline,
    TestResult,
)
from taskforge.verdicts import format_issues

logger = logging.getLogger(__name__)

# Ledger phase charged when a state fails without its own result.
_STATE_PHASES: dict[OrchestratorState, PipelinePhase] = {
    OrchestratorState.INTAKE: PipelinePhase.INTAKE,
    OrchestratorState.SETUP: PipelinePhase.SETUP,
    OrchestratorState.PLAN: PipelinePhase.PLAN,
    OrchestratorState.PLAN_REVIEW: PipelinePhase.PLAN_REVIEW,
    OrchestratorState.EXECUTE: PipelinePhase.EXECUTE,
    OrchestratorState.CODE_REVIEW: PipelinePhase.CODE_REVIEW,
    OrchestratorState.TEST: PipelinePhase.TEST,
    OrchestratorState.TEST_FIX: PipelinePhase.TEST_FIX,
    OrchestratorState.COMMIT: PipelinePhase.COMMIT,
}


class PlanRejectedError(RuntimeError):
    """The plan reviewer rejected the task outright."""


@dataclass
class OrchestratorContext:
    """Mutable per-run state threaded through the phases."""

    state: OrchestratorState = OrchestratorState.INTAKE
    project: ProjectInfo | None = None
    worktree: Path | None = None
    branch: str | None = None
    baseline_sha: str | None = None
    baseline: TestBaseline | None = None
    plan_session_id: str | None = None
    execute_session_id: str | None = None
    plan_text: str = ""
    plan_verdict: PlanReviewVerdict | None = None
    code_verdict: CodeReviewVerdict | None = None
    diff: str = ""
    last_test_result: TestResult | None = None
    pr_url: str | None = None
    plan_review_cycles: int = 0
    code_review_cycles: int = 0
    test_fix_cycles: int = 0
    plan_retry_used: bool = False
    ledger: CostLedger = field(default_factory=CostLedger)


class PipelineOrchestrator:
    """Run one task through every phase and decide its final status.

    Parameters
    ----------
    task:
        The task to implement.
    config:
        Frozen run configuration.
    runner:
        Agent backend used for every agent-driven phase.
    check_runner:
        Runs lint / typecheck / unit commands. Defaults to one using
        ``config.check_timeout_seconds``.
    catalog:
        Prompt templates. Defaults to the built-in catalog.
    """

    def __init__(
        self,
        task: Task,
        config: AgentConfig,
        *,
        runner: AgentRunner,
        check_runner: CheckRunner | None = None,
        catalog: PromptCatalog | None = None,
    ) -> None:
        self.task = task
        self.config = config
        self.runner = runner
        self.check_runner = check_runner or CheckRunner(timeout=config.check_timeout_seconds)
        self.catalog = catalog or PromptCatalog()
        self.context = OrchestratorContext()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> ControllerResult:
        """Run the pipeline to a terminal state and return the result."""
        started = time.monotonic()
        logger.info("Task %s: %s", self.task.id, self.task.title)
        try:
            status, summary = self._run_phases()
            failed_state = None
        except Exception as exc:
            failed_state = self.context.state.value
            status, summary = self._fail(exc)
        finally:
            self._remove_worktree()

        ledger = self.context.ledger
        result = ControllerResult(
            status=status,
            pr_url=self.context.pr_url,
            branch_name=self.context.branch,
            phases=ledger.entries,
            total_cost_usd=ledger.total_cost_usd,
            total_duration_ms=int((time.monotonic() - started) * 1000),
            summary=summary,
            failed_state=failed_state,
        )
        logger.info(
            "Run finished: %s (cost $%.4f, %s phase entries)",
            result.status,
            result.total_cost_usd,
            len(result.phases),
        )
        return result

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _enter(self, state: OrchestratorState) -> None:
        logger.debug("state %s -> %s", self.context.state.value, state.value)
        self.context.state = state

    def _record(self, result: PhaseResult) -> None:
        self.context.ledger.record(result)

    def _check_budget(self, where: str) -> None:
        self.context.ledger.check_budget(self.config.max_total_budget_usd, where)

    def _call_budget(self) -> float:
        """Spend ceiling for the next agent call."""
        remaining = self.context.ledger.remaining(self.config.max_total_budget_usd)
        return min(self.config.max_budget_per_phase_usd, remaining)

    def _require_worktree(self) -> tuple[Path, str]:
        ctx = self.context
        if ctx.worktree is None or ctx.baseline_sha is None:
            raise RuntimeError("Worktree is not set up")
        return ctx.worktree, ctx.baseline_sha

    def _require_project(self) -> ProjectInfo:
        if self.context.project is None:
            raise RuntimeError("Project info is not available")
        return self.context.project

    # ------------------------------------------------------------------
    # Happy path
    # ------------------------------------------------------------------

    def _run_phases(self) -> tuple[RunStatus, str]:
        ctx = self.context

        self._enter(OrchestratorState.INTAKE)
        intake_outcome = intake(self.task)
        self._record(intake_outcome.result)
        ctx.project = intake_outcome.project

        self._enter(OrchestratorState.SETUP)
        setup_outcome = setup(self.task, ctx.project, self.config)
        self._record(setup_outcome.result)
        ctx.worktree = setup_outcome.worktree
        ctx.branch = setup_outcome.branch
        ctx.baseline_sha = setup_outcome.baseline_sha

        if self.config.skip_tests:
            ctx.baseline = TestBaseline()
        else:
            baseline_outcome = run_baseline(ctx.project, ctx.worktree, self.check_runner)
            self._record(baseline_outcome.result)
            ctx.baseline = baseline_outcome.baseline

        self._planning_stage()
        self._implementation_stage()
        self._testing_stage()
        return self._commit_stage()

    def _run_plan(self, feedback: str | None = None) -> None:
        """Run the planner, retrying once per run after a failed attempt."""
        ctx = self.context
        project = self._require_project()
        worktree, _ = self._require_worktree()
        while True:
            self._check_budget("before plan")
            try:
                outcome = plan(
                    self.task,
                    project,
                    self.config,
                    worktree,
                    self.runner,
                    self.catalog,
                    budget_usd=self._call_budget(),
                    resume_session_id=ctx.plan_session_id if feedback else None,
                    feedback=feedback,
                )
            except (PhaseError, AgentRunError) as exc:
                if ctx.plan_retry_used:
                    # _fail records the second attempt's entry.
                    raise
                if isinstance(exc, PhaseError) and exc.result is not None:
                    self._record(exc.result)
                ctx.plan_retry_used = True
                logger.warning("[plan] Planning failed, retrying once: %s", exc)
                self._check_budget("after failed plan")
                continue
            self._record(outcome.result)
            self._check_budget("after plan")
            ctx.plan_text = outcome.plan_text
            ctx.plan_session_id = outcome.session_id or ctx.plan_session_id
            return

    def _planning_stage(self) -> None:
        ctx = self.context
        worktree, _ = self._require_worktree()

        self._enter(OrchestratorState.PLAN)
        self._run_plan()

        if self.config.skip_plan_review:
            logger.info("[plan-review] Skipped")
            return

        cap = self.config.max_plan_review_cycles
        while ctx.plan_review_cycles < cap:
            self._enter(OrchestratorState.PLAN_REVIEW)
            self._check_budget("before plan-review")
            ctx.plan_review_cycles += 1
            review = plan_review(
                self.task,
                ctx.plan_text,
                self.config,
                worktree,
                self.runner,
                self.catalog,
                budget_usd=self._call_budget(),
            )
            self._record(review.result)
            self._check_budget("after plan-review")
            ctx.plan_verdict = review.verdict

            if review.verdict.verdict == "approve":
                return
            if review.verdict.verdict == "reject":
                raise PlanRejectedError(
                    f"Plan rejected by reviewer: {review.verdict.summary or 'no summary given'}"
                )
            if ctx.plan_review_cycles >= cap:
                logger.warning(
                    "[plan-review] Cycle cap (%s) reached; proceeding with the last plan", cap
                )
                return

            self._enter(OrchestratorState.PLAN)
            feedback = format_issues(review.verdict.issues) or review.verdict.summary
            self._run_plan(feedback=feedback or "Revise the plan.")

    def _implementation_stage(self) -> None:
        ctx = self.context
        worktree, baseline_sha = self._require_worktree()

        self._enter(OrchestratorState.EXECUTE)
        self._check_budget("before execute")
        outcome = execute(
            self.task,
            self.config,
            worktree,
            self.runner,
            self.catalog,
            budget_usd=self._call_budget(),
            plan_session_id=ctx.plan_session_id,
            baseline_sha=baseline_sha,
        )
        self._record(outcome.result)
        self._check_budget("after execute")
        ctx.diff = outcome.diff
        ctx.execute_session_id = outcome.session_id

        if self.config.skip_code_review:
            logger.info("[code-review] Skipped")
            return

        cap = self.config.max_code_review_cycles
        while ctx.code_review_cycles < cap:
            self._enter(OrchestratorState.CODE_REVIEW)
            self._check_budget("before code-review")
            ctx.code_review_cycles += 1
            review = code_review(
                self.task,
                ctx.plan_text,
                ctx.diff,
                self.config,
                worktree,
                self.runner,
                self.catalog,
                budget_usd=self._call_budget(),
            )
            self._record(review.result)
            self._check_budget("after code-review")
            ctx.code_verdict = review.verdict

            if review.verdict.verdict == "pass":
                return
            if ctx.code_review_cycles >= cap:
                logger.warning(
                    "[code-review] Cycle cap (%s) reached; proceeding with known issues", cap
                )
                return

            self._enter(OrchestratorState.EXECUTE)
            self._check_budget("before review fix")
            fix = execute_fix_from_review(
                self.config,
                worktree,
                self.runner,
                self.catalog,
                budget_usd=self._call_budget(),
                session_id=ctx.execute_session_id,
                issues_text=format_issues(review.verdict.issues) or review.verdict.summary,
                previous_diff=ctx.diff,
                baseline_sha=baseline_sha,
            )
            self._record(fix.result)
            self._check_budget("after review fix")
            ctx.diff = fix.diff
            ctx.execute_session_id = fix.session_id or ctx.execute_session_id

    def _testing_stage(self) -> None:
        ctx = self.context
        project = self._require_project()
        worktree, baseline_sha = self._require_worktree()
        baseline = ctx.baseline or TestBaseline()

        if self.config.skip_tests:
            logger.info("[test] Skipped")
            return

        self._enter(OrchestratorState.TEST)
        checks = run_checks(project, worktree, baseline, self.check_runner)
        self._record(checks.result)
        ctx.last_test_result = checks.test_result

        cap = self.config.max_test_fix_cycles
        while not ctx.last_test_result.passed and ctx.test_fix_cycles < cap:
            self._enter(OrchestratorState.TEST_FIX)
            self._check_budget("before test-fix")
            ctx.test_fix_cycles += 1
            fix = run_test_fix(
                ctx.last_test_result,
                project,
                self.config,
                worktree,
                self.runner,
                self.catalog,
                budget_usd=self._call_budget(),
                session_id=ctx.execute_session_id,
                baseline=baseline,
                baseline_sha=baseline_sha,
            )
            self._record(fix.result)
            self._check_budget("after test-fix")
            ctx.execute_session_id = fix.session_id or ctx.execute_session_id

            self._enter(OrchestratorState.TEST)
            checks = run_checks(project, worktree, baseline, self.check_runner)
            self._record(checks.result)
            ctx.last_test_result = checks.test_result

        if not ctx.last_test_result.passed:
            logger.warning(
                "[test] Checks still failing after %s fix cycle(s); result will be partial",
                ctx.test_fix_cycles,
            )

    def _commit_stage(self) -> tuple[RunStatus, str]:
        ctx = self.context
        project = self._require_project()
        worktree, baseline_sha = self._require_worktree()

        self._enter(OrchestratorState.COMMIT)
        ctx.diff = git_tools.diff(worktree, baseline_sha)
        if not ctx.diff:
            raise EmptyDiffError("No changes left to commit")

        tests_failed = ctx.last_test_result is not None and not ctx.last_test_result.passed
        outcome = commit_and_publish(
            self.task,
            project,
            self.config,
            worktree,
            ctx.branch or "",
            baseline_sha=baseline_sha,
            phases=ctx.ledger.entries,
            total_cost_usd=ctx.ledger.total_cost_usd,
            test_result=ctx.last_test_result,
            review_summary=ctx.code_verdict.summary if ctx.code_verdict else None,
            is_draft=tests_failed,
        )
        self._record(outcome.result)
        ctx.pr_url = outcome.pr_url
        self._enter(OrchestratorState.DONE)

        if tests_failed:
            category = ctx.last_test_result.failure_category if ctx.last_test_result else None
            return "partial", f"Committed with failing {category or 'checks'}"
        if ctx.code_verdict is not None and ctx.code_verdict.verdict == "fail":
            return "success", "Committed; checks pass, code review left open issues"
        return "success", "Committed; all enforced checks passed"

    # ------------------------------------------------------------------
    # Failure path
    # ------------------------------------------------------------------

    def _fail(self, exc: Exception) -> tuple[RunStatus, str]:
        ctx = self.context
        failed_state = ctx.state
        logger.error("Fatal error in %s: %s", failed_state.value, exc)

        if isinstance(exc, PhaseError):
            if exc.result is not None:
                self._record(exc.result)
        elif not isinstance(exc, (BudgetExceededError, PlanRejectedError)):
            phase = _STATE_PHASES.get(failed_state)
            if phase is not None:
                self._record(PhaseResult(phase=phase, success=False, error=str(exc)))

        reason = f"{failed_state.value}: {exc}"
        salvaged = self._salvage(reason)
        self._enter(OrchestratorState.FAILED)
        if salvaged:
            return "partial", f"Failed in {reason}; partial work salvaged"
        return "failed", f"Failed in {reason}"

    def _salvage(self, reason: str) -> bool:
        """Commit whatever diff exists as a draft PR; return True when committed."""
        ctx = self.context
        if ctx.worktree is None or ctx.baseline_sha is None or not ctx.worktree.exists():
            return False
        if not self.config.draft_pr_on_failure:
            logger.info("Salvage disabled (draft_pr_on_failure=False)")
            return False
        project = ctx.project
        if project is None:
            return False

        try:
            diff = git_tools.diff(ctx.worktree, ctx.baseline_sha)
        except GitError as exc:
            logger.warning("Could not compute salvage diff: %s", exc)
            diff = ctx.diff
        if not diff:
            logger.info("Nothing to salvage: no changes against the baseline")
            return False

        try:
            outcome = commit_and_publish(
                self.task,
                project,
                self.config,
                ctx.worktree,
                ctx.branch or "",
                baseline_sha=ctx.baseline_sha,
                phases=ctx.ledger.entries,
                total_cost_usd=ctx.ledger.total_cost_usd,
                test_result=ctx.last_test_result,
                review_summary=ctx.code_verdict.summary if ctx.code_verdict else None,
                is_draft=True,
                failure_reason=reason,
                phase=PipelinePhase.SALVAGE,
            )
        except (GitError, OSError) as exc:
            logger.warning("Failed to salvage: %s", exc)
            self._record(PhaseResult(phase=PipelinePhase.SALVAGE, success=False, error=str(exc)))
            return False

        self._record(outcome.result)
        ctx.pr_url = outcome.pr_url
        return True

    def _remove_worktree(self) -> None:
        worktree = self.context.worktree
        if worktree is None or not worktree.exists():
            return
        try:
            git_tools.remove_worktree(self.task.repo_path, worktree)
        except GitError as exc:
            logger.warning("Could not remove worktree %s: %s", worktree, exc)
