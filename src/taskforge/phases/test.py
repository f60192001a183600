"""Baseline detection and enforced check runs."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path

from taskforge.check_runner import CheckRunner, detect_baseline, run_enforced_checks
from taskforge.phases import elapsed_ms, log_phase
from taskforge.pipeline.states import PipelinePhase
from taskforge.schemas import PhaseResult, ProjectInfo, TestBaseline, TestResult


@dataclass(frozen=True)
class BaselineOutcome:
    result: PhaseResult
    baseline: TestBaseline


@dataclass(frozen=True)
class CheckPhaseOutcome:
    result: PhaseResult
    test_result: TestResult


def run_baseline(project: ProjectInfo, worktree: Path, check_runner: CheckRunner) -> BaselineOutcome:
    """Record which configured checks already pass before any change."""
    started = time.monotonic()
    log_phase(PipelinePhase.BASELINE, "Running checks on the clean worktree")
    baseline = detect_baseline(project, worktree, check_runner)
    enforced = ", ".join(baseline.enforced_categories) or "none"
    log_phase(PipelinePhase.BASELINE, f"Enforcing: {enforced}")
    result = PhaseResult(phase=PipelinePhase.BASELINE, duration_ms=elapsed_ms(started))
    return BaselineOutcome(result=result, baseline=baseline)


def run_checks(
    project: ProjectInfo,
    worktree: Path,
    baseline: TestBaseline,
    check_runner: CheckRunner,
) -> CheckPhaseOutcome:
    """Run the enforced checks once; a failing check is data, not an error."""
    started = time.monotonic()
    log_phase(PipelinePhase.TEST, "Running enforced checks")
    test_result = run_enforced_checks(project, worktree, baseline, check_runner)
    if test_result.passed:
        log_phase(PipelinePhase.TEST, test_result.output)
    else:
        log_phase(
            PipelinePhase.TEST,
            f"{test_result.failure_category} failed (exit {test_result.exit_code})",
        )
    result = PhaseResult(
        phase=PipelinePhase.TEST,
        success=test_result.passed,
        duration_ms=elapsed_ms(started),
        error=None if test_result.passed else f"{test_result.failure_category} check failed",
    )
    return CheckPhaseOutcome(result=result, test_result=test_result)
