"""Pipeline phases.

Each phase is a plain function that does one step of the run and returns a
small outcome dataclass holding its :class:`PhaseResult` plus phase data.
Phases never touch the cost ledger; the orchestrator records every result.
Shared helpers for agent-driven phases live here.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from taskforge.agent_runner import AgentRunner
from taskforge.pipeline.states import PipelinePhase
from taskforge.schemas import AgentResult, PhaseResult

logger = logging.getLogger(__name__)


class PhaseError(RuntimeError):
    """A phase failed after doing (possibly paid) work.

    ``result`` holds the failed ledger entry so the spend is still recorded.
    """

    def __init__(self, message: str, *, result: PhaseResult | None = None) -> None:
        super().__init__(message)
        self.result = result


@dataclass(frozen=True)
class PhaseOutcome:
    """Outcome of a phase that produces nothing besides its ledger entry."""

    result: PhaseResult
    session_id: str | None = None


def log_phase(phase: PipelinePhase, message: str) -> None:
    logger.info("[%s] %s", phase.value, message)


def log_cost(label: str, cost_usd: float) -> None:
    logger.info("cost %s: $%.4f", label, cost_usd)


def elapsed_ms(started: float) -> int:
    """Milliseconds since a ``time.monotonic()`` reading."""
    return max(0, int((time.monotonic() - started) * 1000))


def call_agent(
    runner: AgentRunner,
    prompt: str,
    *,
    phase: PipelinePhase,
    model: str,
    worktree: str | Path,
    max_turns: int,
    tools: Sequence[str],
    budget_usd: float,
    resume_session_id: str | None = None,
    append_system_prompt: str | None = None,
    cost_label: str | None = None,
) -> tuple[AgentResult, PhaseResult]:
    """Run one agent turn and build the matching ledger entry.

    A budget-aborted call yields a failed entry that still carries its cost.
    """
    agent = runner.run(
        prompt,
        model=model,
        working_dir=worktree,
        max_turns=max_turns,
        allowed_tools=list(tools),
        resume_session_id=resume_session_id,
        append_system_prompt=append_system_prompt,
        max_budget_usd=budget_usd,
    )
    log_cost(cost_label or phase.value, agent.cost_usd)
    result = PhaseResult(
        phase=phase,
        success=not agent.aborted,
        session_id=agent.session_id or None,
        cost_usd=agent.cost_usd,
        duration_ms=max(0, agent.duration_ms),
        error="agent stopped: phase budget exhausted" if agent.aborted else None,
    )
    return agent, result
