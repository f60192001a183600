"""Top-level entry point: build the task and config, then run the orchestrator."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from taskforge.agent_runner import AgentRunner, get_agent_class
from taskforge.claude_code import ClaudeCodeRunner
from taskforge.config import AgentConfig, merge_config
from taskforge.pipeline.orchestrator import PipelineOrchestrator
from taskforge.preflight import run_preflight
from taskforge.schemas import ControllerResult, Task

logger = logging.getLogger(__name__)


def build_runner(config: AgentConfig) -> AgentRunner:
    """Instantiate the agent backend named by ``config.agent``."""
    cls = get_agent_class(config.agent)
    if issubclass(cls, ClaudeCodeRunner):
        return cls(claude_binary=config.claude_binary, timeout=config.agent_timeout_seconds)
    return cls()


def _failed(summary: str, started: float) -> ControllerResult:
    return ControllerResult(
        status="failed",
        summary=summary,
        total_duration_ms=int((time.monotonic() - started) * 1000),
    )


def run_controller(
    repo_path: str | Path,
    description: str,
    title: str | None = None,
    overrides: Mapping[str, Any] | None = None,
    *,
    runner: AgentRunner | None = None,
    skip_preflight: bool = False,
) -> ControllerResult:
    """Run one task against *repo_path* and return its :class:`ControllerResult`.

    Configuration layers are defaults, then ``TASKFORGE_*`` environment
    variables, then *overrides* (typically CLI flags). Errors that escape
    the orchestrator are reported as a ``failed`` result.
    """
    started = time.monotonic()
    try:
        task = Task.create(description, Path(repo_path).expanduser(), title=title)
        config = merge_config(overrides, base=AgentConfig.from_env())
    except ValueError as exc:
        logger.error("Invalid task or configuration: %s", exc)
        return _failed(f"Invalid task or configuration: {exc}", started)

    if not skip_preflight:
        report = run_preflight(config.claude_binary)
        if not report.ok:
            for error in report.errors:
                logger.error("Preflight: %s", error)
            return _failed("Preflight failed: " + "; ".join(report.errors), started)

    try:
        agent = runner or build_runner(config)
    except KeyError as exc:
        logger.error("%s", exc)
        return _failed(str(exc), started)

    orchestrator = PipelineOrchestrator(task, config, runner=agent)
    try:
        return orchestrator.run()
    except Exception as exc:
        logger.error("Unhandled error running task %s: %s", task.id, exc)
        ledger = orchestrator.context.ledger
        return ControllerResult(
            status="failed",
            branch_name=orchestrator.context.branch,
            phases=ledger.entries,
            total_cost_usd=ledger.total_cost_usd,
            total_duration_ms=int((time.monotonic() - started) * 1000),
            summary=f"Unhandled error: {exc}",
            failed_state=orchestrator.context.state.value,
        )
