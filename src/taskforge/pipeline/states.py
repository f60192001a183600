"""State and phase definitions for the task pipeline.

The orchestrator walks a fixed sequence of states::

    intake → setup → plan ⇄ plan-review → execute ⇄ code-review
           → test ⇄ test-fix → commit → done | failed

Each state that does work records one or more :class:`PipelinePhase`
entries in the cost ledger.
"""

from __future__ import annotations

from enum import Enum


class OrchestratorState(str, Enum):
    """Where the orchestrator currently is in a run."""

    INTAKE = "intake"
    SETUP = "setup"
    PLAN = "plan"
    PLAN_REVIEW = "plan-review"
    EXECUTE = "execute"
    CODE_REVIEW = "code-review"
    TEST = "test"
    TEST_FIX = "test-fix"
    COMMIT = "commit"
    DONE = "done"
    FAILED = "failed"


class PipelinePhase(str, Enum):
    """Phase labels recorded on every ledger entry."""

    INTAKE = "intake"
    SETUP = "setup"
    BASELINE = "baseline"
    PLAN = "plan"
    PLAN_REVIEW = "plan-review"
    EXECUTE = "execute"
    CODE_REVIEW = "code-review"
    TEST = "test"
    TEST_FIX = "test-fix"
    COMMIT = "commit"
    SALVAGE = "salvage"


# Tools each agent-driven phase may use.
EXPLORE_TOOLS: tuple[str, ...] = ("Read", "Glob", "Grep", "Bash", "Write")
PLAN_TOOLS: tuple[str, ...] = EXPLORE_TOOLS
REVIEW_TOOLS: tuple[str, ...] = EXPLORE_TOOLS
EXECUTE_TOOLS: tuple[str, ...] = ("Read", "Edit", "Write", "Bash", "Glob", "Grep", "NotebookEdit")
TEST_FIX_TOOLS: tuple[str, ...] = ("Read", "Edit", "Write", "Bash", "Glob", "Grep")
