"""Pydantic models for structured data throughout the pipeline."""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from taskforge.pipeline.states import PipelinePhase

ProjectType = Literal["node", "python", "go", "rust", "unknown"]
PackageManager = Literal["npm", "yarn", "pnpm", "bun", "pip", "uv", "poetry"]
FailureCategory = Literal["lint", "typecheck", "unit", "build"]
RunStatus = Literal["success", "partial", "failed"]

_TITLE_MAX_CHARS = 80

# ---------------------------------------------------------------------------
# Task + project facts
# ---------------------------------------------------------------------------


class Task(BaseModel):
    """One unit of work: a description to turn into a pull request."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    repo_path: str

    @classmethod
    def create(cls, description: str, repo_path: str | Path, title: str | None = None) -> Task:
        """Build a task with a fresh id and an absolute repo path."""
        description = (description or "").strip()
        if not description:
            raise ValueError("Task description must not be empty")
        resolved_title = (title or "").strip() or description.splitlines()[0][:_TITLE_MAX_CHARS]
        return cls(
            id=uuid.uuid4().hex[:8],
            title=resolved_title,
            description=description,
            repo_path=str(Path(repo_path).resolve()),
        )


class ProjectInfo(BaseModel):
    """Facts about the target repository gathered during intake."""

    model_config = ConfigDict(frozen=True)

    project_type: ProjectType = "unknown"
    package_manager: PackageManager | None = None
    test_command: str | None = None
    lint_command: str | None = None
    typecheck_command: str | None = None
    build_command: str | None = None
    has_remote: bool = False
    can_push: bool = False
    default_branch: str = "main"

    @model_validator(mode="after")
    def _push_requires_remote(self) -> ProjectInfo:
        if self.can_push and not self.has_remote:
            raise ValueError("can_push requires has_remote")
        return self


# ---------------------------------------------------------------------------
# Ledger entries + agent results
# ---------------------------------------------------------------------------


class PhaseResult(BaseModel):
    """One append-only ledger entry describing a finished phase call."""

    model_config = ConfigDict(frozen=True)

    phase: PipelinePhase
    success: bool = True
    session_id: str | None = None
    cost_usd: float = Field(default=0.0, ge=0.0)
    duration_ms: int = Field(default=0, ge=0)
    error: str | None = None


class AgentResult(BaseModel):
    """Outcome of a single coding-agent invocation."""

    session_id: str = ""
    cost_usd: float = Field(default=0.0, ge=0.0)
    result_text: str = ""
    duration_ms: int = 0
    aborted: bool = False


# ---------------------------------------------------------------------------
# Review verdicts
# ---------------------------------------------------------------------------


class ReviewIssue(BaseModel):
    """A single reviewer finding."""

    severity: str = "major"
    category: str = ""
    location: str = ""
    description: str
    recommendation: str = ""

    def as_line(self) -> str:
        """Render the issue as one line of feedback for the next agent turn."""
        tags = [tag for tag in (self.severity, self.category) if tag]
        head = f"[{'/'.join(tags)}] " if tags else ""
        where = f"{self.location}: " if self.location else ""
        line = f"{head}{where}{self.description}"
        if self.recommendation:
            line += f" -> {self.recommendation}"
        return line


class PlanReviewVerdict(BaseModel):
    """Verdict of one plan-review cycle."""

    verdict: Literal["approve", "revise", "reject"]
    issues: list[ReviewIssue] = Field(default_factory=list)
    summary: str = ""

    @field_validator("verdict", mode="before")
    @classmethod
    def _lower_verdict(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


class CodeReviewVerdict(BaseModel):
    """Verdict of one code-review cycle."""

    verdict: Literal["pass", "fail"]
    issues: list[ReviewIssue] = Field(default_factory=list)
    summary: str = ""

    @field_validator("verdict", mode="before")
    @classmethod
    def _lower_verdict(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


class TestBaseline(BaseModel):
    """Which check categories passed on the clean worktree."""

    __test__ = False  # Prevent pytest from collecting this model as a test class.

    model_config = ConfigDict(frozen=True)

    run_lint: bool = False
    run_typecheck: bool = False
    run_unit: bool = False

    @property
    def has_checks(self) -> bool:
        return self.run_lint or self.run_typecheck or self.run_unit

    @property
    def enforced_categories(self) -> list[FailureCategory]:
        """Categories enforced after the agent works, in run order."""
        flags: list[tuple[FailureCategory, bool]] = [
            ("lint", self.run_lint),
            ("typecheck", self.run_typecheck),
            ("unit", self.run_unit),
        ]
        return [category for category, enabled in flags if enabled]


class TestResult(BaseModel):
    """Result of running the enforced checks once."""

    __test__ = False  # Prevent pytest from collecting this model as a test class.

    model_config = ConfigDict(frozen=True)

    passed: bool
    exit_code: int = 0
    output: str = ""
    failure_category: FailureCategory | None = None


# ---------------------------------------------------------------------------
# Side effects + final result
# ---------------------------------------------------------------------------


class SideEffectOutcome(BaseModel):
    """Result of a best-effort side effect such as a push or PR creation."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    value: str | None = None
    reason: str | None = None

    @classmethod
    def success(cls, value: str | None = None) -> SideEffectOutcome:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str) -> SideEffectOutcome:
        return cls(ok=False, reason=reason)


class ControllerResult(BaseModel):
    """The user-visible outcome of one run."""

    status: RunStatus
    pr_url: str | None = None
    branch_name: str | None = None
    phases: list[PhaseResult] = Field(default_factory=list)
    total_cost_usd: float = 0.0
    total_duration_ms: int = 0
    summary: str = ""
    failed_state: str | None = None
