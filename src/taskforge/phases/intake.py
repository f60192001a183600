"""Intake: validate the target repository and detect its tooling."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from taskforge import git_tools
from taskforge.phases import elapsed_ms, log_phase
from taskforge.pipeline.states import PipelinePhase
from taskforge.schemas import PackageManager, PhaseResult, ProjectInfo, Task

logger = logging.getLogger(__name__)

_NPM_PLACEHOLDER_TEST = "no test specified"
_NODE_LOCKFILES: tuple[tuple[str, PackageManager], ...] = (
    ("bun.lockb", "bun"),
    ("bun.lock", "bun"),
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
)


class SetupError(RuntimeError):
    """Raised when the repository or environment cannot host a run."""


@dataclass(frozen=True)
class IntakeOutcome:
    result: PhaseResult
    project: ProjectInfo


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return ""


def _detect_node(repo: Path) -> dict[str, Any]:
    try:
        package = json.loads(_read_text(repo / "package.json") or "{}")
    except json.JSONDecodeError:
        logger.warning("package.json is not valid JSON; treating scripts as empty")
        package = {}
    scripts = package.get("scripts") if isinstance(package, dict) else None
    scripts = scripts if isinstance(scripts, dict) else {}

    manager: PackageManager = next(
        (pm for lockfile, pm in _NODE_LOCKFILES if (repo / lockfile).exists()), "npm"
    )

    def script(*names: str) -> str | None:
        for name in names:
            if name in scripts:
                return f"{manager} run {name}"
        return None

    test_script = str(scripts.get("test") or "")
    return {
        "project_type": "node",
        "package_manager": manager,
        "test_command": script("test") if test_script and _NPM_PLACEHOLDER_TEST not in test_script else None,
        "lint_command": script("lint"),
        "typecheck_command": script("typecheck", "type-check"),
        "build_command": script("build"),
    }


def _detect_python(repo: Path) -> dict[str, Any]:
    pyproject = _read_text(repo / "pyproject.toml")
    setup_cfg = _read_text(repo / "setup.cfg")

    has_pytest = (
        (repo / "tests").is_dir()
        or (repo / "pytest.ini").exists()
        or (repo / "conftest.py").exists()
        or "[tool.pytest" in pyproject
        or "[tool:pytest]" in setup_cfg
    )
    has_ruff = (
        (repo / "ruff.toml").exists() or (repo / ".ruff.toml").exists() or "[tool.ruff" in pyproject
    )
    has_mypy = (
        (repo / "mypy.ini").exists()
        or (repo / ".mypy.ini").exists()
        or "[tool.mypy" in pyproject
        or "[mypy]" in setup_cfg
    )

    manager: PackageManager = "pip"
    if (repo / "uv.lock").exists():
        manager = "uv"
    elif (repo / "poetry.lock").exists():
        manager = "poetry"

    return {
        "project_type": "python",
        "package_manager": manager,
        "test_command": "python -m pytest -q" if has_pytest else None,
        "lint_command": "ruff check ." if has_ruff else None,
        "typecheck_command": "mypy ." if has_mypy else None,
    }


def detect_project(repo: str | Path) -> dict[str, Any]:
    """Detect project type, package manager and check commands from marker files."""
    path = Path(repo)
    if (path / "package.json").exists():
        return _detect_node(path)
    if any((path / marker).exists() for marker in ("pyproject.toml", "requirements.txt", "setup.py")):
        return _detect_python(path)
    if (path / "go.mod").exists():
        return {
            "project_type": "go",
            "test_command": "go test ./...",
            "lint_command": "go vet ./...",
            "build_command": "go build ./...",
        }
    if (path / "Cargo.toml").exists():
        return {
            "project_type": "rust",
            "test_command": "cargo test",
            "lint_command": "cargo clippy -- -D warnings",
            "build_command": "cargo build",
        }
    return {"project_type": "unknown"}


def intake(task: Task) -> IntakeOutcome:
    """Validate the repository and gather :class:`ProjectInfo`."""
    started = time.monotonic()
    repo = Path(task.repo_path)
    log_phase(PipelinePhase.INTAKE, f"Analyzing repository {repo}")

    if not git_tools.is_git_repo(repo):
        raise SetupError(f"Not a git repository: {repo}")

    facts = detect_project(repo)
    remote = git_tools.has_remote(repo)
    can_push = remote and git_tools.can_push_to_remote(repo)
    project = ProjectInfo(
        **facts,
        has_remote=remote,
        can_push=can_push,
        default_branch=git_tools.default_branch(repo),
    )
    log_phase(
        PipelinePhase.INTAKE,
        f"type={project.project_type} pm={project.package_manager or '-'} "
        f"remote={'yes' if project.has_remote else 'no'} push={'yes' if project.can_push else 'no'} "
        f"base={project.default_branch}",
    )
    for label, command in (
        ("test", project.test_command),
        ("lint", project.lint_command),
        ("typecheck", project.typecheck_command),
    ):
        logger.debug("%s command: %s", label, command or "(none)")

    result = PhaseResult(phase=PipelinePhase.INTAKE, duration_ms=elapsed_ms(started))
    return IntakeOutcome(result=result, project=project)
