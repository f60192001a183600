"""The ``.agent/`` handoff directory shared between agents inside a worktree.

Files:

- ``plan.md``: written by the planner, must contain the required sections.
- ``plan-review.json`` / ``code-review.json``: optional structured verdicts
  written by the reviewers.

The directory is git-ignored so nothing in it ever reaches a diff or commit.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from taskforge.file_io import ensure_line, read_text_resilient

logger = logging.getLogger(__name__)

AGENT_DIR = ".agent"
PLAN_FILE = "plan.md"
PLAN_REVIEW_FILE = "plan-review.json"
CODE_REVIEW_FILE = "code-review.json"
REQUIRED_PLAN_SECTIONS = ("## Plan", "## Test Strategy", "## Risks")
GITIGNORE_ENTRY = f"{AGENT_DIR}/"


class PlanArtifactError(RuntimeError):
    """Raised when the plan file is missing or incomplete."""


def agent_dir(worktree: str | Path) -> Path:
    return Path(worktree) / AGENT_DIR


def prepare_handoff_dir(worktree: str | Path) -> Path:
    """Create ``.agent/`` and make sure the worktree's ``.gitignore`` excludes it."""
    directory = agent_dir(worktree)
    directory.mkdir(parents=True, exist_ok=True)
    if ensure_line(Path(worktree) / ".gitignore", GITIGNORE_ENTRY):
        logger.debug("Added %s to .gitignore in %s", GITIGNORE_ENTRY, worktree)
    return directory


def read_plan(worktree: str | Path) -> str:
    """Return the plan text, raising :class:`PlanArtifactError` when unusable."""
    path = agent_dir(worktree) / PLAN_FILE
    try:
        text = read_text_resilient(path)
    except FileNotFoundError as exc:
        raise PlanArtifactError(
            f"Plan file not found at {path}. The agent did not write {AGENT_DIR}/{PLAN_FILE}"
        ) from exc

    missing = [section for section in REQUIRED_PLAN_SECTIONS if section not in text]
    if missing:
        raise PlanArtifactError(
            "Plan is missing required sections: "
            + ", ".join(missing)
            + ". The plan must include ## Plan, ## Test Strategy and ## Risks sections."
        )
    return text


def read_json_document(worktree: str | Path, name: str) -> Any | None:
    """Load ``.agent/<name>`` as JSON; ``None`` when absent or not valid JSON."""
    path = agent_dir(worktree) / name
    if not path.is_file():
        return None
    try:
        return json.loads(read_text_resilient(path))
    except json.JSONDecodeError as exc:
        logger.warning("Could not parse %s: %s", path, exc)
        return None


def clear_document(worktree: str | Path, name: str) -> None:
    """Delete a previous cycle's document so it is never mistaken for a fresh one."""
    (agent_dir(worktree) / name).unlink(missing_ok=True)
