"""Environment readiness checks run before a task starts."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_CLAUDE_AUTH_ENV_VARS = ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY", "CLAUDE_CODE_OAUTH_TOKEN")


@dataclass
class PreflightReport:
    """Blocking problems and non-blocking warnings found by :func:`run_preflight`."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def binary_exists(binary: str) -> bool:
    """Return ``True`` when an executable exists for *binary*."""
    binary = os.path.expandvars(os.path.expanduser(str(binary or "").strip()))
    if not binary:
        return False
    candidate = Path(binary)
    try:
        if candidate.is_file():
            return os.access(candidate, os.X_OK)
    except OSError:
        pass
    return shutil.which(binary) is not None


def _env_secret_present(names: tuple[str, ...]) -> bool:
    return any(str(os.getenv(name) or "").strip() for name in names)


def has_claude_auth() -> bool:
    """Detect Claude auth in env vars or local auth files."""
    if _env_secret_present(_CLAUDE_AUTH_ENV_VARS):
        return True
    home = Path.home()
    for path in (
        home / ".claude.json",
        home / ".claude" / ".credentials.json",
        home / ".config" / "claude" / "auth.json",
    ):
        if path.exists():
            return True
    return False


def run_preflight(claude_binary: str, *, git_binary: str = "git") -> PreflightReport:
    """Check that git and the agent CLI are installed and auth looks configured."""
    report = PreflightReport()
    if not binary_exists(git_binary):
        report.errors.append(f"git executable not found: {git_binary}")
    if not binary_exists(claude_binary):
        report.errors.append(
            f"Claude Code CLI not found: {claude_binary}. Install it or pass --claude-bin."
        )
    if not has_claude_auth():
        report.warnings.append(
            "No Claude authentication detected (ANTHROPIC_API_KEY or ~/.claude.json); "
            "the agent may fail to start."
        )
    for warning in report.warnings:
        logger.warning(warning)
    return report
