"""Check execution: run lint / typecheck / unit commands and gate them on a baseline.

Checks are first run on the clean worktree (:func:`detect_baseline`). Only
categories that passed there are enforced after the agent works
(:func:`run_enforced_checks`), so pre-existing breakage never fails a run.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from taskforge.schemas import FailureCategory, ProjectInfo, TestBaseline, TestResult

logger = logging.getLogger(__name__)

DEFAULT_CHECK_TIMEOUT = 120
MAX_OUTPUT_LINES = 200
NO_CHECKS_MESSAGE = "No checks enforced (none configured or none passed on baseline)"
ALL_PASSED_MESSAGE = "All enforced checks passed"


def _strip_wrapping_quotes(token: str) -> str:
    """Remove one pair of matching wrapping quotes from *token* when present."""
    if len(token) >= 2 and token[0] == token[-1] and token[0] in {'"', "'"}:
        return token[1:-1]
    return token


def parse_command(command: str | None) -> list[str] | None:
    """Split a shell-like check command into argv tokens; ``None`` when blank."""
    raw = (command or "").strip()
    if not raw:
        return None
    try:
        if os.name == "nt":
            parts = [_strip_wrapping_quotes(part) for part in shlex.split(raw, posix=False)]
        else:
            parts = shlex.split(raw, posix=True)
    except ValueError:
        logger.warning("Unbalanced quotes in %r; splitting on whitespace", raw)
        parts = raw.split()
    return [part for part in parts if part] or None


def truncate_output(text: str, max_lines: int = MAX_OUTPUT_LINES) -> str:
    """Keep only the last *max_lines* lines of *text*."""
    lines = text.splitlines()
    if len(lines) <= max_lines:
        return text
    return "\n".join(lines[-max_lines:])


@dataclass(frozen=True, slots=True)
class CheckOutcome:
    """Result of one check command."""

    ok: bool
    exit_code: int
    output: str
    category: FailureCategory
    timed_out: bool = False

    def to_test_result(self) -> TestResult:
        return TestResult(
            passed=self.ok,
            exit_code=self.exit_code,
            output=self.output,
            failure_category=None if self.ok else self.category,
        )


class CheckRunner:
    """Run a single check command with a hard wall-clock timeout.

    Parameters
    ----------
    timeout:
        Maximum seconds a command may run. A timeout counts as a failure of
        that command's category.
    """

    def __init__(self, timeout: int = DEFAULT_CHECK_TIMEOUT) -> None:
        self.timeout = timeout

    def run(self, command: str, working_dir: str | Path, category: FailureCategory) -> CheckOutcome:
        argv = parse_command(command)
        if not argv:
            return CheckOutcome(ok=False, exit_code=-1, output="Empty command", category=category)

        logger.info("Running %s check: %s (cwd=%s)", category, " ".join(argv), working_dir)
        try:
            proc = subprocess.run(
                argv,
                cwd=working_dir,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            return CheckOutcome(
                ok=False,
                exit_code=127,
                output=f"Command not found: {exc}",
                category=category,
            )
        except OSError as exc:
            return CheckOutcome(
                ok=False,
                exit_code=126,
                output=f"Command could not be started: {exc}",
                category=category,
            )
        except subprocess.TimeoutExpired as exc:
            partial = _decode_partial(exc.stdout) + "\n" + _decode_partial(exc.stderr)
            message = f"{category} check timed out after {self.timeout}s"
            return CheckOutcome(
                ok=False,
                exit_code=-1,
                output=truncate_output(f"{partial.strip()}\n{message}".strip()),
                category=category,
                timed_out=True,
            )

        combined = (proc.stdout + "\n" + proc.stderr).strip()
        return CheckOutcome(
            ok=proc.returncode == 0,
            exit_code=proc.returncode,
            output=truncate_output(combined),
            category=category,
        )


def _decode_partial(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def _configured_checks(project: ProjectInfo) -> list[tuple[FailureCategory, str | None]]:
    return [
        ("lint", project.lint_command),
        ("typecheck", project.typecheck_command),
        ("unit", project.test_command),
    ]


def detect_baseline(
    project: ProjectInfo,
    working_dir: str | Path,
    runner: CheckRunner,
) -> TestBaseline:
    """Run every configured check on the clean tree and record which passed."""
    passed: dict[FailureCategory, bool] = {"lint": False, "typecheck": False, "unit": False}
    for category, command in _configured_checks(project):
        if not command:
            continue
        outcome = runner.run(command, working_dir, category)
        passed[category] = outcome.ok
        logger.info(
            "[baseline] %s: %s",
            category,
            "PASS - will enforce" if outcome.ok else "FAIL - will skip",
        )
    return TestBaseline(
        run_lint=passed["lint"],
        run_typecheck=passed["typecheck"],
        run_unit=passed["unit"],
    )


def run_enforced_checks(
    project: ProjectInfo,
    working_dir: str | Path,
    baseline: TestBaseline,
    runner: CheckRunner,
) -> TestResult:
    """Run enforced checks in lint → typecheck → unit order, stopping at the first failure."""
    if not baseline.has_checks:
        return TestResult(passed=True, exit_code=0, output=NO_CHECKS_MESSAGE)

    enforced = set(baseline.enforced_categories)
    for category, command in _configured_checks(project):
        if category not in enforced or not command:
            continue
        outcome = runner.run(command, working_dir, category)
        if not outcome.ok:
            return outcome.to_test_result()
    return TestResult(passed=True, exit_code=0, output=ALL_PASSED_MESSAGE)
