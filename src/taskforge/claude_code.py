"""Interface to Anthropic Claude Code CLI (``claude``)."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from taskforge.agent_runner import AgentRunError, AgentRunner, register_agent
from taskforge.runner_common import (
    Event,
    coerce_float,
    execute_streaming_json_command,
    prompt_fingerprint,
    resolve_binary,
)
from taskforge.schemas import AgentResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600  # 10 minutes of inactivity
_PROMPT_ARG_LIMIT = 60_000
_COMMAND_PREVIEW_CHARS = 80


class ClaudeCodeRunner(AgentRunner):
    """Spawn ``claude -p`` and parse its stream-json output.

    Claude Code's non-interactive mode emits one JSON object per line::

        {"type": "system", "subtype": "init", "session_id": "..."}
        {"type": "assistant", "message": {"content": [...]}, ...}
        {"type": "result", "subtype": "success", "result": "...",
         "total_cost_usd": 0.42, "session_id": "..."}

    Parameters
    ----------
    claude_binary:
        Path or name of the Claude Code CLI binary.
    timeout:
        Maximum seconds without stdout/stderr activity before the child
        process is killed. ``0`` disables the timeout.
    env_overrides:
        Extra environment variables forwarded to the child process.
    """

    name = "Claude Code"

    def __init__(
        self,
        claude_binary: str = "claude",
        timeout: int = DEFAULT_TIMEOUT,
        env_overrides: dict[str, str] | None = None,
    ) -> None:
        self.claude_binary = claude_binary
        self.timeout = max(0, int(timeout or 0))
        self.env_overrides = env_overrides or {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        prompt: str,
        *,
        model: str,
        working_dir: str | Path,
        max_turns: int,
        allowed_tools: Sequence[str],
        resume_session_id: str | None = None,
        append_system_prompt: str | None = None,
        max_budget_usd: float | None = None,
    ) -> AgentResult:
        cwd = Path(working_dir).resolve()
        if not cwd.is_dir():
            raise AgentRunError(f"working_dir does not exist: {cwd}")

        use_stdin = len(prompt) >= _PROMPT_ARG_LIMIT
        cmd = self._build_command(
            None if use_stdin else prompt,
            model=model,
            max_turns=max_turns,
            allowed_tools=allowed_tools,
            resume_session_id=resume_session_id,
            append_system_prompt=append_system_prompt,
        )
        length, digest = prompt_fingerprint(prompt)
        logger.info(
            "Running Claude Code (cwd=%s, model=%s, resume=%s, prompt_len=%s, prompt_sha256=%s)",
            cwd,
            model,
            resume_session_id or "-",
            length,
            digest,
        )

        tracker = _StreamTracker(max_budget_usd)
        start = time.monotonic()
        try:
            execution = execute_streaming_json_command(
                cmd=cmd,
                cwd=cwd,
                env={**os.environ, **self.env_overrides},
                timeout_seconds=self.timeout,
                parse_stdout_line=self._parse_line,
                process_name="Claude Code",
                stdin_text=prompt if use_stdin else None,
                cancel_event=tracker.cancel_event,
                on_event=tracker.observe,
            )
        except OSError as exc:
            raise AgentRunError(f"Failed to execute claude: {exc}") from exc
        duration_ms = int((time.monotonic() - start) * 1000)

        if execution.timed_out:
            raise AgentRunError(
                f"Claude Code timed out after {self.timeout}s with no output activity"
            )
        if execution.cancelled:
            logger.warning(
                "Claude Code stopped: cost $%.4f exceeded phase budget $%.2f",
                tracker.cost_usd,
                max_budget_usd or 0.0,
            )
            return tracker.to_result(duration_ms, aborted=True)
        if not tracker.saw_result and execution.exit_code != 0:
            detail = execution.stderr_text or _last_error_text(execution.events)
            raise AgentRunError(
                f"Claude Code exited with status {execution.exit_code}"
                + (f": {detail[:500]}" if detail else "")
            )
        return tracker.to_result(duration_ms)

    # ------------------------------------------------------------------
    # Command building
    # ------------------------------------------------------------------

    def _build_command(
        self,
        prompt: str | None,
        *,
        model: str,
        max_turns: int,
        allowed_tools: Sequence[str],
        resume_session_id: str | None = None,
        append_system_prompt: str | None = None,
    ) -> list[str]:
        """Build argv; a ``None`` prompt means it is piped on stdin."""
        cmd = [resolve_binary(self.claude_binary), "-p"]
        if prompt is not None:
            cmd.append(prompt)
        # stream-json output requires --verbose in print mode.
        cmd.extend(["--output-format", "stream-json", "--verbose"])
        cmd.extend(["--permission-mode", "bypassPermissions"])
        if model.strip():
            cmd.extend(["--model", model.strip()])
        if max_turns > 0:
            cmd.extend(["--max-turns", str(max_turns)])
        if allowed_tools:
            cmd.extend(["--allowedTools", ",".join(allowed_tools)])
        if resume_session_id:
            cmd.extend(["--resume", resume_session_id])
        if append_system_prompt:
            cmd.extend(["--append-system-prompt", append_system_prompt])
        return cmd

    # ------------------------------------------------------------------
    # JSONL parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_line(line: str) -> Event | None:
        """Parse one line of stream-json output; non-JSON lines are skipped."""
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Non-JSON line from claude: %s", line[:200])
            return None
        return data if isinstance(data, dict) else None


class _StreamTracker:
    """Accumulates session, cost and result text while events stream in."""

    def __init__(self, max_budget_usd: float | None) -> None:
        self.max_budget_usd = max_budget_usd
        self.cancel_event = threading.Event()
        self.session_id = ""
        self.cost_usd = 0.0
        self.result_text = ""
        self.saw_result = False

    def observe(self, event: Event) -> None:
        etype = str(event.get("type") or "").lower()
        session_id = event.get("session_id")
        if isinstance(session_id, str) and session_id and not self.session_id:
            self.session_id = session_id

        if etype == "assistant":
            _log_tool_activity(event)
        elif etype == "result":
            self.saw_result = True
            self.cost_usd = coerce_float(event.get("total_cost_usd"))
            if isinstance(session_id, str) and session_id:
                self.session_id = session_id
            if event.get("subtype") == "success":
                result = event.get("result")
                self.result_text = result if isinstance(result, str) else ""
            else:
                logger.warning("Agent ended with: %s", event.get("subtype") or "unknown")

        if self.max_budget_usd is not None and self.cost_usd > self.max_budget_usd:
            self.cancel_event.set()

    def to_result(self, duration_ms: int, *, aborted: bool = False) -> AgentResult:
        return AgentResult(
            session_id=self.session_id,
            cost_usd=self.cost_usd,
            result_text=self.result_text,
            duration_ms=duration_ms,
            aborted=aborted,
        )


def _log_tool_activity(event: Event) -> None:
    """Log what the agent is doing, one line per tool call."""
    message = event.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, list):
        return
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_use":
            continue
        name = str(block.get("name") or "")
        tool_input: dict[str, Any] = block.get("input") if isinstance(block.get("input"), dict) else {}
        path = tool_input.get("file_path") or tool_input.get("notebook_path")
        if name == "Read" and path:
            logger.info("agent: reading %s", path)
        elif name == "Write" and path:
            logger.info("agent: writing %s", path)
        elif name in {"Edit", "NotebookEdit"} and path:
            logger.info("agent: editing %s", path)
        elif name == "Bash" and tool_input.get("command"):
            logger.info("agent: $ %s", str(tool_input["command"])[:_COMMAND_PREVIEW_CHARS])
        elif name in {"Glob", "Grep"}:
            logger.info("agent: searching (%s)", name.lower())


def _last_error_text(events: list[Event]) -> str:
    """Extract a useful error string from stream-json events."""
    for event in reversed(events):
        for key in ("error", "message", "result"):
            value = event.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            if isinstance(value, dict):
                nested = value.get("message") or value.get("text")
                if isinstance(nested, str) and nested.strip():
                    return nested.strip()
    return ""


# ── Register with the agent registry ─────────────────────────────
register_agent("claude_code", ClaudeCodeRunner)
