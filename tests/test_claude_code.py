"""Unit tests for the Claude Code runner."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

import taskforge.claude_code as claude_code_module
from taskforge.agent_runner import AgentRunError, get_agent_class
from taskforge.claude_code import ClaudeCodeRunner, _StreamTracker
from taskforge.runner_common import StreamExecutionResult

pytestmark = pytest.mark.unit

_RUN_KWARGS = {
    "model": "claude-opus-4-6",
    "max_turns": 5,
    "allowed_tools": ["Read", "Edit"],
}


def _fake_execution(events, *, exit_code=0, timed_out=False, stderr=None):
    """Return a stand-in for execute_streaming_json_command that replays *events*."""
    captured: dict = {}

    def fake(**kwargs):
        captured.update(kwargs)
        on_event = kwargs.get("on_event")
        cancel = kwargs.get("cancel_event")
        delivered = []
        for event in events:
            if cancel is not None and cancel.is_set():
                break
            delivered.append(event)
            if on_event is not None:
                on_event(event)
        return StreamExecutionResult(
            events=delivered,
            raw_lines=[],
            stderr_lines=stderr or [],
            exit_code=exit_code,
            timed_out=timed_out,
            cancelled=bool(cancel is not None and cancel.is_set()),
        )

    return fake, captured


class TestBuildCommand:
    def test_basic(self):
        runner = ClaudeCodeRunner(claude_binary="claude")
        cmd = runner._build_command("hello", model=" m ", max_turns=3, allowed_tools=["Read", "Glob"])
        assert Path(cmd[0]).name.startswith("claude")
        assert cmd[1:3] == ["-p", "hello"]
        assert cmd[cmd.index("--output-format") + 1] == "stream-json"
        assert "--verbose" in cmd
        assert cmd[cmd.index("--permission-mode") + 1] == "bypassPermissions"
        assert cmd[cmd.index("--model") + 1] == "m"
        assert cmd[cmd.index("--max-turns") + 1] == "3"
        assert cmd[cmd.index("--allowedTools") + 1] == "Read,Glob"
        assert "--resume" not in cmd
        assert "--append-system-prompt" not in cmd

    def test_resume_and_system_prompt(self):
        cmd = ClaudeCodeRunner()._build_command(
            None,
            model="m",
            max_turns=1,
            allowed_tools=[],
            resume_session_id="sess-1",
            append_system_prompt="be strict",
        )
        assert cmd[1] == "-p"
        assert cmd[2] == "--output-format"
        assert cmd[cmd.index("--resume") + 1] == "sess-1"
        assert cmd[cmd.index("--append-system-prompt") + 1] == "be strict"
        assert "--allowedTools" not in cmd


class TestRun:
    def test_success_parses_session_cost_and_result(self, monkeypatch, tmp_path: Path):
        fake, captured = _fake_execution(
            [
                {"type": "system", "subtype": "init", "session_id": "sess-1"},
                {"type": "assistant", "message": {"content": [{"type": "text", "text": "hi"}]}},
                {"type": "result", "subtype": "success", "result": "VERDICT: APPROVE",
                 "total_cost_usd": 0.42, "session_id": "sess-1"},
            ]
        )
        monkeypatch.setattr(claude_code_module, "execute_streaming_json_command", fake)

        result = ClaudeCodeRunner().run("prompt", working_dir=tmp_path, **_RUN_KWARGS)

        assert result.session_id == "sess-1"
        assert result.cost_usd == pytest.approx(0.42)
        assert result.result_text == "VERDICT: APPROVE"
        assert result.aborted is False
        assert captured["cwd"] == tmp_path.resolve()
        assert captured["stdin_text"] is None
        assert "prompt" in captured["cmd"]

    def test_long_prompt_goes_to_stdin(self, monkeypatch, tmp_path: Path):
        fake, captured = _fake_execution([{"type": "result", "subtype": "success", "result": ""}])
        monkeypatch.setattr(claude_code_module, "execute_streaming_json_command", fake)
        prompt = "x" * 70_000

        ClaudeCodeRunner().run(prompt, working_dir=tmp_path, **_RUN_KWARGS)

        assert captured["stdin_text"] == prompt
        assert prompt not in captured["cmd"]

    def test_budget_overrun_aborts(self, monkeypatch, tmp_path: Path):
        fake, _ = _fake_execution(
            [
                {"type": "result", "subtype": "success", "result": "", "total_cost_usd": 3.0},
                {"type": "assistant", "message": {}},
            ]
        )
        monkeypatch.setattr(claude_code_module, "execute_streaming_json_command", fake)

        result = ClaudeCodeRunner().run(
            "p", working_dir=tmp_path, max_budget_usd=2.0, **_RUN_KWARGS
        )

        assert result.aborted is True
        assert result.cost_usd == 3.0

    def test_nonzero_exit_without_result_raises(self, monkeypatch, tmp_path: Path):
        fake, _ = _fake_execution([], exit_code=1, stderr=["auth failed"])
        monkeypatch.setattr(claude_code_module, "execute_streaming_json_command", fake)
        with pytest.raises(AgentRunError, match="auth failed"):
            ClaudeCodeRunner().run("p", working_dir=tmp_path, **_RUN_KWARGS)

    def test_timeout_raises(self, monkeypatch, tmp_path: Path):
        fake, _ = _fake_execution([], timed_out=True)
        monkeypatch.setattr(claude_code_module, "execute_streaming_json_command", fake)
        with pytest.raises(AgentRunError, match="timed out"):
            ClaudeCodeRunner(timeout=5).run("p", working_dir=tmp_path, **_RUN_KWARGS)

    def test_missing_working_dir_raises(self, tmp_path: Path):
        with pytest.raises(AgentRunError, match="does not exist"):
            ClaudeCodeRunner().run("p", working_dir=tmp_path / "missing", **_RUN_KWARGS)

    def test_spawn_failure_raises(self, monkeypatch, tmp_path: Path):
        def boom(**_kwargs):
            raise FileNotFoundError("claude")

        monkeypatch.setattr(claude_code_module, "execute_streaming_json_command", boom)
        with pytest.raises(AgentRunError, match="Failed to execute claude"):
            ClaudeCodeRunner().run("p", working_dir=tmp_path, **_RUN_KWARGS)


def test_error_result_subtype_keeps_text_empty(caplog):
    tracker = _StreamTracker(max_budget_usd=None)
    with caplog.at_level(logging.WARNING):
        tracker.observe({"type": "result", "subtype": "error_max_turns", "total_cost_usd": 1})
    assert tracker.saw_result is True
    assert tracker.result_text == ""
    assert tracker.cost_usd == 1.0
    assert "error_max_turns" in caplog.text


def test_tool_activity_is_logged(caplog):
    tracker = _StreamTracker(max_budget_usd=None)
    event = {
        "type": "assistant",
        "message": {
            "content": [
                {"type": "tool_use", "name": "Read", "input": {"file_path": "src/app.py"}},
                {"type": "tool_use", "name": "Bash", "input": {"command": "pytest -q"}},
            ]
        },
    }
    with caplog.at_level(logging.INFO, logger="taskforge.claude_code"):
        tracker.observe(event)
    assert "agent: reading src/app.py" in caplog.text
    assert "agent: $ pytest -q" in caplog.text


def test_registered_under_claude_code():
    assert get_agent_class("claude_code") is ClaudeCodeRunner
