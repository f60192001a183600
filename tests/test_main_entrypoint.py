"""Tests for the CLI entrypoint and the controller wrapper."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

import taskforge.__main__ as main_module
import taskforge.controller as controller_module
from taskforge.pipeline.states import PipelinePhase
from taskforge.schemas import ControllerResult, PhaseResult

pytestmark = pytest.mark.unit


def test_main_entrypoint_source_is_ascii_safe() -> None:
    source_text = Path(main_module.__file__).read_text(encoding="utf-8")
    assert source_text.isascii()


def test_missing_required_args_is_usage_error(capsys) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main_module.main([])
    assert exc_info.value.code == 2
    assert "--repo" in capsys.readouterr().err


def test_empty_task_is_usage_error(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main_module.main(["--repo", str(tmp_path), "--task", "   "])
    assert exc_info.value.code == 2


def test_non_positive_budget_is_usage_error(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main_module.main(["--repo", str(tmp_path), "--task", "x", "--max-budget", "0"])
    assert exc_info.value.code == 2


@pytest.mark.parametrize(("status", "code"), [("success", 0), ("partial", 0), ("failed", 1)])
def test_exit_code_follows_status(monkeypatch, tmp_path: Path, capsys, status, code) -> None:
    captured: dict = {}

    def fake_run_controller(repo, task, *, title, overrides, skip_preflight):
        captured.update(repo=repo, task=task, title=title, overrides=overrides, skip=skip_preflight)
        return ControllerResult(status=status, branch_name="feat/x", summary="done")

    monkeypatch.setattr(main_module, "run_controller", fake_run_controller)
    monkeypatch.setattr(main_module, "_load_dotenv", lambda: None)

    rc = main_module.main(
        [
            "--repo", str(tmp_path),
            "--task", "Add a thing",
            "--skip-tests",
            "--skip-push",
            "--max-budget", "3.5",
            "--model", "m",
            "--skip-preflight",
        ]
    )

    assert rc == code
    assert captured["repo"] == str(tmp_path)
    assert captured["skip"] is True
    overrides = captured["overrides"]
    assert overrides["skip_tests"] is True
    assert overrides["no_push"] is True
    assert overrides["skip_code_review"] is None
    assert overrides["max_total_budget_usd"] == 3.5
    assert overrides["model"] == "m"
    assert f"Status:   {status.upper()}" in capsys.readouterr().out


def test_json_output(monkeypatch, tmp_path: Path, capsys) -> None:
    result = ControllerResult(
        status="partial",
        phases=[PhaseResult(phase=PipelinePhase.PLAN, cost_usd=0.25)],
        total_cost_usd=0.25,
    )
    monkeypatch.setattr(main_module, "run_controller", lambda *a, **k: result)
    monkeypatch.setattr(main_module, "_load_dotenv", lambda: None)

    rc = main_module.main(["--repo", str(tmp_path), "--task", "x", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert payload["status"] == "partial"
    assert payload["phases"][0]["phase"] == "plan"
    assert payload["total_cost_usd"] == 0.25


class TestRunController:
    def test_preflight_errors_fail_without_running(self, monkeypatch, tmp_path: Path) -> None:
        class _Report:
            ok = False
            errors = ["git executable not found: git"]
            warnings: list[str] = []

        monkeypatch.setattr(controller_module, "run_preflight", lambda _binary: _Report())

        result = controller_module.run_controller(tmp_path, "do it")

        assert result.status == "failed"
        assert "git executable not found" in result.summary
        assert result.phases == []

    def test_empty_description_fails(self, tmp_path: Path) -> None:
        result = controller_module.run_controller(tmp_path, "  ", skip_preflight=True)
        assert result.status == "failed"
        assert "Invalid task" in result.summary

    def test_invalid_override_fails(self, tmp_path: Path) -> None:
        result = controller_module.run_controller(
            tmp_path, "x", overrides={"max_total_budget_usd": -1}, skip_preflight=True
        )
        assert result.status == "failed"

    def test_unknown_agent_fails(self, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.setenv("TASKFORGE_AGENT", "nobody")
        result = controller_module.run_controller(tmp_path, "x", skip_preflight=True)
        assert result.status == "failed"
        assert "Unknown agent" in result.summary

    def test_non_repo_path_is_a_failed_result(self, tmp_path: Path) -> None:
        class _Never(controller_module.AgentRunner):
            def run(self, prompt, **kwargs):
                raise AssertionError("agent must not run")

        result = controller_module.run_controller(
            tmp_path, "x", runner=_Never(), skip_preflight=True
        )

        assert result.status == "failed"
        assert result.failed_state == "intake"
        assert "Not a git repository" in result.summary
