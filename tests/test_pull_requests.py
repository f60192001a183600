"""Tests for PR body rendering and GitHub pull-request creation."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from keyring.errors import KeyringError

import taskforge.pull_requests as pull_requests
from taskforge.pipeline.states import PipelinePhase
from taskforge.schemas import PhaseResult, TestResult

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("remote", "expected"),
    [
        ("https://github.com/acme/widgets.git", ("acme", "widgets")),
        ("git@github.com:acme/widgets.git", ("acme", "widgets")),
        ("ssh://git@github.com/acme/widgets", ("acme", "widgets")),
        ("https://gitlab.com/acme/widgets.git", ("", "")),
        ("/tmp/remote.git", ("", "")),
        ("", ("", "")),
    ],
)
def test_github_owner_repo(remote, expected):
    assert pull_requests.github_owner_repo(remote) == expected


def test_render_pr_body_includes_phases_cost_and_failing_checks():
    body = pull_requests.render_pr_body(
        title="Add greeting",
        description="Add hello.txt",
        task_id="abcd1234",
        diff_stat=" hello.txt | 1 +",
        phases=[
            PhaseResult(phase=PipelinePhase.PLAN, cost_usd=0.5, duration_ms=1500),
            PhaseResult(phase=PipelinePhase.TEST, success=False),
        ],
        total_cost_usd=0.5,
        test_result=TestResult(passed=False, exit_code=1, output="boom", failure_category="unit"),
        review_summary="Looks fine",
    )

    assert body.startswith("## Add greeting")
    assert "Task ID: `abcd1234`" in body
    assert "| plan | ok | $0.5000 | 1.5s |" in body
    assert "| test | failed |" in body
    assert "**Total cost:** $0.5000" in body
    assert "Enforced checks failed (unit)." in body
    assert "boom" in body
    assert "### Code review" in body


def test_render_pr_body_marks_salvage_drafts():
    body = pull_requests.render_pr_body(
        title="t",
        description="d",
        task_id="id",
        diff_stat="",
        phases=[],
        total_cost_usd=0.0,
        failure_reason="execute: agent crashed",
    )
    assert "did not finish cleanly" in body
    assert "execute: agent crashed" in body
    assert "### Changes" not in body


def test_github_token_prefers_environment(monkeypatch):
    monkeypatch.delenv("TASKFORGE_GITHUB_TOKEN", raising=False)
    monkeypatch.setenv("GITHUB_TOKEN", "env-token")
    with patch("taskforge.pull_requests.keyring.get_password") as get_password:
        assert pull_requests.github_token() == "env-token"
    get_password.assert_not_called()


def test_github_token_falls_back_to_keyring(monkeypatch):
    for key in ("TASKFORGE_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN"):
        monkeypatch.delenv(key, raising=False)
    with patch("taskforge.pull_requests.keyring.get_password", return_value=" pat ") as get_password:
        assert pull_requests.github_token() == "pat"
    get_password.assert_called_once_with("taskforge.github", "pat")


def test_github_token_tolerates_keyring_errors(monkeypatch):
    for key in ("TASKFORGE_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN"):
        monkeypatch.delenv(key, raising=False)
    with patch("taskforge.pull_requests.keyring.get_password", side_effect=KeyringError("locked")):
        assert pull_requests.github_token() == ""


class TestCreatePullRequest:
    def test_non_github_remote_fails_softly(self, monkeypatch, tmp_path: Path):
        monkeypatch.setattr(pull_requests, "remote_url", lambda _repo: "/tmp/remote.git")
        outcome = pull_requests.create_pull_request(tmp_path, "feat/x", "t", "b", "main", False)
        assert outcome.ok is False
        assert "github.com" in (outcome.reason or "")

    def test_missing_token_fails_softly(self, monkeypatch, tmp_path: Path):
        monkeypatch.setattr(pull_requests, "remote_url", lambda _repo: "git@github.com:acme/w.git")
        monkeypatch.setattr(pull_requests, "github_token", lambda: "")
        outcome = pull_requests.create_pull_request(tmp_path, "feat/x", "t", "b", "main", False)
        assert outcome.ok is False
        assert "token" in (outcome.reason or "").lower()

    def test_success_returns_url_and_sends_draft_flag(self, monkeypatch, tmp_path: Path):
        monkeypatch.setattr(pull_requests, "remote_url", lambda _repo: "git@github.com:acme/w.git")
        monkeypatch.setattr(pull_requests, "github_token", lambda: "tok")
        captured: dict = {}

        def fake_request(*, method, path, token, payload=None):
            captured.update(method=method, path=path, token=token, payload=payload)
            return {"html_url": "https://github.com/acme/w/pull/7"}, ""

        monkeypatch.setattr(pull_requests, "_github_api_request", fake_request)

        outcome = pull_requests.create_pull_request(tmp_path, "feat/x", "Title", "Body", "main", True)

        assert outcome.ok is True
        assert outcome.value == "https://github.com/acme/w/pull/7"
        assert captured["method"] == "POST"
        assert captured["path"] == "/repos/acme/w/pulls"
        assert captured["payload"] == {
            "title": "Title",
            "head": "feat/x",
            "base": "main",
            "body": "Body",
            "draft": True,
        }

    def test_api_error_is_reported(self, monkeypatch, tmp_path: Path):
        monkeypatch.setattr(pull_requests, "remote_url", lambda _repo: "git@github.com:acme/w.git")
        monkeypatch.setattr(pull_requests, "github_token", lambda: "tok")
        monkeypatch.setattr(
            pull_requests,
            "_github_api_request",
            lambda **_kwargs: (None, "GitHub API returned HTTP 422. Validation Failed"),
        )
        outcome = pull_requests.create_pull_request(tmp_path, "feat/x", "t", "b", "main", False)
        assert outcome.ok is False
        assert "422" in (outcome.reason or "")
