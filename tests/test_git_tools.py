"""Tests for git helpers against real throwaway repositories."""

from __future__ import annotations

import subprocess
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from taskforge import git_tools
from taskforge.git_tools import GitError


def _git(repo: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    ).stdout.strip()


@pytest.mark.unit
def test_run_git_wraps_timeouts(tmp_path: Path):
    with patch(
        "taskforge.git_tools.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="git", timeout=1),
    ), pytest.raises(GitError, match="timed out"):
        git_tools.head_sha(tmp_path)


@pytest.mark.unit
def test_commit_passes_no_verify(tmp_path: Path):
    with patch(
        "taskforge.git_tools._run_git", return_value=SimpleNamespace(stdout="abc123\n", returncode=0)
    ) as run_git:
        assert git_tools.commit(tmp_path, "msg") == "abc123"
    assert run_git.call_args_list[0].args == ("commit", "--no-verify", "-m", "msg")


@pytest.mark.integration
class TestRepositoryFacts:
    def test_is_git_repo(self, git_repo: Path, tmp_path: Path):
        assert git_tools.is_git_repo(git_repo) is True
        plain = tmp_path / "plain"
        plain.mkdir()
        assert git_tools.is_git_repo(plain) is False
        assert git_tools.is_git_repo(tmp_path / "missing") is False

    def test_default_branch_without_remote(self, git_repo: Path):
        assert git_tools.default_branch(git_repo) == "main"

    def test_remote_detection(self, git_repo: Path):
        assert git_tools.has_remote(git_repo) is False
        assert git_tools.remote_url(git_repo) == ""

    def test_push_reachability_with_bare_origin(self, git_repo: Path, bare_origin: Path):
        assert git_tools.has_remote(git_repo) is True
        assert git_tools.can_push_to_remote(git_repo) is True
        assert git_tools.remote_url(git_repo) == str(bare_origin)


@pytest.mark.integration
class TestWorktrees:
    def test_create_diff_commit_remove(self, git_repo: Path):
        worktree = git_repo / ".worktrees" / "abc"
        start = git_tools.create_worktree(git_repo, worktree, "feat/abc", "main", from_remote=False)
        assert start == "main"
        assert (worktree / "README.md").is_file()

        base = git_tools.head_sha(worktree)
        (worktree / "new.txt").write_text("hello\n", encoding="utf-8")
        (worktree / "README.md").write_text("changed\n", encoding="utf-8")

        diff = git_tools.diff(worktree, base)
        assert "new.txt" in diff
        assert "+hello" in diff
        assert sorted(git_tools.changed_files(worktree, base)) == ["README.md", "new.txt"]
        assert "2 files changed" in git_tools.diff_stat(worktree, base)

        git_tools.ensure_git_identity(worktree)
        sha = git_tools.commit(worktree, "feat: test")
        assert sha == git_tools.head_sha(worktree)
        assert git_tools.diff(worktree) == ""
        assert git_tools.diff(worktree, base) != ""

        git_tools.remove_worktree(git_repo, worktree)
        assert not worktree.exists()
        assert _git(git_repo, "rev-parse", "feat/abc") == sha

    def test_remove_missing_worktree_is_not_an_error(self, git_repo: Path):
        git_tools.remove_worktree(git_repo, git_repo / ".worktrees" / "gone")

    def test_create_worktree_falls_back_to_head(self, git_repo: Path):
        worktree = git_repo / ".worktrees" / "x"
        start = git_tools.create_worktree(git_repo, worktree, "feat/x", "develop", from_remote=True)
        assert start == "HEAD"

    def test_duplicate_branch_raises(self, git_repo: Path):
        git_tools.create_worktree(git_repo, git_repo / ".worktrees" / "a", "dup", "main", from_remote=False)
        with pytest.raises(GitError):
            git_tools.create_worktree(git_repo, git_repo / ".worktrees" / "b", "dup", "main", from_remote=False)

    def test_exclude_locally_hides_worktree_dir(self, git_repo: Path):
        assert git_tools.exclude_locally(git_repo, "/.worktrees/") is True
        assert git_tools.exclude_locally(git_repo, "/.worktrees/") is False
        (git_repo / ".worktrees").mkdir()
        (git_repo / ".worktrees" / "junk.txt").write_text("x", encoding="utf-8")
        assert git_tools.status_porcelain(git_repo) == ""


@pytest.mark.integration
def test_ensure_git_identity_sets_missing_values(git_repo: Path, monkeypatch):
    _git(git_repo, "config", "--unset", "user.name")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(git_repo / "no-global-config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")

    git_tools.ensure_git_identity(git_repo)

    assert _git(git_repo, "config", "user.name") == "taskforge"
    assert _git(git_repo, "config", "user.email") == "test@example.com"


@pytest.mark.integration
def test_push_sets_upstream(git_repo: Path, bare_origin: Path):
    _git(git_repo, "checkout", "-b", "feat/push")
    (git_repo / "f.txt").write_text("x", encoding="utf-8")
    git_tools.diff(git_repo)
    sha = git_tools.commit(git_repo, "add f")

    git_tools.push(git_repo, "feat/push")

    assert _git(bare_origin, "rev-parse", "feat/push") == sha
