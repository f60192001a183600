"""Tests for atomic writes and tolerant reads."""

from __future__ import annotations

from pathlib import Path

import pytest

import taskforge.file_io as file_io

pytestmark = pytest.mark.unit


def test_replace_with_retry_retries_permission_denied_then_succeeds(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    src = tmp_path / "src.txt"
    dst = tmp_path / "dst.txt"
    src.write_text("new-content", encoding="utf-8")
    dst.write_text("old-content", encoding="utf-8")

    attempts = {"count": 0}
    original_replace = Path.replace

    def flaky_replace(self: Path, target: Path) -> Path:
        if self == src and attempts["count"] < 2:
            attempts["count"] += 1
            raise PermissionError("file locked")
        return original_replace(self, target)

    monkeypatch.setattr(Path, "replace", flaky_replace)
    monkeypatch.setattr(file_io.time, "sleep", lambda _seconds: None)

    file_io._replace_with_retry(src, dst)

    assert attempts["count"] == 2
    assert dst.read_text(encoding="utf-8") == "new-content"


def test_atomic_write_creates_parents_and_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "plan.md"
    file_io.atomic_write_text(target, "## Plan\n")

    assert target.read_text(encoding="utf-8") == "## Plan\n"
    assert [p.name for p in target.parent.iterdir()] == ["plan.md"]


def test_read_text_resilient_falls_back_for_legacy_encodings(tmp_path: Path) -> None:
    path = tmp_path / "notes.md"
    path.write_bytes("café — done".encode("cp1252"))

    assert file_io.read_text_resilient(path) == "café — done"


def test_read_text_resilient_raises_for_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        file_io.read_text_resilient(tmp_path / "missing.md")


def test_ensure_line_appends_once_and_fixes_missing_newline(tmp_path: Path) -> None:
    path = tmp_path / ".gitignore"
    path.write_text("node_modules", encoding="utf-8")

    assert file_io.ensure_line(path, ".agent/") is True
    assert file_io.ensure_line(path, ".agent/") is False
    assert path.read_text(encoding="utf-8") == "node_modules\n.agent/\n"


def test_ensure_line_creates_file(tmp_path: Path) -> None:
    path = tmp_path / "info" / "exclude"
    assert file_io.ensure_line(path, "/.worktrees/") is True
    assert path.read_text(encoding="utf-8") == "/.worktrees/\n"
