"""Text I/O helpers: atomic writes and tolerant reads of agent-written files."""

from __future__ import annotations

import logging
import os
import tempfile
import time
from contextlib import suppress
from pathlib import Path

logger = logging.getLogger(__name__)

_REPLACE_MAX_RETRIES = 8
_REPLACE_RETRY_SECONDS = 0.01
_FALLBACK_DECODERS = ("utf-8-sig", "cp1252", "latin-1")


def _replace_with_retry(src: Path, dst: Path) -> None:
    """Replace *dst* with *src*, retrying on transient file-lock races."""
    last_error: OSError | None = None
    for attempt in range(_REPLACE_MAX_RETRIES):
        try:
            src.replace(dst)
            return
        except PermissionError as exc:
            last_error = exc
        if attempt < _REPLACE_MAX_RETRIES - 1:
            time.sleep(_REPLACE_RETRY_SECONDS * (attempt + 1))
    if last_error is not None:
        raise last_error


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write text to disk atomically so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f"{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            handle.write(content)
        _replace_with_retry(tmp_path, path)
    finally:
        with suppress(OSError):
            tmp_path.unlink(missing_ok=True)


def read_text_resilient(path: Path) -> str:
    """Read *path* as UTF-8, falling back to common legacy encodings.

    Agents occasionally write files with a BOM or a Windows code page; those
    still decode instead of failing the phase. Raises ``FileNotFoundError``
    when the file is absent.
    """
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        raw = path.read_bytes()

    for decoder in _FALLBACK_DECODERS:
        try:
            text = raw.decode(decoder)
        except UnicodeDecodeError:
            continue
        logger.debug("Decoded %s with %s fallback", path, decoder)
        return text
    return raw.decode("utf-8", errors="replace")


def ensure_line(path: Path, line: str) -> bool:
    """Append *line* to *path* unless an identical line is present.

    Returns ``True`` when the file was modified.
    """
    existing = read_text_resilient(path) if path.exists() else ""
    if any(candidate.strip() == line.strip() for candidate in existing.splitlines()):
        return False
    prefix = existing if not existing or existing.endswith("\n") else existing + "\n"
    atomic_write_text(path, f"{prefix}{line}\n")
    return True
