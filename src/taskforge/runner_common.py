"""Shared helpers for CLI agent runners: binary lookup and streaming-JSON execution."""

from __future__ import annotations

import hashlib
import logging
import math
import os
import queue
import shutil
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any

logger = logging.getLogger(__name__)
if os.name != "nt":  # pragma: no cover - platform-specific import
    import signal

_EVENT_CAP = 20_000
_STDOUT_CAP = 20_000
_STDERR_CAP = 10_000
_POLL_SECONDS = 0.25
_TERM_GRACE_SECONDS = 1.5
_REAP_SECONDS = 5.0

Event = dict[str, Any]

_EOF = object()


def resolve_binary(name: str) -> str:
    """Resolve a binary name to a full executable path when possible."""
    cleaned = os.path.expandvars(os.path.expanduser(str(name or "").strip()))
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in {"'", '"'}:
        # Pasted paths often arrive shell-quoted.
        cleaned = cleaned[1:-1].strip()
    if not cleaned:
        return ""
    return shutil.which(cleaned) or cleaned


def coerce_float(value: Any) -> float:
    """Read a cost-like field as a finite, non-negative float (0.0 otherwise)."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return number if math.isfinite(number) and number >= 0 else 0.0


def prompt_fingerprint(prompt: str) -> tuple[int, str]:
    """Return ``(length, sha256 prefix)`` so prompts can be logged without their text."""
    digest = hashlib.sha256(prompt.encode("utf-8", errors="replace")).hexdigest()
    return len(prompt), digest[:16]


@dataclass(slots=True)
class StreamExecutionResult:
    """Captured output and metadata from a runner subprocess."""

    events: list[Event]
    raw_lines: list[str]
    stderr_lines: list[str]
    exit_code: int
    timed_out: bool
    cancelled: bool = False

    @property
    def stderr_text(self) -> str:
        return "\n".join(self.stderr_lines).strip()


@dataclass
class _Capture:
    """Bounded buffers for one child process; stdout lines are parsed as they land."""

    parse: Callable[[str], Event | None]
    on_event: Callable[[Event], None] | None = None
    events: deque[Event] = field(default_factory=lambda: deque(maxlen=_EVENT_CAP))
    stdout: deque[str] = field(default_factory=lambda: deque(maxlen=_STDOUT_CAP))
    stderr: deque[str] = field(default_factory=lambda: deque(maxlen=_STDERR_CAP))

    def take(self, channel: str, line: str) -> None:
        if not line:
            return
        if channel == "stderr":
            self.stderr.append(line)
            return
        self.stdout.append(line)
        event = self.parse(line)
        if event is None:
            return
        self.events.append(event)
        if self.on_event is not None:
            self.on_event(event)


class _LinePump:
    """Background threads that move pipe lines onto a single queue."""

    def __init__(self, process_name: str) -> None:
        self.process_name = process_name
        self.lines: queue.Queue[tuple[str, object]] = queue.Queue()
        self._threads: list[threading.Thread] = []
        self._open: set[str] = set()

    def _spawn(self, target: Callable[..., None], *args: Any) -> None:
        thread = threading.Thread(target=target, args=args, daemon=True)
        thread.start()
        self._threads.append(thread)

    def follow(self, channel: str, stream: IO[str]) -> None:
        self._open.add(channel)

        def read() -> None:
            try:
                for line in stream:
                    self.lines.put((channel, line.rstrip("\r\n")))
            finally:
                self.lines.put((channel, _EOF))

        self._spawn(read)

    def feed(self, stream: IO[str], text: str) -> None:
        def write() -> None:
            try:
                stream.write(text)
                stream.flush()
            except OSError:
                logger.debug("%s stdin write failed", self.process_name)
            finally:
                with suppress(OSError):
                    stream.close()

        self._spawn(write)

    @property
    def exhausted(self) -> bool:
        return not self._open

    def mark_closed(self, channel: str) -> None:
        self._open.discard(channel)

    def readers_alive(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def join(self) -> None:
        for thread in self._threads:
            thread.join(timeout=1.0)


def execute_streaming_json_command(
    *,
    cmd: list[str],
    cwd: Path,
    env: dict[str, str],
    timeout_seconds: int,
    parse_stdout_line: Callable[[str], Event | None],
    process_name: str,
    stdin_text: str | None = None,
    cancel_event: threading.Event | None = None,
    on_event: Callable[[Event], None] | None = None,
) -> StreamExecutionResult:
    """Run *cmd*, parsing each stdout line as it arrives.

    The child is stopped when no output arrives for *timeout_seconds*
    (0 disables the limit) or when *cancel_event* is set. *on_event* sees
    every parsed event in order and may set *cancel_event* itself.
    """
    proc = subprocess.Popen(
        cmd,
        cwd=cwd,
        env=env,
        stdin=subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        **_process_group_kwargs(),
    )
    if proc.stdout is None or proc.stderr is None:
        raise RuntimeError(f"{process_name} started without stdout/stderr pipes")

    capture = _Capture(parse=parse_stdout_line, on_event=on_event)
    pump = _LinePump(process_name)
    if stdin_text is not None and proc.stdin is not None:
        pump.feed(proc.stdin, stdin_text)
    pump.follow("stdout", proc.stdout)
    pump.follow("stderr", proc.stderr)

    try:
        timed_out, cancelled = _watch(
            proc,
            pump,
            capture,
            idle_limit=timeout_seconds if timeout_seconds > 0 else None,
            cancel_event=cancel_event,
            process_name=process_name,
        )
        _reap(proc)
        _drain(pump, capture)
        return StreamExecutionResult(
            events=list(capture.events),
            raw_lines=list(capture.stdout),
            stderr_lines=list(capture.stderr),
            exit_code=-1 if proc.returncode is None else proc.returncode,
            timed_out=timed_out,
            cancelled=cancelled,
        )
    finally:
        pump.join()
        for stream in (proc.stdin, proc.stdout, proc.stderr):
            if stream is not None and not stream.closed:
                with suppress(OSError):
                    stream.close()


def _watch(
    proc: subprocess.Popen[str],
    pump: _LinePump,
    capture: _Capture,
    *,
    idle_limit: int | None,
    cancel_event: threading.Event | None,
    process_name: str,
) -> tuple[bool, bool]:
    """Consume output until both pipes close; return ``(timed_out, cancelled)``."""
    last_output = time.monotonic()
    while not pump.exhausted:
        if cancel_event is not None and cancel_event.is_set():
            _stop(proc, process_name=process_name, reason="cancel request")
            return False, True
        if idle_limit is not None and time.monotonic() - last_output >= idle_limit:
            _stop(proc, process_name=process_name, reason="inactivity timeout")
            return True, False
        try:
            channel, line = pump.lines.get(timeout=_POLL_SECONDS)
        except queue.Empty:
            if proc.poll() is not None and not pump.readers_alive():
                break
            continue
        if line is _EOF:
            pump.mark_closed(channel)
            continue
        last_output = time.monotonic()
        capture.take(channel, str(line))
    return False, False


def _drain(pump: _LinePump, capture: _Capture) -> None:
    """Collect lines queued between the last poll and process exit."""
    while True:
        try:
            channel, line = pump.lines.get_nowait()
        except queue.Empty:
            return
        if line is not _EOF:
            capture.take(channel, str(line))


def _process_group_kwargs() -> dict[str, object]:
    """Start the child in its own process group so it can be signalled as a whole."""
    if os.name == "nt":
        flags = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))
        return {"creationflags": flags} if flags else {}
    return {"start_new_session": True}


def _reap(proc: subprocess.Popen[str]) -> None:
    try:
        proc.wait(timeout=_REAP_SECONDS)
    except subprocess.TimeoutExpired:  # pragma: no cover
        proc.kill()
        proc.wait(timeout=_REAP_SECONDS)


def _stop(proc: subprocess.Popen[str], *, process_name: str, reason: str) -> None:
    """SIGTERM the process group, then SIGKILL once the grace period runs out."""
    if proc.poll() is not None:
        return
    _signal_group(proc, "SIGTERM")
    try:
        proc.wait(timeout=_TERM_GRACE_SECONDS)
        return
    except subprocess.TimeoutExpired:
        logger.warning("%s ignored SIGTERM after %s; killing it", process_name, reason)
    _signal_group(proc, "SIGKILL")
    with suppress(subprocess.TimeoutExpired):
        proc.wait(timeout=_REAP_SECONDS)


def _signal_group(proc: subprocess.Popen[str], signal_name: str) -> None:
    if os.name != "nt":
        with suppress(ProcessLookupError, PermissionError):
            os.killpg(os.getpgid(proc.pid), getattr(signal, signal_name))
    with suppress(OSError):
        if signal_name == "SIGKILL":
            proc.kill()
        else:
            proc.terminate()
