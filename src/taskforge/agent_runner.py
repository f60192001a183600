"""Abstract base class for coding-agent runners.

Every agent backend implements the same :meth:`AgentRunner.run` contract so
the pipeline phases can dispatch to any of them interchangeably.
"""

from __future__ import annotations

import abc
from collections.abc import Sequence
from pathlib import Path

from taskforge.schemas import AgentResult


class AgentRunError(RuntimeError):
    """Raised when the agent process fails outright (crash, timeout, bad exit)."""


class AgentRunner(abc.ABC):
    """Common interface for coding-agent CLI wrappers."""

    #: Human-readable name used in logs (e.g. "Claude Code").
    name: str = "base"

    @abc.abstractmethod
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
        """Execute a single agent invocation and return its result.

        Parameters
        ----------
        prompt:
            Natural-language instruction for this turn.
        model:
            Model identifier passed to the agent.
        working_dir:
            Directory the agent operates in (the task worktree).
        max_turns:
            Upper bound on agent turns for this call.
        allowed_tools:
            Tool names the agent may use.
        resume_session_id:
            Continue an earlier conversation instead of starting fresh.
        append_system_prompt:
            Extra system-prompt text appended to the agent's default.
        max_budget_usd:
            Spend ceiling for this call. Once the reported cost exceeds it
            the runner stops the agent and returns ``aborted=True``.

        Raises
        ------
        AgentRunError
            When the agent process cannot start, times out, or exits with
            an error and no usable result.
        """


# ── Registry ──────────────────────────────────────────────────────

_REGISTRY: dict[str, type[AgentRunner]] = {}


def register_agent(key: str, cls: type[AgentRunner]) -> None:
    """Register an agent runner class under a lookup key."""
    normalized_key = (key or "").strip()
    if not normalized_key:
        raise ValueError("Agent key must be a non-empty string")
    if not isinstance(cls, type) or not issubclass(cls, AgentRunner):
        raise TypeError("Registered agent must be an AgentRunner subclass")

    existing = _REGISTRY.get(normalized_key)
    if existing is not None and existing is not cls:
        raise ValueError(
            f"Agent '{normalized_key}' is already registered with {existing.__name__}"
        )

    _REGISTRY[normalized_key] = cls


def get_agent_class(key: str) -> type[AgentRunner]:
    """Look up a registered agent runner class by key."""
    normalized_key = (key or "").strip()
    if normalized_key not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY)) or "(none)"
        raise KeyError(f"Unknown agent '{normalized_key}'. Available: {available}")
    return _REGISTRY[normalized_key]


def list_agents() -> list[str]:
    """Return all registered agent keys."""
    return sorted(_REGISTRY)
