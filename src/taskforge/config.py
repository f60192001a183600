"""Run configuration: models, turn caps, cycle caps, budgets and toggles.

Values come from three layers, later layers winning::

    built-in defaults  <  TASKFORGE_* environment variables  <  CLI flags

The CLI loads a ``.env`` file with python-dotenv before reading the
environment, so a project-local ``.env`` can override the defaults too.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

ENV_PREFIX = "TASKFORGE_"
DEFAULT_MODEL = "claude-opus-4-6"

# Keys that fan out to several fields.
_MODEL_FIELDS = ("plan_model", "execute_model", "review_model", "test_fix_model")


class AgentConfig(BaseModel):
    """Frozen configuration for one pipeline run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Models per agent role
    plan_model: str = DEFAULT_MODEL
    execute_model: str = DEFAULT_MODEL
    review_model: str = DEFAULT_MODEL
    test_fix_model: str = DEFAULT_MODEL

    # Turn caps per agent call
    max_plan_turns: int = Field(default=50, gt=0)
    max_plan_review_turns: int = Field(default=20, gt=0)
    max_execute_turns: int = Field(default=100, gt=0)
    max_code_review_turns: int = Field(default=30, gt=0)
    max_test_fix_turns: int = Field(default=50, gt=0)

    # Loop caps
    max_plan_review_cycles: int = Field(default=2, ge=0)
    max_code_review_cycles: int = Field(default=2, ge=0)
    max_test_fix_cycles: int = Field(default=3, ge=0)

    # Budgets (USD)
    max_budget_per_phase_usd: float = Field(default=5.0, gt=0)
    max_total_budget_usd: float = Field(default=20.0, gt=0)

    # Worktree + branch naming
    worktree_base: str = ".worktrees"
    branch_prefix: str = "feat"

    # Toggles
    skip_plan_review: bool = False
    skip_code_review: bool = False
    skip_tests: bool = False
    no_push: bool = False
    draft_pr_on_failure: bool = True

    # Agent backend
    agent: str = "claude_code"
    claude_binary: str = "claude"
    # Inactivity timeout for an agent call in seconds. 0 disables timeout.
    agent_timeout_seconds: int = Field(default=600, ge=0)

    # Shell timeouts
    check_timeout_seconds: int = Field(default=120, gt=0)
    install_timeout_seconds: int = Field(default=600, gt=0)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AgentConfig:
        """Build a config from defaults overlaid with ``TASKFORGE_*`` variables."""
        return merge_config(env_overrides(environ))


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect config overrides from ``TASKFORGE_<FIELD>`` environment variables.

    ``TASKFORGE_MODEL`` sets every model field at once; a per-role variable
    such as ``TASKFORGE_REVIEW_MODEL`` still wins over it.
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}

    shared_model = str(env.get(f"{ENV_PREFIX}MODEL") or "").strip()
    if shared_model:
        for name in _MODEL_FIELDS:
            overrides[name] = shared_model

    for name in AgentConfig.model_fields:
        raw = env.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None or not str(raw).strip():
            continue
        overrides[name] = str(raw).strip()
    return overrides


def merge_config(
    overrides: Mapping[str, Any] | None = None,
    *,
    base: AgentConfig | None = None,
) -> AgentConfig:
    """Return a new validated config with *overrides* applied on top of *base*.

    ``None`` values are ignored so unset CLI flags never clobber lower
    layers. A ``model`` key fans out to every per-role model field.
    Invalid values raise :class:`pydantic.ValidationError` (a ``ValueError``).
    """
    merged: dict[str, Any] = (base or AgentConfig()).model_dump()
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key == "model":
            for name in _MODEL_FIELDS:
                merged[name] = value
            continue
        merged[key] = value
    config = AgentConfig.model_validate(merged)
    logger.debug("Resolved config: %s", config.model_dump())
    return config
