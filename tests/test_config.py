"""Tests for run configuration defaults, env overrides and merging."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from taskforge.config import DEFAULT_MODEL, AgentConfig, env_overrides, merge_config

pytestmark = pytest.mark.unit


def test_defaults():
    config = AgentConfig()
    assert config.plan_model == DEFAULT_MODEL
    assert config.max_execute_turns == 100
    assert (config.max_plan_review_cycles, config.max_code_review_cycles, config.max_test_fix_cycles) == (
        2,
        2,
        3,
    )
    assert config.max_budget_per_phase_usd == 5.0
    assert config.max_total_budget_usd == 20.0
    assert config.worktree_base == ".worktrees"
    assert config.branch_prefix == "feat"
    assert config.draft_pr_on_failure is True
    assert config.check_timeout_seconds == 120


def test_config_is_frozen():
    config = AgentConfig()
    with pytest.raises(ValidationError):
        config.skip_tests = True  # type: ignore[misc]


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_test_fix_cycles": -1},
        {"max_plan_turns": 0},
        {"max_total_budget_usd": 0},
        {"unknown_field": 1},
    ],
)
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ValueError):
        merge_config(overrides)


def test_merge_ignores_none_and_fans_out_model():
    base = AgentConfig(max_total_budget_usd=9.0)
    config = merge_config({"max_total_budget_usd": None, "model": "m-1", "skip_tests": True}, base=base)

    assert config.max_total_budget_usd == 9.0
    assert config.skip_tests is True
    assert {config.plan_model, config.execute_model, config.review_model, config.test_fix_model} == {"m-1"}
    assert base.skip_tests is False


def test_env_overrides_are_typed_by_validation():
    environ = {
        "TASKFORGE_MAX_TOTAL_BUDGET_USD": "7.5",
        "TASKFORGE_SKIP_TESTS": "true",
        "TASKFORGE_MODEL": "shared",
        "TASKFORGE_REVIEW_MODEL": "reviewer",
        "TASKFORGE_BRANCH_PREFIX": "  ",
        "UNRELATED": "x",
    }
    config = AgentConfig.from_env(environ)

    assert config.max_total_budget_usd == 7.5
    assert config.skip_tests is True
    assert config.plan_model == "shared"
    assert config.review_model == "reviewer"
    assert config.branch_prefix == "feat"


def test_cli_overrides_win_over_environment():
    base = AgentConfig.from_env({"TASKFORGE_MAX_TOTAL_BUDGET_USD": "7.5"})
    config = merge_config({"max_total_budget_usd": 3.0}, base=base)
    assert config.max_total_budget_usd == 3.0


def test_env_overrides_only_collects_known_fields():
    assert env_overrides({"TASKFORGE_NOT_A_FIELD": "1"}) == {}
