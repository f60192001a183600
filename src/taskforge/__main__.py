"""CLI entrypoint for taskforge."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from taskforge.controller import run_controller
from taskforge.schemas import ControllerResult


def _load_dotenv() -> None:
    """Load .env from cwd, its parent, or the package root."""
    package_root = Path(__file__).resolve().parent.parent.parent  # src/taskforge/__main__.py
    for dir_ in (Path.cwd(), Path.cwd().parent, package_root):
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file)
            return
    load_dotenv()


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="taskforge",
        description="Turn a task description into a reviewed, tested branch and pull request.",
    )
    p.add_argument("--repo", required=True, help="Path to the target git repository.")
    p.add_argument("--task", required=True, help="Task description for the agent.")
    p.add_argument("--title", default=None, help="PR / branch title (default: first line of --task).")
    p.add_argument("--skip-plan-review", action="store_true", help="Skip the plan review loop.")
    p.add_argument("--skip-code-review", action="store_true", help="Skip the code review loop.")
    p.add_argument("--skip-tests", action="store_true", help="Skip baseline and check runs.")
    p.add_argument("--skip-push", action="store_true", help="Commit locally; do not push or open a PR.")
    p.add_argument(
        "--max-budget",
        type=float,
        default=None,
        help="Total USD budget for the run (default: 20).",
    )
    p.add_argument("--model", default=None, help="Model for every agent role.")
    p.add_argument("--claude-bin", default=None, help="Path to the Claude Code CLI binary.")
    p.add_argument(
        "--skip-preflight",
        action="store_true",
        help="Skip git / agent binary / auth checks.",
    )
    p.add_argument("--json", action="store_true", help="Print the result as JSON.")
    p.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging.",
    )
    return p


def _overrides_from_args(args: argparse.Namespace) -> dict[str, object]:
    # Unset flags stay None so environment values are kept.
    return {
        "skip_plan_review": True if args.skip_plan_review else None,
        "skip_code_review": True if args.skip_code_review else None,
        "skip_tests": True if args.skip_tests else None,
        "no_push": True if args.skip_push else None,
        "max_total_budget_usd": args.max_budget,
        "model": args.model,
        "claude_binary": args.claude_bin,
    }


def _print_summary(result: ControllerResult) -> None:
    print()
    print("=" * 60)
    print(f"  Status:   {result.status.upper()}")
    print(f"  Duration: {result.total_duration_ms / 1000:.1f}s")
    print(f"  Cost:     ${result.total_cost_usd:.4f}")
    if result.pr_url:
        print(f"  PR:       {result.pr_url}")
    if result.branch_name:
        print(f"  Branch:   {result.branch_name}")
    if result.failed_state:
        print(f"  Failed:   {result.failed_state}")
    if result.summary:
        print(f"  Summary:  {result.summary}")
    print("=" * 60)


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run one task, and map its status to an exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )

    if not args.task.strip():
        parser.error("--task must not be empty")
    if args.max_budget is not None and args.max_budget <= 0:
        parser.error("--max-budget must be positive")

    _load_dotenv()
    result = run_controller(
        args.repo,
        args.task,
        title=args.title,
        overrides=_overrides_from_args(args),
        skip_preflight=args.skip_preflight,
    )

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        _print_summary(result)
    return 1 if result.status == "failed" else 0


if __name__ == "__main__":
    sys.exit(main())
