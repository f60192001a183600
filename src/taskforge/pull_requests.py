"""Pull-request body rendering and GitHub pull-request creation.

PR creation is a best-effort side effect: every failure comes back as a
:class:`SideEffectOutcome` with a reason instead of an exception.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Sequence
from contextlib import suppress
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlparse
from urllib.request import Request, urlopen

import keyring
from keyring.errors import KeyringError

from taskforge.git_tools import remote_url
from taskforge.schemas import PhaseResult, SideEffectOutcome, TestResult

logger = logging.getLogger(__name__)

_GITHUB_API = "https://api.github.com"
_GITHUB_API_TIMEOUT_SECONDS = 20
_GITHUB_TOKEN_ENV_VARS = ("TASKFORGE_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")
_GITHUB_PAT_SERVICE = "taskforge.github"
_GITHUB_PAT_KEY = "pat"
_TEST_OUTPUT_PREVIEW_LINES = 40


# ---------------------------------------------------------------------------
# Body rendering
# ---------------------------------------------------------------------------


def render_pr_body(
    *,
    title: str,
    description: str,
    task_id: str,
    diff_stat: str,
    phases: Sequence[PhaseResult],
    total_cost_usd: float,
    test_result: TestResult | None = None,
    review_summary: str | None = None,
    failure_reason: str | None = None,
) -> str:
    """Build the markdown body for a task pull request."""
    lines = [f"## {title}", "", description.strip(), "", f"Task ID: `{task_id}`", ""]

    if failure_reason:
        lines += [
            "> **Draft:** the run did not finish cleanly.",
            f"> {failure_reason}",
            "",
        ]

    if diff_stat.strip():
        lines += ["### Changes", "", "```", diff_stat.strip(), "```", ""]

    lines += ["### Phases", "", "| Phase | Result | Cost | Duration |", "|---|---|---|---|"]
    for entry in phases:
        status = "ok" if entry.success else "failed"
        lines.append(
            f"| {entry.phase.value} | {status} | ${entry.cost_usd:.4f} | "
            f"{entry.duration_ms / 1000:.1f}s |"
        )
    lines += ["", f"**Total cost:** ${total_cost_usd:.4f}", ""]

    if test_result is not None:
        verdict = "passed" if test_result.passed else "failed"
        category = f" ({test_result.failure_category})" if test_result.failure_category else ""
        lines += ["### Checks", "", f"Enforced checks {verdict}{category}.", ""]
        if not test_result.passed and test_result.output.strip():
            preview = "\n".join(test_result.output.splitlines()[-_TEST_OUTPUT_PREVIEW_LINES:])
            lines += ["<details><summary>Output</summary>", "", "```", preview, "```", "", "</details>", ""]

    if review_summary:
        lines += ["### Code review", "", review_summary.strip(), ""]

    return "\n".join(lines).rstrip() + "\n"


# ---------------------------------------------------------------------------
# GitHub API
# ---------------------------------------------------------------------------


def github_owner_repo(remote: str) -> tuple[str, str]:
    """Return ``(owner, repo)`` for a github.com remote URL, else empty strings."""
    raw = str(remote or "").strip()
    if not raw:
        return "", ""

    host = ""
    path = ""
    parsed = urlparse(raw)
    if parsed.scheme and parsed.netloc:
        host = str(parsed.hostname or parsed.netloc).strip().lower()
        path = str(parsed.path or "").strip()
    elif "://" not in raw and ":" in raw:
        left, right = raw.split(":", 1)
        if "@" in left and right.strip():
            host = left.split("@", 1)[1].strip().lower()
            path = "/" + right.strip()

    if host != "github.com":
        return "", ""
    normalized = path.strip().strip("/")
    if normalized.lower().endswith(".git"):
        normalized = normalized[:-4]
    parts = [part.strip() for part in normalized.split("/") if part.strip()]
    if len(parts) < 2:
        return "", ""
    return parts[0], parts[1]


def github_token() -> str:
    """Return a GitHub token from the environment or the OS keyring."""
    for key in _GITHUB_TOKEN_ENV_VARS:
        token = str(os.getenv(key) or "").strip()
        if token:
            return token
    try:
        return str(keyring.get_password(_GITHUB_PAT_SERVICE, _GITHUB_PAT_KEY) or "").strip()
    except KeyringError as exc:
        logger.debug("Keyring lookup failed: %s", exc)
        return ""


def _github_api_error_message(exc: HTTPError) -> str:
    detail = ""
    with suppress(OSError, ValueError):
        body = exc.read().decode("utf-8", errors="replace")
        parsed = json.loads(body) if body else {}
        if isinstance(parsed, dict):
            detail = str(parsed.get("message") or "").strip()
            errors = parsed.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                extra = str(errors[0].get("message") or "").strip()
                if extra:
                    detail = f"{detail} ({extra})" if detail else extra
    message = f"GitHub API returned HTTP {exc.code}."
    if detail:
        message += f" {detail[:220]}"
    return message


def _github_api_request(
    *,
    method: str,
    path: str,
    token: str,
    payload: dict[str, Any] | None = None,
) -> tuple[dict[str, Any] | list[Any] | None, str]:
    """Call the GitHub REST API; return ``(payload, error_message)``."""
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": "taskforge",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"

    data: bytes | None = None
    if payload is not None:
        headers["Content-Type"] = "application/json"
        data = json.dumps(payload).encode("utf-8")

    request_obj = Request(f"{_GITHUB_API}{path}", headers=headers, data=data, method=method.upper())
    try:
        with urlopen(request_obj, timeout=_GITHUB_API_TIMEOUT_SECONDS) as response:
            body_text = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        return None, _github_api_error_message(exc)
    except URLError as exc:
        reason = str(getattr(exc, "reason", exc) or "").strip()
        return None, f"Could not reach GitHub API: {reason}" if reason else "Could not reach GitHub API."
    except (OSError, ValueError) as exc:
        return None, f"GitHub API request failed: {exc}"

    if not body_text.strip():
        return {}, ""
    try:
        parsed = json.loads(body_text)
    except json.JSONDecodeError as exc:
        return None, f"GitHub API returned invalid JSON: {exc}"
    if isinstance(parsed, (dict, list)):
        return parsed, ""
    return None, "GitHub API returned an unexpected payload."


def create_pull_request(
    repo_path: str | Path,
    branch: str,
    title: str,
    body: str,
    base: str,
    is_draft: bool,
) -> SideEffectOutcome:
    """Open a pull request for *branch* against *base*; value is the PR URL."""
    owner, repo_name = github_owner_repo(remote_url(repo_path))
    if not owner or not repo_name:
        return SideEffectOutcome.failure("origin is not a github.com repository")
    token = github_token()
    if not token:
        return SideEffectOutcome.failure(
            "GitHub token is required (set TASKFORGE_GITHUB_TOKEN, GITHUB_TOKEN or GH_TOKEN)"
        )

    path = f"/repos/{quote(owner, safe='')}/{quote(repo_name, safe='')}/pulls"
    payload, error = _github_api_request(
        method="POST",
        path=path,
        token=token,
        payload={"title": title, "head": branch, "base": base, "body": body, "draft": is_draft},
    )
    if error:
        return SideEffectOutcome.failure(error)
    if not isinstance(payload, dict):
        return SideEffectOutcome.failure("Unexpected pull-request creation payload.")
    url = str(payload.get("html_url") or "").strip()
    if not url:
        return SideEffectOutcome.failure("GitHub pull-request creation returned no URL.")
    logger.info("Opened %spull request %s", "draft " if is_draft else "", url)
    return SideEffectOutcome.success(url)
