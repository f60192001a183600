"""Reviewer verdicts: free-text scanning, JSON documents and the permissive policy.

Reviewers are asked to end their answer with a marker block::

    VERDICT: REVISE
    ISSUES:
    1. [correctness] Off-by-one in pager — iterate to len(items)
    2. [file:src/api.py] Missing timeout — pass timeout=30

A marker whose keyword is not recognised counts as REVISE.
:func:`scan_verdict` only reports what it found. Mapping "nothing found"
to approve/pass happens in :func:`resolve_plan_verdict` and
:func:`resolve_code_verdict`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from taskforge.schemas import CodeReviewVerdict, PlanReviewVerdict, ReviewIssue

logger = logging.getLogger(__name__)

_MARKER = "VERDICT:"
_ISSUES_HEADER = "ISSUES:"
_NUMBERED_RE = re.compile(r"^\s*\d+[.)]\s+")
_TAG_RE = re.compile(r"^\[([^\]]+)\]\s*(.*)$")
# Separators between a finding and its recommendation, most specific first.
_RECOMMENDATION_SEPARATORS = (" — ", " -- ", " -> ")
_LOCATION_PREFIX = "file:"

PERMISSIVE_SUMMARY = "No verdict found in review output; proceeding"


class VerdictKind(str, Enum):
    APPROVED = "approved"
    REVISE = "revise"
    REJECTED = "rejected"
    UNPARSED = "unparsed"


_KEYWORDS: dict[str, VerdictKind] = {
    "APPROVE": VerdictKind.APPROVED,
    "APPROVED": VerdictKind.APPROVED,
    "PASS": VerdictKind.APPROVED,
    "REVISE": VerdictKind.REVISE,
    "FAIL": VerdictKind.REVISE,
    "REJECT": VerdictKind.REJECTED,
    "REJECTED": VerdictKind.REJECTED,
}


@dataclass(frozen=True)
class ScannedVerdict:
    """What the scanner found; ``issues`` is only populated for REVISE."""

    kind: VerdictKind
    issues: list[ReviewIssue] = field(default_factory=list)
    summary: str = ""


def parse_issue_line(line: str) -> ReviewIssue:
    """Decompose ``[tag] description — recommendation`` into a :class:`ReviewIssue`.

    ``tag`` is a category, or ``file:<path>`` for a location. Lines without
    a tag or separator keep everything in the description.
    """
    body = _NUMBERED_RE.sub("", line, count=1).strip()
    category = ""
    location = ""
    tag_match = _TAG_RE.match(body)
    if tag_match:
        tag = tag_match.group(1).strip()
        body = tag_match.group(2).strip()
        if tag.lower().startswith(_LOCATION_PREFIX):
            location = tag[len(_LOCATION_PREFIX):].strip()
        else:
            category = tag.lower()

    description, recommendation = body, ""
    for separator in _RECOMMENDATION_SEPARATORS:
        if separator in body:
            description, recommendation = body.split(separator, 1)
            break

    return ReviewIssue(
        category=category,
        location=location,
        description=description.strip(),
        recommendation=recommendation.strip(),
    )


def scan_verdict(text: str | None) -> ScannedVerdict:
    """Find the last ``VERDICT:`` line in *text* and classify it."""
    lines = (text or "").splitlines()
    for index in range(len(lines) - 1, -1, -1):
        stripped = lines[index].strip()
        if not stripped.upper().startswith(_MARKER):
            continue
        remainder = stripped[len(_MARKER):].strip()
        head, _, tail = remainder.partition(" ")
        keyword = head.strip(".,:;*").upper()
        kind = _KEYWORDS.get(keyword)
        summary = tail.strip(" -:")
        if kind is None:
            # A marker that doesn't approve or reject asks for changes.
            logger.debug("Unrecognised verdict keyword %r; treating as revise", keyword)
            kind = VerdictKind.REVISE
            summary = remainder
        if kind is not VerdictKind.REVISE:
            return ScannedVerdict(kind=kind, summary=summary)
        return ScannedVerdict(
            kind=kind, issues=_collect_issues(lines[index + 1:]), summary=summary
        )
    return ScannedVerdict(kind=VerdictKind.UNPARSED)


def _collect_issues(lines: list[str]) -> list[ReviewIssue]:
    issues: list[ReviewIssue] = []
    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.upper().startswith(_ISSUES_HEADER):
            continue
        if _NUMBERED_RE.match(stripped):
            issues.append(parse_issue_line(stripped))
    return issues


# ---------------------------------------------------------------------------
# JSON verdict documents
# ---------------------------------------------------------------------------


def _issue_from_mapping(raw: Any) -> ReviewIssue | None:
    if isinstance(raw, str):
        return parse_issue_line(raw) if raw.strip() else None
    if not isinstance(raw, dict):
        return None
    description = str(raw.get("description") or "").strip()
    if not description:
        return None
    return ReviewIssue(
        severity=str(raw.get("severity") or "major").strip().lower(),
        category=str(raw.get("category") or "").strip().lower(),
        location=str(raw.get("location") or raw.get("file") or "").strip(),
        description=description,
        recommendation=str(raw.get("recommendation") or raw.get("suggestion") or "").strip(),
    )


def _document_issues(data: dict[str, Any]) -> list[ReviewIssue]:
    raw_issues = data.get("issues")
    if raw_issues is None:
        raw_issues = data.get("feedback")
    if not isinstance(raw_issues, list):
        return []
    issues = [_issue_from_mapping(item) for item in raw_issues]
    return [issue for issue in issues if issue is not None]


def plan_verdict_from_document(data: Any) -> PlanReviewVerdict | None:
    """Validate a ``plan-review.json`` payload; ``None`` when unusable."""
    if not isinstance(data, dict):
        return None
    try:
        return PlanReviewVerdict(
            verdict=data.get("verdict"),
            issues=_document_issues(data),
            summary=str(data.get("summary") or ""),
        )
    except ValidationError as exc:
        logger.warning("Ignoring invalid plan-review document: %s", exc.errors()[0].get("msg"))
        return None


def code_verdict_from_document(data: Any) -> CodeReviewVerdict | None:
    """Validate a ``code-review.json`` payload; ``None`` when unusable."""
    if not isinstance(data, dict):
        return None
    try:
        return CodeReviewVerdict(
            verdict=data.get("verdict"),
            issues=_document_issues(data),
            summary=str(data.get("summary") or ""),
        )
    except ValidationError as exc:
        logger.warning("Ignoring invalid code-review document: %s", exc.errors()[0].get("msg"))
        return None


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def resolve_plan_verdict(scanned: ScannedVerdict) -> PlanReviewVerdict:
    """Map a scanned verdict to a plan-review verdict; unparsed approves."""
    if scanned.kind is VerdictKind.UNPARSED:
        logger.warning("Plan review produced no verdict; defaulting to approve")
        return PlanReviewVerdict(verdict="approve", summary=PERMISSIVE_SUMMARY)
    mapping = {
        VerdictKind.APPROVED: "approve",
        VerdictKind.REVISE: "revise",
        VerdictKind.REJECTED: "reject",
    }
    return PlanReviewVerdict(
        verdict=mapping[scanned.kind],
        issues=list(scanned.issues),
        summary=scanned.summary,
    )


def resolve_code_verdict(scanned: ScannedVerdict) -> CodeReviewVerdict:
    """Map a scanned verdict to a code-review verdict; unparsed passes.

    Code review has no reject outcome, so REJECT is treated as a failing
    review.
    """
    if scanned.kind is VerdictKind.UNPARSED:
        logger.warning("Code review produced no verdict; defaulting to pass")
        return CodeReviewVerdict(verdict="pass", summary=PERMISSIVE_SUMMARY)
    if scanned.kind is VerdictKind.APPROVED:
        return CodeReviewVerdict(verdict="pass", summary=scanned.summary)
    return CodeReviewVerdict(verdict="fail", issues=list(scanned.issues), summary=scanned.summary)


def format_issues(issues: list[ReviewIssue]) -> str:
    """Render issues as a numbered list for the next agent turn."""
    return "\n".join(f"{number}. {issue.as_line()}" for number, issue in enumerate(issues, start=1))
