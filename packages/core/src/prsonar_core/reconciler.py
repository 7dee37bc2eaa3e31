"""Diff current findings against the comments a previous run left behind.

The result is the minimal edit script that turns the posted inline comments
into the ones the current findings call for:

    no comment at (file, line)          -> create
    comment with the same rendered body -> keep
    comment with a different body       -> update
    comment no finding points at        -> delete

Only comments owned by prsonar take part. A comment written by anyone else is
never indexed, so it can never end up in an update or delete bucket.

Findings that cannot be attached to a line (no line number, or a line that is
not visible in the pull request diff) are reported in the global summary only.
They never match or create a file-level inline comment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from prsonar_core.markdown import render_inline_comment, same_body
from prsonar_core.models import Finding, Owner, PostedComment
from prsonar_core.report import ReviewReport, VerdictPolicy

logger = logging.getLogger(__name__)

Identity = tuple[str, int]


@dataclass(frozen=True)
class InlineComment:
    """The inline comment that should exist at one file/line identity."""

    file: str
    line: int
    findings: tuple[Finding, ...]
    server_base_url: str = ""

    @property
    def body(self) -> str:
        return render_inline_comment(self.findings, self.server_base_url)


@dataclass
class ReconciliationPlan:
    report: ReviewReport
    to_create: list[InlineComment] = field(default_factory=list)
    to_update: dict[int, InlineComment] = field(default_factory=dict)
    to_delete: dict[int, PostedComment] = field(default_factory=dict)
    stale_globals: dict[int, PostedComment] = field(default_factory=dict)
    kept: dict[int, InlineComment] = field(default_factory=dict)
    summary_only: list[Finding] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when the inline comments already match the findings."""
        return not (self.to_create or self.to_update or self.to_delete)


def _is_commentable(finding: Finding, commentable_lines: Mapping[str, Iterable[int]] | None) -> bool:
    if not finding.file or finding.line is None:
        return False
    if commentable_lines is None:
        return True
    return finding.line in commentable_lines.get(finding.file, ())


def _group_by_identity(
    findings: Iterable[Finding],
    commentable_lines: Mapping[str, Iterable[int]] | None,
) -> tuple[dict[Identity, list[Finding]], list[Finding]]:
    grouped: dict[Identity, list[Finding]] = {}
    summary_only: list[Finding] = []
    for finding in findings:
        if not _is_commentable(finding, commentable_lines):
            summary_only.append(finding)
            continue
        group = grouped.setdefault((finding.file, finding.line), [])
        # First seen wins the slot; later findings are merged into its body.
        if finding not in group:
            group.append(finding)
    return grouped, summary_only


def reconcile(
    findings: Iterable[Finding],
    existing: Iterable[PostedComment],
    policy: VerdictPolicy | None = None,
    commentable_lines: Mapping[str, Iterable[int]] | None = None,
    server_base_url: str = "",
) -> ReconciliationPlan:
    """Compute the create/update/delete edit script for one pull request.

    ``commentable_lines`` maps a file path to the line numbers GitHub accepts
    inline comments on. Pass None to treat every numbered line as commentable.
    ``server_base_url`` turns rule keys in the bodies into links.
    """
    findings = tuple(findings)
    plan = ReconciliationPlan(report=ReviewReport.fold(findings, policy))

    index: dict[Identity, PostedComment] = {}
    for comment in existing:
        if comment.owner is not Owner.SYSTEM:
            continue
        if not comment.is_inline:
            # The summary is regenerated every run, never edited in place.
            plan.stale_globals[comment.comment_id] = comment
            continue
        if comment.file is None or comment.line is None:
            # Outdated: its line has left the diff.
            plan.to_delete[comment.comment_id] = comment
            continue
        identity = (comment.file, comment.line)
        if identity in index:
            logger.debug("Duplicate prsonar comment %s at %s:%s", comment.comment_id, *identity)
            plan.to_delete[comment.comment_id] = comment
            continue
        index[identity] = comment

    grouped, plan.summary_only = _group_by_identity(findings, commentable_lines)

    for (path, line), group in grouped.items():
        wanted = InlineComment(file=path, line=line, findings=tuple(group), server_base_url=server_base_url)
        match = index.pop((path, line), None)
        if match is None:
            plan.to_create.append(wanted)
        elif same_body(match.content, wanted.body):
            plan.kept[match.comment_id] = wanted
        else:
            plan.to_update[match.comment_id] = wanted

    for comment in index.values():
        plan.to_delete[comment.comment_id] = comment

    logger.debug(
        "Reconciled %d finding(s): %d create, %d update, %d delete, %d kept, %d summary-only",
        len(findings),
        len(plan.to_create),
        len(plan.to_update),
        len(plan.to_delete),
        len(plan.kept),
        len(plan.summary_only),
    )
    return plan
