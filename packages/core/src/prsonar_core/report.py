"""Severity-bucketed review report and the verdict derived from it."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

from prsonar_core.markdown import MARKER, rule_link, severity_tag
from prsonar_core.models import BuildStatus, Finding, Severity

_DEFAULT_BLOCKING = frozenset({Severity.BLOCKER, Severity.CRITICAL})
# Highest severity first.
_DISPLAY_ORDER = sorted(Severity, key=lambda s: s.rank, reverse=True)


def _location(finding: Finding) -> str:
    if not finding.file:
        return "(project)"
    return finding.file if finding.line is None else f"{finding.file}:{finding.line}"


def parse_severity_set(value) -> frozenset[Severity]:
    """Turn a configured threshold into the set of severities it covers.

    A single name means "this severity and everything above it"; a list names
    the severities explicitly. An empty list means nothing blocks.
    """
    if isinstance(value, str):
        return Severity.at_or_above(Severity.parse(value))
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(Severity.parse(v) for v in value)
    raise ValueError(f"Expected a severity name or a list of severity names, got {value!r}.")


@dataclass(frozen=True)
class VerdictPolicy:
    """Which severities withhold approval and which fail the build.

    The two sets are independent of each other.
    """

    approval_blocking: frozenset[Severity] = _DEFAULT_BLOCKING
    build_failing: frozenset[Severity] = _DEFAULT_BLOCKING

    @classmethod
    def from_config(cls, config: dict) -> VerdictPolicy:
        return cls(
            approval_blocking=parse_severity_set(config.get("approval_blocking_severity", "CRITICAL")),
            build_failing=parse_severity_set(config.get("build_failing_severity", "CRITICAL")),
        )

    def blocks_approval(self, severity: Severity) -> bool:
        return severity in self.approval_blocking

    def fails_build(self, severity: Severity) -> bool:
        return severity in self.build_failing


@dataclass(frozen=True)
class ReviewReport:
    """Immutable result of folding one run's findings.

    Built with ReviewReport.fold(); the verdict queries only read ``counts``,
    so they return the same answer however often they are asked. ``counts`` is
    a read-only view derived from ``findings`` and takes no part in equality
    or hashing.
    """

    findings: tuple[Finding, ...] = ()
    counts: Mapping[Severity, int] = field(
        default_factory=lambda: MappingProxyType({s: 0 for s in Severity}), compare=False
    )
    policy: VerdictPolicy = field(default_factory=VerdictPolicy)

    @classmethod
    def fold(cls, findings: Iterable[Finding], policy: VerdictPolicy | None = None) -> ReviewReport:
        collected = tuple(findings)
        counts = {s: 0 for s in Severity}
        for finding in collected:
            counts[finding.severity] += 1
        return cls(findings=collected, counts=MappingProxyType(counts), policy=policy or VerdictPolicy())

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def can_be_approved(self) -> bool:
        return not any(n and self.policy.blocks_approval(s) for s, n in self.counts.items())

    def calculate_build_status(self) -> BuildStatus:
        if any(n and self.policy.fails_build(s) for s, n in self.counts.items()):
            return BuildStatus.FAILED
        return BuildStatus.SUCCESSFUL

    def top_findings(self, limit: int) -> list[Finding]:
        ordered = sorted(
            self.findings,
            key=lambda f: (-f.severity.rank, f.file, f.line or 0, f.rule, f.message),
        )
        return ordered[:limit]

    def format_as_markdown(self, max_findings: int = 10, server_base_url: str = "") -> str:
        """Render the global summary comment, marker first.

        With a ``server_base_url`` each rule key links to its description on
        the analysis server.
        """
        lines = [MARKER, "## Static analysis summary\n"]

        if self.total == 0:
            lines.append("> No issues found. The changes look good.")
            return "\n".join(lines)

        status = self.calculate_build_status()
        parts = [f"{self.counts[s]} {s.value.lower()}" for s in _DISPLAY_ORDER if self.counts[s]]
        verdict = f"{self.total} issue(s) found: {', '.join(parts)}."
        if status is BuildStatus.FAILED:
            verdict += " The build is marked as failed."
        if not self.can_be_approved:
            verdict += " Approval is withheld."
        lines.append(f"> {verdict}\n")

        lines.append("| Severity | Count |")
        lines.append("|----------|:-----:|")
        for severity in _DISPLAY_ORDER:
            lines.append(f"| {severity.value} | {self.counts[severity] or '-'} |")

        lines.append("\n**Top findings**\n")
        top = self.top_findings(max_findings)
        for finding in top:
            location = _location(finding)
            rule = rule_link(finding.rule, server_base_url)
            lines.append(f"- {severity_tag(finding.severity)} `{location}` {rule}: {finding.message.strip()}")
        remaining = self.total - len(top)
        if remaining > 0:
            lines.append(f"\n_... and {remaining} more._")

        return "\n".join(lines)
