"""Comment bodies posted to GitHub.

Every body starts with MARKER. The marker is how later runs tell prsonar's own
comments apart from comments written by people or other bots, so it must stay
the very first thing in the body.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable
from urllib.parse import quote

if TYPE_CHECKING:
    from prsonar_core.models import Finding

MARKER = "<!-- prsonar -->"


def severity_tag(severity) -> str:
    return f"**[{severity.value}]**"


def rule_link(rule: str, server_base_url: str = "") -> str:
    """The rule key, linked to its description on the analysis server when one is known."""
    base_url = (server_base_url or "").rstrip("/")
    if not base_url or not rule:
        return f"`{rule}`"
    return f"[`{rule}`]({base_url}/coding_rules?open={quote(rule, safe='')})"


def render_finding(finding: Finding, server_base_url: str = "") -> str:
    """One finding as a markdown block: severity tag, rule, then the message."""
    return f"{severity_tag(finding.severity)} {rule_link(finding.rule, server_base_url)}\n\n{finding.message.strip()}"


def render_inline_comment(findings: Iterable[Finding], server_base_url: str = "") -> str:
    """Render the body of the single inline comment for one file/line identity.

    Several findings on the same line are merged into one body in the order
    they were reported.
    """
    blocks = [render_finding(f, server_base_url) for f in findings]
    return MARKER + "\n" + "\n\n---\n\n".join(blocks)


def same_body(a: str, b: str) -> bool:
    """Compare two bodies the way GitHub round-trips them (CRLF, trailing blanks)."""
    return _normalize(a) == _normalize(b)


def _normalize(body: str) -> str:
    return "\n".join(line.rstrip() for line in body.replace("\r\n", "\n").strip().split("\n"))
