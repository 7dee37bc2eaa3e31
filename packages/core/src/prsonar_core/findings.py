"""Load analyzer findings from a JSON report.

Two shapes are accepted:

- a SonarQube ``api/issues/search`` export: ``{"issues": [{"component":
  "my-project:src/app.py", "line": 12, "severity": "MAJOR", "rule":
  "python:S1481", "message": "..."}]}``. The ``project:`` prefix of the
  component is stripped and resolved or closed issues are skipped. An issue
  on the project itself (component without a path) has an empty ``file``;
- a plain list of ``{"file", "line", "severity", "rule", "message"}`` objects.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from prsonar_core.errors import FindingsError
from prsonar_core.models import Finding, Severity

logger = logging.getLogger(__name__)

_CLOSED_STATUSES = {"RESOLVED", "CLOSED"}


def _strip_component(component: str) -> str:
    # "project:src/app.py" -> "src/app.py"; a bare "project" component is project-level.
    _, sep, path = component.partition(":")
    return path if sep else ""


def _normalize_path(path: str) -> str:
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def _parse_line(value) -> int | None:
    if value in (None, "", 0):
        return None
    try:
        line = int(value)
    except (TypeError, ValueError):
        raise FindingsError(f"Invalid line number: {value!r}") from None
    return line if line > 0 else None


def _to_finding(raw: dict, sonar_format: bool) -> Finding | None:
    if not isinstance(raw, dict):
        raise FindingsError(f"Expected an object per finding, got {type(raw).__name__}.")

    if sonar_format:
        if str(raw.get("status", "")).upper() in _CLOSED_STATUSES:
            return None
        component = str(raw.get("component") or "")
        if not component:
            raise FindingsError(f"Issue without a component: {raw!r}")
        # An empty path marks a project-level issue.
        path = _normalize_path(_strip_component(component))
    else:
        path = _normalize_path(str(raw.get("file", "")))
        if not path:
            raise FindingsError(f"Finding without a file: {raw!r}")

    try:
        severity = Severity.parse(raw.get("severity", ""))
    except ValueError as e:
        raise FindingsError(str(e)) from e

    return Finding(
        file=path,
        line=_parse_line(raw.get("line")) if path else None,
        severity=severity,
        rule=str(raw.get("rule", "")),
        message=str(raw.get("message", "")).strip(),
    )


def parse_findings(data, min_severity: Severity | None = None) -> list[Finding]:
    """Convert decoded report JSON into findings, in report order."""
    if isinstance(data, dict) and "issues" in data:
        raw_items, sonar_format = data["issues"], True
    elif isinstance(data, list):
        raw_items, sonar_format = data, False
    else:
        raise FindingsError("Report must be a list of findings or an object with an 'issues' list.")

    findings: list[Finding] = []
    skipped = 0
    for raw in raw_items:
        finding = _to_finding(raw, sonar_format)
        if finding is None:
            continue
        if min_severity is not None and finding.severity < min_severity:
            skipped += 1
            continue
        findings.append(finding)

    if skipped:
        logger.info("Ignoring %d finding(s) below %s severity.", skipped, min_severity.value)
    return findings


def load_findings(path: str, min_severity: Severity | None = None) -> list[Finding]:
    p = Path(path)
    if not p.exists():
        raise FindingsError(f"Findings report not found: {path}")
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise FindingsError(f"Findings report {path} is not valid JSON: {e}") from e
    findings = parse_findings(data, min_severity=min_severity)
    logger.debug("Loaded %d finding(s) from %s", len(findings), path)
    return findings
