"""Value types passed between the findings loader, the engine and the client.

Everything here is immutable except the outcome records, which the
orchestrator fills in step by step for a single pull request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from prsonar_core.markdown import MARKER


class Severity(Enum):
    INFO = "INFO"
    MINOR = "MINOR"
    MAJOR = "MAJOR"
    CRITICAL = "CRITICAL"
    BLOCKER = "BLOCKER"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: Severity) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: Severity) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    @classmethod
    def parse(cls, name: str) -> Severity:
        """Case-insensitive lookup; raises ValueError for unknown names."""
        try:
            return cls[str(name).strip().upper()]
        except KeyError:
            choices = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown severity {name!r}. Choose one of: {choices}.") from None

    @classmethod
    def at_or_above(cls, threshold: Severity) -> frozenset[Severity]:
        return frozenset(s for s in cls if s.rank >= threshold.rank)


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.MINOR: 1,
    Severity.MAJOR: 2,
    Severity.CRITICAL: 3,
    Severity.BLOCKER: 4,
}


class Owner(Enum):
    SYSTEM = "system"
    EXTERNAL = "external"

    @classmethod
    def of(cls, content: str | None) -> Owner:
        """Derive ownership from the content marker.

        Called once by the hosting client when a comment is read; the engine
        only ever looks at the resulting enum.
        """
        if content and content.startswith(MARKER):
            return cls.SYSTEM
        return cls.EXTERNAL


class BuildStatus(Enum):
    # Values are the GitHub commit status states.
    IN_PROGRESS = "pending"
    SUCCESSFUL = "success"
    FAILED = "failure"


@dataclass(frozen=True)
class Finding:
    """A single static-analysis issue as reported by the external analyzer."""

    # "" for an issue on the project as a whole.
    file: str
    line: int | None
    severity: Severity
    rule: str
    message: str


@dataclass(frozen=True)
class PostedComment:
    """A comment already present on the pull request.

    ``file`` and ``line`` are only set for inline comments. ``line`` may be
    None for an inline comment whose line is no longer part of the diff.
    """

    comment_id: int
    is_inline: bool
    content: str
    file: str | None = None
    line: int | None = None
    owner: Owner = Owner.EXTERNAL

    @property
    def identity(self) -> tuple[str | None, int | None]:
        return (self.file, self.line)


@dataclass(frozen=True)
class PullRequest:
    number: int
    src_branch: str
    head_sha: str
    title: str = ""
    # The PyGithub object, only meaningful to the client that produced it.
    handle: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class AnalysisContext:
    """What an analyzer run hands to the orchestrator."""

    findings: tuple[Finding, ...]
    project_key: str = ""
    server_base_url: str = ""


@dataclass
class PullRequestOutcome:
    pr_number: int
    created: int = 0
    updated: int = 0
    deleted: int = 0
    build_status: BuildStatus | None = None
    approved: bool | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class RunOutcome:
    pull_requests: list[PullRequestOutcome] = field(default_factory=list)

    @property
    def failed(self) -> list[PullRequestOutcome]:
        return [o for o in self.pull_requests if not o.succeeded]

    @property
    def succeeded(self) -> bool:
        return not self.failed
