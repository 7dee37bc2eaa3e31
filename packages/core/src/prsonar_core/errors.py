"""Exception hierarchy shared by the engine, the GitHub client and the CLI.

An empty pull request lookup is deliberately not an exception: it is logged
and yields an empty list.
"""

from __future__ import annotations


class PrsonarError(Exception):
    """Base class for all prsonar errors."""


class ConfigurationError(PrsonarError):
    """Raised once, before any pull request is touched, for invalid settings."""


class FindingsError(PrsonarError):
    """Raised when an analyzer report cannot be read or parsed."""


class ApiCallFailed(PrsonarError):
    """A call to the hosting API failed (network, auth, 4xx/5xx).

    Aborts the remaining steps for the current pull request only.
    """

    def __init__(self, operation: str, message: str, status: int | None = None):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.status = status


class NotFound(ApiCallFailed):
    """The addressed object does not exist (HTTP 404)."""


class CommentNotFound(NotFound):
    """The comment to delete or edit no longer exists."""
