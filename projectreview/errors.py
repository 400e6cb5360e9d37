"""Error taxonomy for projectreview.

Background sync failures are caught and logged by the orchestrator; only
foreground submissions surface to callers (as ``SubmissionError``).
"""

from __future__ import annotations


class ProjectReviewError(Exception):
    """Base class for errors raised by projectreview."""


class RemoteUnavailable(ProjectReviewError):
    """The hosted store could not be reached or rejected the request."""

    def __init__(self, message: str, *, status: int | None = None, detail: str | None = None):
        super().__init__(message)
        self.status = status
        self.detail = detail


class StorageQuotaExceeded(ProjectReviewError):
    """A durable mirror write would exceed the configured quota."""

    def __init__(self, name: str, *, needed: int, quota: int):
        super().__init__(f"mirror quota exceeded writing {name!r} ({needed} > {quota} bytes)")
        self.name = name
        self.needed = needed
        self.quota = quota


class MalformedRemoteDocument(ProjectReviewError, ValueError):
    """A remote payload did not have the expected shape."""


class SubmissionError(ProjectReviewError):
    """A foreground submission could not be written to the hosted store."""


class UnknownProjectError(ProjectReviewError, KeyError):
    """No live project exists under the given name."""

    def __str__(self) -> str:
        return f"unknown project: {self.args[0]!r}" if self.args else "unknown project"
