"""Exception taxonomy for finsync.

Configuration errors fail fast and are never retried. External errors are
recorded per unit of work (one page, one invoice) and recovered by a
deliberate re-trigger.
"""

from __future__ import annotations


class FinsyncError(Exception):
    """Base class for all finsync errors."""


class ConfigurationError(FinsyncError):
    """Required credentials or settings are missing or malformed."""


class ExternalAPIError(FinsyncError):
    """Qonto or ClickUp answered with a non-2xx status or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DocumentDownloadError(ExternalAPIError):
    """The signed attachment URL could not be downloaded."""


class ModelAPIError(FinsyncError):
    """The document-understanding model endpoint failed."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ModelRateLimitError(ModelAPIError):
    """The model endpoint answered HTTP 429."""


class ModelTimeoutError(ModelAPIError):
    """The model call exceeded its timeout."""


class IllegalStatusTransition(FinsyncError):
    """A supplier invoice status change is not allowed by the transition table."""

    def __init__(self, current: str, target: str, manual: bool):
        origin = "manual" if manual else "automatic"
        super().__init__(f"Illegal {origin} status transition: {current} -> {target}")
        self.current = current
        self.target = target
        self.manual = manual


class AssignmentError(FinsyncError):
    """A manual project assignment payload cannot be applied."""
