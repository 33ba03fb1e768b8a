"""Job service error taxonomy.

Every error carries the HTTP status it maps to, so route handlers and the
global exception handler in ``app.main`` never need to inspect the type.
Provider errors additionally say whether a retry could help.
"""

from __future__ import annotations


class JobServiceError(Exception):
    """Base class for all job lifecycle errors."""

    status_code: int = 500

    def __init__(self, message: str, *, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(JobServiceError):
    """Malformed or out-of-range input. Never retried."""

    status_code = 400


class UnknownProviderError(JobServiceError):
    """Provider id or model code that nothing is registered for."""

    status_code = 400


class UnauthorizedError(JobServiceError):
    status_code = 401


class NotFoundError(JobServiceError):
    status_code = 404


class ConfigurationError(JobServiceError):
    """Missing credentials or environment. An operator problem, not a caller one."""

    status_code = 500


class IntegrityError(JobServiceError):
    """A job store write failed after the outcome was already known."""

    status_code = 500


class StorageError(JobServiceError):
    status_code = 500


class ProviderError(JobServiceError):
    """Base for failures talking to an external generation provider."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        provider_status: int | None = None,
        retriable: bool = False,
        details: str | None = None,
    ):
        self.provider = provider
        self.provider_status = provider_status
        self.retriable = retriable
        super().__init__(message, details=details)


class ProviderTransportError(ProviderError):
    """Network error, timeout, 5xx or malformed response from a provider."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("retriable", True)
        super().__init__(message, **kwargs)


class ProviderRejectedError(ProviderError):
    """Provider answered with a 4xx. Not retried."""

    def __init__(self, message: str, **kwargs):
        kwargs["retriable"] = False
        super().__init__(message, **kwargs)


def truncate_message(text: str | None, limit: int = 500) -> str:
    """Bound an error string for storage and responses; never returns empty."""
    text = (text or "").strip() or "Unknown error"
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 1)] + "..."
