"""
Tool: Error Taxonomy
Purpose: Exceptions shared by the scheduler, the provider and the syncers

Recurrence and conflict outcomes are expected business results and are
returned as values (ExpansionResult, ConflictResult). The classes below are
raised only where a caller cannot continue: transport failures in the
provider, or validation failures in the scheduler before they are turned into
result dicts.

Usage:
    from calsync.errors import RateLimitError, AuthExpiredError

    try:
        await provider.create_event(body)
    except RateLimitError:
        ...
"""

from typing import Any


class CalsyncError(Exception):
    """Base class for all calsync errors."""


class ValidationError(CalsyncError):
    """A schedule is missing required fields or breaks a model invariant."""

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []


class ConflictError(CalsyncError):
    """A proposed window collides with existing schedules."""

    def __init__(self, message: str, conflicts: list[Any] | None = None):
        super().__init__(message)
        self.conflicts = conflicts or []


class IntegrityWarning(CalsyncError):
    """
    A stored recurrence rule cannot be expanded.

    Only the affected series is skipped; it is reported inside the
    expansion result rather than raised.
    """

    def __init__(self, message: str, schedule_id: str | None = None):
        super().__init__(message)
        self.schedule_id = schedule_id


class ProviderError(CalsyncError):
    """The external calendar rejected a request."""

    retryable = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthExpiredError(ProviderError):
    """No valid credential for the provider. Recoverable by re-authentication."""


class RateLimitError(ProviderError):
    """HTTP 403/429 from the provider."""

    retryable = True


class RemoteUnavailableError(ProviderError):
    """HTTP 5xx or a transport failure."""

    retryable = True


__all__ = [
    "AuthExpiredError",
    "CalsyncError",
    "ConflictError",
    "IntegrityWarning",
    "ProviderError",
    "RateLimitError",
    "RemoteUnavailableError",
    "ValidationError",
]
