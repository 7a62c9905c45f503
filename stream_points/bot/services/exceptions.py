"""Service layer exceptions.

Persistence failures keep their own hierarchy in ``stream_points.web.crud``;
these describe outcomes of the points and clip rules themselves.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__


class ValidationError(ServiceError):
    """Input rejected before any mutation took place."""

    def __init__(self, field: str, message: str):
        super().__init__(message, code="VALIDATION_ERROR")
        self.field = field


class ResourceNotFoundError(ServiceError):
    """Requested resource does not exist or is no longer in a usable state."""

    def __init__(self, resource_type: str, identifier: str, message: str | None = None):
        super().__init__(
            message or f"{resource_type} not found: {identifier}",
            code="NOT_FOUND",
        )
        self.resource_type = resource_type
        self.identifier = identifier


class UserNotFoundError(ResourceNotFoundError):
    """Award target has no user record."""

    def __init__(self, username: str):
        super().__init__("User", username)


class ClipNotFoundError(ResourceNotFoundError):
    """Clip id unknown or already reviewed."""

    def __init__(self, clip_id: int | str):
        super().__init__(
            "Clip",
            str(clip_id),
            message=f"Clip {clip_id} not found or already processed",
        )


class OracleUnavailableError(ServiceError):
    """An external status source (live status, viewer list, clip owner) failed."""

    def __init__(self, oracle: str, message: str):
        super().__init__(f"{oracle} unavailable: {message}", code="ORACLE_UNAVAILABLE")
        self.oracle = oracle
