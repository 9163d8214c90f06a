"""
Domain errors.

Every business-rule violation is raised as a typed error with a
machine-readable code. The API layer translates them into HTTP
responses using the status_code carried by the error.

DomainError subclasses ValueError so services keep the same
"raise on bad input" contract they always had.
"""

from typing import Any


class DomainError(ValueError):
    """Base class for all business-rule violations."""

    code: str = "DOMAIN_ERROR"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        code: str | None = None,
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.meta = meta or {}

    def to_dict(self) -> dict[str, Any]:
        body = {"code": self.code, "message": self.message}
        if self.meta:
            body["meta"] = self.meta
        return body


class NotFound(DomainError):
    code = "NOT_FOUND"
    status_code = 404


class Forbidden(DomainError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidState(DomainError):
    """Operation not legal for the entity's current lifecycle state."""
    code = "INVALID_STATE"
    status_code = 409


class ValidationConflict(DomainError):
    code = "VALIDATION_CONFLICT"
    status_code = 400


class DuplicateRequest(DomainError):
    """
    An idempotency key or request id was already used.

    This is a replay, not a failure: the original result travels
    with the error so the caller can return it unchanged.
    """
    code = "DUPLICATE_REQUEST"
    status_code = 200

    def __init__(self, message: str, original: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.original = original


class Unavailable(DomainError):
    """Transient infrastructure failure that outlived its retries."""
    code = "UNAVAILABLE"
    status_code = 503
