from __future__ import annotations

from typing import Any


class IssuanceError(Exception):
    """
    Base class for every failure surfaced by the issuance pipeline.

    `message` is safe to show to the caller; `context` carries diagnostic data
    for logs and audit records and must never contain credentials.
    """

    status_code = 500

    def __init__(self, message: str, *, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    @property
    def user_message(self) -> str:
        return self.message

    @property
    def retryable(self) -> bool:
        return False


class ValidationError(IssuanceError):
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None, context: dict[str, Any] | None = None):
        super().__init__(message, context=context)
        self.field = field

    @property
    def user_message(self) -> str:
        if self.field:
            return f"validation failed: {self.field}: {self.message}"
        return f"validation failed: {self.message}"


class NotFoundError(IssuanceError):
    status_code = 404

    def __init__(self, resource: str, identifier: Any = None, *, context: dict[str, Any] | None = None):
        message = f"{resource} not found" if identifier is None else f"{resource} {identifier} not found"
        super().__init__(message, context=context)
        self.resource = resource


class ConflictError(IssuanceError):
    status_code = 409


class ExternalServiceError(IssuanceError):
    """PAC unreachable, PAC rejection, or an unusable stamping response."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        service: str = "PAC",
        retryable: bool = False,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        self.service = service
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        return self._retryable

    @property
    def user_message(self) -> str:
        return f"stamping failed: {self.message}"


class DatabaseError(IssuanceError):
    status_code = 500

    @property
    def user_message(self) -> str:
        return "storage failure, please try again"
