"""Service error taxonomy.

Every failure the core surfaces is a ``ServiceError`` tagged with one
``ErrorKind``. The boundary layer switches on the kind, never on subclasses.
"""

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    # Caller-correctable validation
    VALIDATION = "VALIDATION_ERROR"
    UNSUPPORTED_TYPE = "UNSUPPORTED_FILE_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_JURISDICTION_REFERENCE = "INVALID_JURISDICTION_REFERENCE"
    CONFLICT = "CONFLICT"

    # Authorization (cross-owner access is reported as NOT_FOUND)
    NOT_FOUND = "NOT_FOUND"

    # Trust
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_REUSED = "TOKEN_REUSED"

    # Infrastructure
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    DATA_INTEGRITY = "DATA_INTEGRITY"


STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.INVALID_JURISDICTION_REFERENCE: 400,
    ErrorKind.AUTHENTICATION_FAILED: 401,
    ErrorKind.TOKEN_INVALID: 401,
    ErrorKind.TOKEN_EXPIRED: 401,
    ErrorKind.TOKEN_REUSED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.FILE_TOO_LARGE: 413,
    ErrorKind.UNSUPPORTED_TYPE: 415,
    ErrorKind.DATA_INTEGRITY: 500,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
}

AUTHENTICATION_KINDS = frozenset(
    {
        ErrorKind.AUTHENTICATION_FAILED,
        ErrorKind.TOKEN_INVALID,
        ErrorKind.TOKEN_EXPIRED,
        ErrorKind.TOKEN_REUSED,
    }
)


class ServiceError(Exception):
    """A classified failure raised by the core services."""

    def __init__(self, kind: ErrorKind, message: str, **context: Any) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context = context

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.STORAGE_UNAVAILABLE

    def to_problem(self, instance: str) -> dict[str, Any]:
        """Render as an RFC 7807 problem document."""
        slug = self.kind.value.lower().replace("_", "-")
        problem: dict[str, Any] = {
            "type": f"https://lexvault.io/problems/{slug}",
            "title": self.kind.value.replace("_", " ").title(),
            "status": self.status_code,
            "detail": self.message,
            "instance": instance,
            "code": self.kind.value,
        }
        if self.context:
            problem["context"] = self.context
        return problem

    def __repr__(self) -> str:
        return f"ServiceError({self.kind.name}, {self.message!r})"


def not_found(resource: str = "Resource") -> ServiceError:
    return ServiceError(ErrorKind.NOT_FOUND, f"{resource} not found")


def storage_unavailable(message: str = "Storage is temporarily unavailable") -> ServiceError:
    return ServiceError(ErrorKind.STORAGE_UNAVAILABLE, message)
