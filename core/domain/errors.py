"""
Error kinds surfaced by the core.

Every expected failure is a CareError carrying its ErrorKind. Services never
raise these to callers; they return them inside a Result so a dashboard can
render whatever sub-queries succeeded.
"""

from enum import Enum


class ErrorKind(str, Enum):
    NOT_AUTHENTICATED = "NotAuthenticated"
    NOT_APPROVED = "NotApproved"
    CONFLICT = "Conflict"
    NOT_FOUND = "NotFound"
    VALIDATION_ERROR = "ValidationError"
    STORE_UNAVAILABLE = "StoreUnavailable"


class CareError(Exception):
    """Base class for expected, caller-visible failures."""

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "message": self.message}


class NotAuthenticatedError(CareError):
    kind = ErrorKind.NOT_AUTHENTICATED


class NotApprovedError(CareError):
    """No approved relationship. Distinct from "no data"."""

    kind = ErrorKind.NOT_APPROVED


class ConflictError(CareError):
    kind = ErrorKind.CONFLICT


class NotFoundError(CareError):
    kind = ErrorKind.NOT_FOUND


class ValidationError(CareError):
    kind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems = problems or [message]


class StoreUnavailableError(CareError):
    """Transient I/O failure. Retried by the UI layer, never inside the core."""

    kind = ErrorKind.STORE_UNAVAILABLE
