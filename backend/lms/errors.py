"""Application error taxonomy.

Services raise these errors; the handlers registered in `lms.main` turn
them into the JSON response envelope with the matching status code.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    PARTIAL_FAILURE = "partial_failure"
    INTERNAL = "internal"

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self]


STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.PARTIAL_FAILURE: 207,
    ErrorKind.INTERNAL: 500,
}


class AppError(Exception):
    """Base class for errors that map to a client-facing response."""
    kind = ErrorKind.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return self.kind.status_code


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(AppError):
    """Uniqueness violation or a dependency that blocks a delete."""
    kind = ErrorKind.CONFLICT


class ForbiddenError(AppError):
    kind = ErrorKind.FORBIDDEN


class BadRequestError(AppError):
    kind = ErrorKind.BAD_REQUEST


class UnauthorizedError(AppError):
    kind = ErrorKind.UNAUTHORIZED


class BulkOperationError(AppError):
    """A batch finished with per-item failures; reported as 207."""
    kind = ErrorKind.PARTIAL_FAILURE

    def __init__(self, message: str, results: Optional[Any] = None):
        super().__init__(message)
        self.results = results
