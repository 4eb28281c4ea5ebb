"""
tarlift exception hierarchy.

All domain-specific exceptions inherit from TarliftError, making it easy
to catch any pipeline error with a single base class while still allowing
fine-grained handling when needed.

Hierarchy::

    TarliftError
    ├── ConfigurationError        - config loading, parsing, validation
    ├── ArchiveFormatError        - malformed or truncated tar stream (run-fatal)
    │   └── ArchiveStateError     - next entry requested before content was consumed
    ├── PathError                 - invalid or escaping intra-archive path
    ├── UnsupportedEntryError     - symlink/hardlink/device entry in strict mode
    ├── AuthenticationError       - signing or credential failure (run-fatal)
    ├── StoreError                - remote store rejected a request
    │   ├── TransientNetworkError - connection/timeout/5xx, eligible for retry
    │   └── ConflictError         - object already exists where it must not
    ├── RetryExhaustedError       - transient failures outlasted the retry policy
    └── PartialRunError           - run finished with failed entries
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tarlift.core.scheduler import RunResult


class TarliftError(Exception):
    """Base exception for all tarlift errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        """Short error kind used in user-facing failure listings."""
        return type(self).__name__


# --- Configuration -----------------------------------------------------------


class ConfigurationError(TarliftError):
    """Raised when configuration loading, parsing, or validation fails."""


# --- Archive -----------------------------------------------------------------


class ArchiveFormatError(TarliftError):
    """Raised when the tar stream is malformed or truncated.

    Aborts the whole run: a corrupt stream cannot be resynchronised.
    """

    def __init__(self, message: str, *, offset: int | None = None) -> None:
        super().__init__(message, details={"offset": offset})
        self.offset = offset


class ArchiveStateError(ArchiveFormatError):
    """Raised when the reader is advanced while file content is still unread."""


# --- Entries -----------------------------------------------------------------


class PathError(TarliftError):
    """Raised when an intra-archive path is absolute, escapes its root, or is empty."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"Invalid archive path '{path}': {message}", details={"path": path})
        self.path = path


class UnsupportedEntryError(TarliftError):
    """Raised in strict mode for entries that are neither files nor directories."""

    def __init__(self, path: str, typeflag: str) -> None:
        super().__init__(
            f"Unsupported tar entry '{path}' (type {typeflag!r})",
            details={"path": path, "typeflag": typeflag},
        )
        self.path = path
        self.typeflag = typeflag


# --- Authentication ----------------------------------------------------------


class AuthenticationError(TarliftError):
    """Raised when a request cannot be signed or the store rejects the credentials.

    Never retried: a missing key or unreachable agent does not fix itself.
    """


# --- Remote store ------------------------------------------------------------


class StoreError(TarliftError):
    """Raised when the remote store answers with an error status."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, details={"status": status, "code": code, "path": path})
        self.status = status
        self.code = code
        self.path = path


class TransientNetworkError(StoreError):
    """Raised for connection resets, timeouts and 5xx-class responses."""


class ConflictError(StoreError):
    """Raised when an object already exists and the conflict policy forbids replacing it."""


# --- Retry -------------------------------------------------------------------


class RetryExhaustedError(TarliftError):
    """Raised when all retry attempts are exhausted.

    The last transient error is kept on ``last_error`` and chained as
    ``__cause__``.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception) -> None:
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}",
            details={"operation": operation, "attempts": attempts},
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        self.__cause__ = last_error


# --- Aggregate ---------------------------------------------------------------


class PartialRunError(TarliftError):
    """Raised by ``RunResult.raise_for_status`` when some entries failed."""

    def __init__(self, result: RunResult) -> None:
        failed = len(result.failed)
        total = failed + len(result.succeeded)
        super().__init__(f"{failed} of {total} entries failed", details={"failed": failed, "total": total})
        self.result = result


def describe(error: BaseException) -> dict[str, Any]:
    """Flatten an error into a dict suitable for logging."""
    info: dict[str, Any] = {"kind": type(error).__name__, "message": str(error)}
    if isinstance(error, TarliftError):
        info.update({k: v for k, v in error.details.items() if v is not None})
    return info
