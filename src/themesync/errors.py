"""Error kinds and the result type shared by every pipeline component.

Expected failures (bad repository URL, auth failure, missing manifest...)
travel as ``Result`` values carrying a ``PullerError``. Exceptions are kept
for programming errors and unrecoverable conditions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(StrEnum):
    """Machine-readable failure categories."""

    INVALID_REFERENCE = "invalid_reference"
    UNCONFIGURED = "unconfigured"
    AUTHENTICATION_FAILED = "authentication_failed"
    RATE_LIMITED = "rate_limited"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    TRANSPORT_ERROR = "transport_error"
    UNEXPECTED_STATUS = "unexpected_status"
    SNAPSHOT_FAILED = "snapshot_failed"
    EXTRACT_FAILED = "extract_failed"
    PATH_NOT_FOUND = "path_not_found"
    NOT_A_VALID_ARTIFACT = "not_a_valid_artifact"
    COPY_FAILED = "copy_failed"
    RESTORE_FAILED = "restore_failed"
    DELETE_FAILED = "delete_failed"
    MISSING_SIGNATURE = "missing_signature"
    INVALID_SIGNATURE = "invalid_signature"
    BAD_PAYLOAD = "bad_payload"
    UPDATE_IN_PROGRESS = "update_in_progress"


@dataclass(frozen=True)
class PullerError:
    """A failure with a user-facing message and optional upstream detail."""

    kind: ErrorKind
    message: str
    detail: str = ""
    status: int | None = None

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "detail": self.detail,
            "status": self.status,
        }


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a ``PullerError``."""

    value: T | None = None
    error: PullerError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        detail: str = "",
        status: int | None = None,
    ) -> Result[T]:
        return cls(error=PullerError(kind=kind, message=message, detail=detail, status=status))

    @classmethod
    def from_error(cls, error: PullerError) -> Result[T]:
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value, raising ``RuntimeError`` on a failed result."""
        if self.error is not None:
            raise RuntimeError(f"{self.error.kind}: {self.error.message}")
        return self.value  # type: ignore[return-value]
