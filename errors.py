from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class FailureReason(str, Enum):
    not_found = "not_found"
    conflict = "conflict"
    storage = "storage"
    invalid = "invalid"


class LedgerError(Exception):
    reason = FailureReason.invalid


class NotFound(LedgerError):
    reason = FailureReason.not_found


class ConflictError(LedgerError):
    reason = FailureReason.conflict


class StorageError(LedgerError):
    reason = FailureReason.storage


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a service write.

    Services never let ``LedgerError`` escape to callers; they hand back a
    ``Result`` so the negative branch has to be looked at explicitly.
    """

    success: bool
    value: Optional[T] = None
    reason: Optional[FailureReason] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, reason: FailureReason, error: str) -> "Result[T]":
        return cls(success=False, reason=reason, error=error)

    @classmethod
    def from_error(cls, exc: LedgerError) -> "Result[T]":
        return cls.fail(exc.reason, str(exc))

    def unwrap(self) -> T:
        if not self.success:
            exc_type = _ERRORS_BY_REASON.get(self.reason, LedgerError)
            raise exc_type(self.error or "operation failed")
        return self.value  # type: ignore[return-value]


_ERRORS_BY_REASON: dict[Optional[FailureReason], type[LedgerError]] = {
    FailureReason.not_found: NotFound,
    FailureReason.conflict: ConflictError,
    FailureReason.storage: StorageError,
}
