"""
Operation results for storage-touching services.

Services return an OperationResult instead of logging and carrying on, so
the caller decides whether to surface, retry, or abort.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class FailureCode(str, Enum):
    """Why an operation failed; routers map these to HTTP status codes."""
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID = "invalid"
    CONFLICT = "conflict"
    STORAGE = "storage"


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Success carries a value; failure carries a code and a message."""
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    code: Optional[FailureCode] = None

    @classmethod
    def success(cls, value: T = None) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, code: FailureCode, error: str) -> "OperationResult[T]":
        return cls(ok=False, error=error, code=code)

    def unwrap(self) -> T:
        """Return the value or raise if the operation failed."""
        if not self.ok:
            raise RuntimeError(f"{self.code.value if self.code else 'error'}: {self.error}")
        return self.value
