"""
KernelResult -- typed success/failure envelope returned by the facade.

Responsibility:
    Carries either a value or a failure (kind, code, stable message,
    structured details).  Expected business-rule violations never escape the
    facade as exceptions; they arrive here.

Architecture position:
    Kernel > Domain -- pure, zero I/O.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from certify_kernel.exceptions import (
    CertifyKernelError,
    ERROR_MESSAGES,
    ErrorKind,
    display_message,
)

T = TypeVar("T")


@dataclass(frozen=True)
class KernelFailure:
    """Why an operation was refused."""

    kind: ErrorKind
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False

    @classmethod
    def from_error(cls, error: CertifyKernelError) -> "KernelFailure":
        return cls(
            kind=error.kind,
            code=error.code,
            message=display_message(error),
            details=error.details(),
            retryable=error.retryable,
        )

    @classmethod
    def conflict(cls, detail: str) -> "KernelFailure":
        return cls(
            kind=ErrorKind.CONFLICT,
            code="CONCURRENT_MODIFICATION",
            message=ERROR_MESSAGES["CONCURRENT_MODIFICATION"],
            details={"detail": detail},
            retryable=True,
        )


@dataclass(frozen=True)
class KernelResult(Generic[T]):
    """
    Result of a kernel operation.

    Attributes:
        value: The produced DTO (if success)
        failure: The refusal (if failed)
        attempts: Transactions attempted (2 when a conflict was retried)
    """

    value: T | None = None
    failure: KernelFailure | None = None
    attempts: int = 1

    @classmethod
    def ok(cls, value: T, attempts: int = 1) -> "KernelResult[T]":
        return cls(value=value, attempts=attempts)

    @classmethod
    def fail(cls, failure: KernelFailure, attempts: int = 1) -> "KernelResult[T]":
        return cls(failure=failure, attempts=attempts)

    @property
    def is_success(self) -> bool:
        return self.failure is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.failure.kind if self.failure else None

    @property
    def code(self) -> str | None:
        return self.failure.code if self.failure else None

    def unwrap(self) -> T:
        """Return the value or raise RuntimeError describing the failure."""
        if self.failure is not None:
            raise RuntimeError(f"{self.failure.code}: {self.failure.message}")
        return self.value
