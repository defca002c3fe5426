"""
Tagged results for calls that degrade instead of failing
"""
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class OutcomeKind(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FATAL = "fatal"


@dataclass
class Outcome(Generic[T]):
    """
    Result of an operation that may fall back to a safe default.

    - ok: the requested path succeeded
    - degraded: a fallback value was produced; `reason` says why
    - fatal: no usable value; `error` holds the cause
    """
    kind: OutcomeKind
    value: Optional[T] = None
    reason: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, value: T) -> "Outcome[T]":
        return cls(OutcomeKind.OK, value=value)

    @classmethod
    def degraded(cls, value: T, reason: str) -> "Outcome[T]":
        return cls(OutcomeKind.DEGRADED, value=value, reason=reason)

    @classmethod
    def fatal(cls, error: BaseException) -> "Outcome[T]":
        return cls(OutcomeKind.FATAL, error=error, reason=str(error))

    @property
    def is_ok(self) -> bool:
        return self.kind == OutcomeKind.OK

    @property
    def is_degraded(self) -> bool:
        return self.kind == OutcomeKind.DEGRADED

    @property
    def is_fatal(self) -> bool:
        return self.kind == OutcomeKind.FATAL

    def unwrap(self) -> T:
        """Return the value, raising the stored error for fatal outcomes"""
        if self.kind == OutcomeKind.FATAL:
            raise self.error
        return self.value
