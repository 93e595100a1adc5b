from dataclasses import dataclass, replace
from typing import Generic, Optional, TypeVar

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an outbound call. A failed result may still carry a value (e.g. the stored failed row)."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    def with_value(self, value: U) -> "Result[U]":
        """Same status and error, different payload."""
        return replace(self, value=value)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
