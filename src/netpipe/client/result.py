"""Value-or-error container delivered to typed pipeline callbacks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a typed operation: a value on success, an exception otherwise.

    Example::

        def on_done(result: Result[User]) -> None:
            if result.ok:
                print(result.value)
            else:
                log(result.error)
    """

    value: Optional[T] = None
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, value: Optional[T]) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> Result[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        """``True`` when the operation succeeded (the value may still be ``None``)."""
        return self.error is None

    def unwrap(self) -> Optional[T]:
        """Return the value, or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value
