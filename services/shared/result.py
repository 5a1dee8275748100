"""
Tagged results for the handler boundary.

Service code raises FundingError subclasses. Handlers call the service through
`attempt()` and get back either Ok(value) or Err(kind, detail), so a failure
flag can't be forgotten on the way to the HTTP response.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

from shared.errors import ErrorKind, FundingError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    detail: str
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_error(cls, exc: FundingError) -> "Err":
        return cls(kind=exc.kind, detail=str(exc), retryable=exc.retryable)


Result = Union[Ok[T], Err]


def attempt(fn: Callable[..., T], *args: Any, **kwargs: Any) -> Result:
    """Run `fn`, folding FundingError into Err. Anything else propagates."""
    try:
        return Ok(fn(*args, **kwargs))
    except FundingError as exc:
        return Err.from_error(exc)
