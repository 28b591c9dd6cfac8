"""
Tagged result types for calls that can fail in expected ways.

Callers pattern-match on ``Ok`` / ``Err`` instead of probing optional
fields of a loosely shaped response:

    match await client.call_result("/workers"):
        case Ok(value=data):
            ...
        case Err(error=exc):
            ...
"""
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E", bound=BaseException)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.error


Result = Union[Ok[T], Err[E]]
