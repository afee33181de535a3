"""Tagged success/failure values returned by FragmentService."""
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from apps.fragments.errors import FragmentError

T = TypeVar('T')


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: FragmentError

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.error


Result = Union[Ok[T], Err]
