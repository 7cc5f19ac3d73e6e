"""
Result type for operations that can be rejected.

Registry mutations return ``Success`` with the stored value or ``Failure``
with the error that blocked them, so callers decide whether a rejected
rule is fatal instead of wrapping every call in ``try``.

Example:
    >>> result = store.add_rule(rule)
    >>> if result.is_failure():
    ...     print(f"Rejected: {result.error}")
    ... else:
    ...     print(f"Stored {result.unwrap().id}")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Never

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass(frozen=True, slots=True)
class Success[T]:
    """
    Successful outcome carrying a value.

    Attributes:
        value: The produced value.
    """

    value: T

    def is_success(self) -> bool:
        """Return True."""
        return True

    def is_failure(self) -> bool:
        """Return False."""
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, _default: T) -> T:
        """Return the contained value, ignoring the default."""
        return self.value

    def map[U](self, func: Callable[[T], U]) -> Success[U]:
        """
        Transform the contained value.

        Args:
            func: Function applied to the value.

        Returns:
            New Success wrapping the transformed value.
        """
        return Success(func(self.value))


@dataclass(frozen=True, slots=True)
class Failure[E]:
    """
    Failed outcome carrying the error that caused it.

    Attributes:
        error: The error value, usually an exception instance.
    """

    error: E

    def is_success(self) -> bool:
        """Return False."""
        return False

    def is_failure(self) -> bool:
        """Return True."""
        return True

    def unwrap(self) -> Never:
        """
        Raise the contained error.

        Exceptions are re-raised as-is; any other error value is wrapped in
        a ValueError.

        Raises:
            Exception: The contained error, or ValueError wrapping it.
        """
        if isinstance(self.error, Exception):
            raise self.error
        raise ValueError(f"Cannot unwrap Failure: {self.error}")

    def unwrap_or[T](self, default: T) -> T:
        """Return the default since there is no value."""
        return default

    def map[T, U](self, _func: Callable[[T], U]) -> Failure[E]:
        """Return self unchanged."""
        return self


type Result[T, E] = Success[T] | Failure[E]


def success[T](value: T) -> Success[T]:
    """Wrap a value in a Success."""
    return Success(value)


def failure[E](error: E) -> Failure[E]:
    """Wrap an error in a Failure."""
    return Failure(error)
