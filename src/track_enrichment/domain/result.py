"""Result values for per-job outcomes.

An analysis job reports its outcome as a Result instead of raising, so a
failing file is counted and logged without unwinding the batch it belongs to.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar('T')  # Success type
E = TypeVar('E', bound=Exception)  # Error type


class Result(ABC, Generic[T, E]):
    """Either a successful value or the error that prevented it."""

    @abstractmethod
    def is_success(self) -> bool:
        ...

    def is_failure(self) -> bool:
        return not self.is_success()

    @abstractmethod
    def value(self) -> T:
        """Get the success value.

        Raises:
            ValueError: If the result is a failure.
        """
        ...

    @abstractmethod
    def error(self) -> E:
        """Get the error.

        Raises:
            ValueError: If the result is a success.
        """
        ...


@dataclass(frozen=True, slots=True)
class Success(Result[T, E]):
    _value: T

    def is_success(self) -> bool:
        return True

    def value(self) -> T:
        return self._value

    def error(self) -> E:
        raise ValueError("Cannot get error from Success result")


@dataclass(frozen=True, slots=True)
class Failure(Result[T, E]):
    _error: E

    def is_success(self) -> bool:
        return False

    def value(self) -> T:
        raise ValueError(f"Cannot get value from Failure result: {self._error}")

    def error(self) -> E:
        return self._error


def success(value: T) -> Result[T, Any]:
    return Success(value)


def failure(error: E) -> Result[Any, E]:
    return Failure(error)
