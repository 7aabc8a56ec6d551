"""Domain value types."""

from .result import Failure, Result, Success, failure, success

__all__ = [
    "Result",
    "Success",
    "Failure",
    "success",
    "failure",
]
