"""Explicit result type returned by every cache operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class CacheError(Exception):
    """Raised (or carried) when the cache backend fails. Never used to signal a miss."""

    def __init__(self, operation: str, key: str, message: str) -> None:
        super().__init__(f"cache {operation} failed for key={key!r}: {message}")
        self.operation = operation
        self.key = key


@dataclass(frozen=True)
class CacheResult(Generic[T]):
    """
    Outcome of a cache call.

    Backends never raise for I/O problems; they return a failed result and the
    caller decides whether to fall back to the store, fail closed, or surface
    the error (``unwrap``).
    """

    value: T | None = None
    error: CacheError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> CacheResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: CacheError) -> CacheResult[T]:
        return cls(error=error)

    def unwrap(self) -> T | None:
        if self.error is not None:
            raise self.error
        return self.value
