"""
Shared mutable state for long-lived event handlers.

Handlers bound once to the map surface read current values through a
Cell instead of capturing them at bind time.
"""

from typing import Generic, TypeVar

T = TypeVar('T')


class Cell(Generic[T]):
    """Single-writer holder of the latest value."""

    def __init__(self, value: T):
        self._value = value

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value

    def __repr__(self) -> str:
        return f"Cell({self._value!r})"
