"""
Fixed-capacity lookback ring.

Values are addressed by how many insertions ago they were made rather than
by position, so the ring answers "what arrived ``i`` packets before the
latest one" in constant time. Inserting never grows the ring; the value
``capacity`` insertions back is overwritten.
"""

from collections.abc import (
    Iterator,
)
from typing import (
    Generic,
    TypeVar,
)

T = TypeVar("T")


class Ring(Generic[T]):
    _slots: list[T | None]
    _cursor: int

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"Ring capacity must be positive, got {capacity}")
        self._slots = [None] * capacity
        self._cursor = 0

    @property
    def capacity(self) -> int:
        return len(self._slots)

    @property
    def cursor(self) -> int:
        return self._cursor

    def insert(self, value: T) -> "Ring[T]":
        """
        Store ``value`` as the latest entry.

        The ring is mutated in place and returned, so every holder of a
        reference observes the insertion.
        """
        self._cursor = (self._cursor + 1) % len(self._slots)
        self._slots[self._cursor] = value
        return self

    def get_previous(self, i: int) -> T | None:
        """
        Return the value inserted ``i`` insertions before the latest one.

        :param i: steps back from the latest insertion, 0 being the latest
        :return: the value, or None when it is out of reach or was never set
        """
        length = len(self._slots)
        if i < 0 or i >= length:
            return None
        cursor = self._cursor
        wrapped = cursor - i if i <= cursor else length + (cursor - i)
        return self._slots[wrapped]

    def get_latest(self) -> T | None:
        return self.get_previous(0)

    def __iter__(self) -> Iterator[T]:
        """Iterate from the latest value back to the oldest still held."""
        for i in range(len(self._slots)):
            value = self.get_previous(i)
            if value is not None:
                yield value

    def __repr__(self) -> str:
        return f"<Ring capacity={self.capacity} cursor={self._cursor}>"
