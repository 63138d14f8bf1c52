"""First-in, first-out buffer for pending commands and readings."""

from __future__ import annotations

from collections import deque
from typing import Deque, Generic, Iterator, TypeVar

T = TypeVar("T")


class Fifo(Generic[T]):
    """Items are taken out in the order they were put in.

    The buffer does no locking of its own; callers that share it between
    threads hold their own lock around it.
    """

    def __init__(self) -> None:
        self._items: Deque[T] = deque()

    def put(self, item: T) -> None:
        """Append an item at the tail."""
        self._items.append(item)

    def get(self) -> T:
        """Remove and return the oldest item; IndexError when empty."""
        try:
            return self._items.popleft()
        except IndexError:
            raise IndexError("get from an empty Fifo") from None

    def is_empty(self) -> bool:
        return not self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        """Iterate oldest first without removing anything."""
        return iter(tuple(self._items))