"""Task queue - the ordered list of runnable processes.

The loop always takes work from the front and puts work back at the
tail, so insertion order *is* scheduling order.  Besides the FIFO pair
(``enqueue`` / ``dequeue``) the queue supports predicate lookups,
which is how the loop finds a process by id for ``fork`` and ``kill``.

Lookups scan front to back and report the first match.  Indexes are
positions in the current queue: after ``remove(index)`` later entries
shift down by one, so callers look an index up again with
``find_index`` instead of caching it.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

T = TypeVar("T")


class TaskQueue(Generic[T]):
    """FIFO container with predicate search and removal by position."""

    def __init__(self) -> None:
        """Create an empty queue."""
        self._items: deque[T] = deque()

    def enqueue(self, item: T) -> None:
        """Append *item* at the tail."""
        self._items.append(item)

    def dequeue(self) -> T | None:
        """Remove and return the front item, or None if the queue is empty."""
        if not self._items:
            return None
        return self._items.popleft()

    def is_empty(self) -> bool:
        """Return True when nothing is queued."""
        return not self._items

    def find_index(self, predicate: Callable[[T], bool]) -> int:
        """Return the position of the first item matching *predicate*.

        Returns:
            The zero-based position, or -1 if nothing matches.

        """
        for index, item in enumerate(self._items):
            if predicate(item):
                return index
        return -1

    def find(self, predicate: Callable[[T], bool]) -> T | None:
        """Return the first item matching *predicate*, or None."""
        index = self.find_index(predicate)
        if index == -1:
            return None
        return self._items[index]

    def remove(self, index: int) -> None:
        """Remove the item at *index*.

        Raises:
            IndexError: If *index* is not a valid position.

        """
        if not 0 <= index < len(self._items):
            msg = f"Queue index out of range: {index}"
            raise IndexError(msg)
        del self._items[index]

    def values(self) -> list[T]:
        """Return a snapshot of the queued items, front first."""
        return list(self._items)

    def clear(self) -> None:
        """Drop every queued item."""
        self._items.clear()

    def __len__(self) -> int:
        """Return the number of queued items."""
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        """Iterate over a snapshot of the queue, front first."""
        return iter(list(self._items))
