from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


def _index_of(items: deque, item: object) -> int:
    for index, candidate in enumerate(items):
        if candidate is item:
            return index
    return -1


class RearrangeableDeque(Generic[T]):
    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._lock = threading.Lock()

    def offer_first(self, item: T) -> None:
        with self._lock:
            self._items.appendleft(item)

    def offer_last(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def poll(self) -> T | None:
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def remove(self, item: T) -> bool:
        with self._lock:
            index = _index_of(self._items, item)
            if index < 0:
                return False
            del self._items[index]
            return True

    def contains(self, item: T) -> bool:
        with self._lock:
            return _index_of(self._items, item) >= 0

    def size(self) -> int:
        with self._lock:
            return len(self._items)

    def __len__(self) -> int:
        return self.size()

    def is_empty(self) -> bool:
        return self.size() == 0

    def move_to_position(self, item: T, index: int) -> int:
        with self._lock:
            current = _index_of(self._items, item)
            if current < 0:
                raise KeyError("Entry is not in the queue")
            del self._items[current]
            target = max(0, min(len(self._items), int(index)))
            self._items.insert(target, item)
            return target

    def clear(self) -> list[T]:
        with self._lock:
            removed = list(self._items)
            self._items.clear()
            return removed

    def snapshot(self) -> list[T]:
        with self._lock:
            return list(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.snapshot())


class RunningQueue(Generic[T]):
    def __init__(self) -> None:
        self._items: list[T] = []
        self._lock = threading.Lock()

    def offer(self, item: T) -> None:
        with self._lock:
            if not any(candidate is item for candidate in self._items):
                self._items.append(item)

    def remove(self, item: T) -> bool:
        with self._lock:
            for index, candidate in enumerate(self._items):
                if candidate is item:
                    del self._items[index]
                    return True
            return False

    def contains(self, item: T) -> bool:
        with self._lock:
            return any(candidate is item for candidate in self._items)

    def size(self) -> int:
        with self._lock:
            return len(self._items)

    def __len__(self) -> int:
        return self.size()

    def snapshot(self) -> list[T]:
        with self._lock:
            return list(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.snapshot())


class EntryQueue(RearrangeableDeque[T]):
    def offer(self, item: T) -> None:
        self.offer_last(item)
