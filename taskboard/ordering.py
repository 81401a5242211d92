"""Index-ordered collections of uniquely keyed items.

Columns inside a board and tasks inside a column are both plain lists of
objects carrying an ``id``. ``OrderedCollection`` wraps such a list in place
and keeps two invariants: ids stay unique, and items that an operation does
not touch keep their relative order.
"""
from __future__ import annotations

from typing import Generic, Iterator, List, Optional, Protocol, TypeVar

from .errors import InvalidState, NotFound


class Keyed(Protocol):
    id: str


T = TypeVar("T", bound=Keyed)


def clamp(index: int, length: int) -> int:
    return max(0, min(index, length))


class OrderedCollection(Generic[T]):
    def __init__(self, items: List[T]) -> None:
        self.items = items

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)

    def __contains__(self, item_id: object) -> bool:
        return self.index_of(item_id) is not None  # type: ignore[arg-type]

    def ids(self) -> list[str]:
        return [item.id for item in self.items]

    def index_of(self, item_id: str) -> Optional[int]:
        for i, item in enumerate(self.items):
            if item.id == item_id:
                return i
        return None

    def get(self, item_id: str) -> Optional[T]:
        i = self.index_of(item_id)
        return None if i is None else self.items[i]

    def insert(self, item: T, index: int) -> int:
        """Insert ``item`` at ``index`` clamped to ``[0, len]``; return the index used."""
        if item.id in self:
            raise InvalidState(f"duplicate id {item.id!r}", {"id": item.id})
        at = clamp(index, len(self.items))
        self.items.insert(at, item)
        return at

    def append(self, item: T) -> int:
        return self.insert(item, len(self.items))

    def remove(self, item_id: str) -> Optional[T]:
        i = self.index_of(item_id)
        if i is None:
            return None
        return self.items.pop(i)

    def move_within(self, item_id: str, new_index: int) -> int:
        i = self.index_of(item_id)
        if i is None:
            raise NotFound(f"{item_id!r} is not in this collection", {"id": item_id})
        item = self.items.pop(i)
        at = clamp(new_index, len(self.items))
        self.items.insert(at, item)
        return at

    @staticmethod
    def move_across(
        source: "OrderedCollection[T]",
        dest: "OrderedCollection[T]",
        item_id: str,
        dest_index: int,
    ) -> int:
        """Move ``item_id`` from ``source`` into ``dest`` at ``dest_index``.

        Everything is validated before either list changes, so the caller
        sees both collections updated or neither.
        """
        if source is dest or source.items is dest.items:
            return source.move_within(item_id, dest_index)
        i = source.index_of(item_id)
        if i is None:
            raise NotFound(f"{item_id!r} is not in the source collection", {"id": item_id})
        if item_id in dest:
            raise InvalidState(f"{item_id!r} is already in the destination", {"id": item_id})
        at = clamp(dest_index, len(dest.items))
        item = source.items[i]
        remaining = source.items[:i] + source.items[i + 1 :]
        placed = dest.items[:at] + [item] + dest.items[at:]
        source.items[:] = remaining
        dest.items[:] = placed
        return at
