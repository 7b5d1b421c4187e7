"""In-memory repositories for lots, machines and roll assignments.

:class:`~machine_load.services.AllocationService` keeps one repository per
record type (``InMemoryRepository[Lot]``, ``InMemoryRepository[Machine]`` and
``InMemoryRepository[RollAssignment]``). Tests and the demo script use these
dictionaries; the web app swaps in the SQLite repositories from
:mod:`machine_load.storage`, which expose the same methods.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generic, Iterator, List, MutableMapping, TypeVar

T = TypeVar("T")


class RepositoryError(RuntimeError):
    """Base exception for storage failures of lots, machines or assignments."""


class DuplicateRecordError(RepositoryError):
    """Raised when a record id is already taken."""


class RecordNotFoundError(RepositoryError):
    """Raised when a lot, machine, allocation or session id is unknown."""


class InMemoryRepository(Generic[T]):
    """Records of one type keyed by their string id, in insertion order."""

    def __init__(self) -> None:
        self._items: MutableMapping[str, T] = {}

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items.values())

    def add(self, item_id: str, item: T) -> None:
        if item_id in self._items:
            raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
        self._items[item_id] = item

    def upsert(self, item_id: str, item: T) -> None:
        """Insert or replace; the allocation persister rewrites whole lots."""

        self._items[item_id] = item

    def get(self, item_id: str) -> T:
        try:
            return self._items[item_id]
        except KeyError as exc:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found") from exc

    def remove(self, item_id: str) -> None:
        if item_id not in self._items:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        del self._items[item_id]

    def list(self) -> List[T]:
        return list(self._items.values())

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Scope for the persister's floor re-check and lot rewrite.

        Writes land in the dictionary immediately and nothing is rolled back;
        a single-threaded session has no concurrent reader to isolate from.
        """

        yield


__all__ = [
    "InMemoryRepository",
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
]
