"""SQLite-backed persistence helpers for the machine load service."""

from __future__ import annotations

import pickle
import sqlite3
from contextlib import contextmanager
from typing import Generic, Iterator, List, Optional, TypeVar

from .domain import Lot, Machine, RollAssignment
from .logging_config import get_logger
from .repository import DuplicateRecordError, RecordNotFoundError, RepositoryError

T = TypeVar("T")

logger = get_logger("storage")


class _UnitOfWork:
    """Transaction depth shared by every repository on one connection."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self.connection = connection
        self.depth = 0

    @property
    def active(self) -> bool:
        return self.depth > 0

    @contextmanager
    def begin(self) -> Iterator[None]:
        if self.depth == 0:
            try:
                self.connection.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise RepositoryError(f"Could not start transaction: {exc}") from exc
        self.depth += 1
        try:
            yield
        except BaseException as exc:
            self.depth -= 1
            if self.depth == 0:
                self.connection.rollback()
                logger.debug("Transaction rolled back")
            if isinstance(exc, sqlite3.Error):
                raise RepositoryError(f"Database error: {exc}") from exc
            raise
        self.depth -= 1
        if self.depth == 0:
            try:
                self.connection.commit()
            except sqlite3.Error as exc:
                self.connection.rollback()
                raise RepositoryError(f"Could not commit transaction: {exc}") from exc


class SQLiteRepository(Generic[T]):
    """Repository implementation that persists records inside SQLite."""

    def __init__(
        self,
        connection: sqlite3.Connection,
        table: str,
        *,
        unit_of_work: Optional[_UnitOfWork] = None,
    ) -> None:
        self._connection = connection
        self._table = table
        self._unit_of_work = unit_of_work or _UnitOfWork(connection)
        self._connection.execute(
            f"CREATE TABLE IF NOT EXISTS {table} ("  # nosec - static table names
            "id TEXT PRIMARY KEY, payload BLOB NOT NULL)"
        )
        self._connection.commit()

    def __contains__(self, item_id: object) -> bool:
        if not isinstance(item_id, str):
            return False
        cursor = self._connection.execute(
            f"SELECT 1 FROM {self._table} WHERE id = ? LIMIT 1", (item_id,)
        )
        return cursor.fetchone() is not None

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    def __len__(self) -> int:
        cursor = self._connection.execute(
            f"SELECT COUNT(1) FROM {self._table}"
        )
        value = cursor.fetchone()
        return int(value[0]) if value else 0

    def _commit(self) -> None:
        if not self._unit_of_work.active:
            self._connection.commit()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._unit_of_work.begin():
            yield

    # ------------------------------------------------------------------
    # CRUD operations
    # ------------------------------------------------------------------
    def add(self, item_id: str, item: T) -> None:
        if item_id in self:
            raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
        payload = pickle.dumps(item)
        self._connection.execute(
            f"INSERT INTO {self._table} (id, payload) VALUES (?, ?)",
            (item_id, payload),
        )
        self._commit()

    def upsert(self, item_id: str, item: T) -> None:
        payload = pickle.dumps(item)
        self._connection.execute(
            f"INSERT INTO {self._table} (id, payload) VALUES (?, ?) "
            "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload",
            (item_id, payload),
        )
        self._commit()

    def get(self, item_id: str) -> T:
        cursor = self._connection.execute(
            f"SELECT payload FROM {self._table} WHERE id = ?", (item_id,)
        )
        row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        return pickle.loads(row[0])

    def remove(self, item_id: str) -> None:
        cursor = self._connection.execute(
            f"DELETE FROM {self._table} WHERE id = ?", (item_id,)
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        self._commit()

    def list(self) -> List[T]:
        cursor = self._connection.execute(
            f"SELECT payload FROM {self._table} ORDER BY id"
        )
        return [pickle.loads(row[0]) for row in cursor.fetchall()]


class MillDatabase:
    """Convenience facade bundling SQLite repositories for all aggregates."""

    def __init__(self, path: str) -> None:
        connection = sqlite3.connect(path, check_same_thread=False)
        connection.row_factory = sqlite3.Row
        self._connection = connection
        unit_of_work = _UnitOfWork(connection)
        self.lots = SQLiteRepository[Lot](connection, "lots", unit_of_work=unit_of_work)
        self.machines = SQLiteRepository[Machine](
            connection, "machines", unit_of_work=unit_of_work
        )
        self.roll_assignments = SQLiteRepository[RollAssignment](
            connection, "roll_assignments", unit_of_work=unit_of_work
        )

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "MillDatabase":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[BaseException],
    ) -> None:
        self.close()


__all__ = ["SQLiteRepository", "MillDatabase"]
