"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Every lifecycle operation runs inside ``atomic()``: the unit of work holds the
store's lock for its whole duration, commits once at the outermost level and
rolls back everything on any exception. Nested ``atomic()`` blocks map onto
savepoints.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Union
from decimal import Decimal
from datetime import date, datetime, timezone
from enum import Enum
import copy
import json
import sqlite3
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import StorageFailure
from .logging_config import get_logger


logger = get_logger("backoffice.storage")


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, (datetime, date)):
                result[key] = value.isoformat()
            elif isinstance(value, Enum):
                result[key] = value.value
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0
        self._pending_callbacks: List[List[Callable[[], None]]] = []

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table, in insertion order"""
        pass

    @abstractmethod
    def load_last(self, table: str) -> Optional[Dict[str, Any]]:
        """Load the most recently inserted record, or None for an empty table"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters, in insertion order"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start the outermost unit of work"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit the outermost unit of work"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard the outermost unit of work"""
        pass

    @abstractmethod
    def _savepoint(self, level: int) -> None:
        pass

    @abstractmethod
    def _release_savepoint(self, level: int) -> None:
        pass

    @abstractmethod
    def _rollback_to_savepoint(self, level: int) -> None:
        pass

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def update_where(self, table: str, record_id: str, expected: Dict[str, Any],
                     data: Dict[str, Any]) -> bool:
        """
        Conditionally replace a record.

        Writes ``data`` only if every key in ``expected`` matches the stored
        record. Returns False, without writing, when the record is missing or
        any expected value differs.
        """
        with self.atomic():
            current = self.load(table, record_id)
            if current is None:
                return False
            for key, value in expected.items():
                if current.get(key) != value:
                    return False
            self.save(table, record_id, data)
            return True

    def after_commit(self, callback: Callable[[], None]) -> None:
        """
        Run ``callback`` once the outermost unit of work commits.

        Callbacks queued inside a unit that rolls back are dropped. Outside a
        unit of work the callback runs immediately.
        """
        with self._lock:
            if self._depth > 0:
                self._pending_callbacks[-1].append(callback)
                return
        self._run_callbacks([callback])

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        with self._lock:
            self._depth += 1
            level = self._depth
            try:
                if level == 1:
                    self.begin_transaction()
                else:
                    self._savepoint(level)
            except BaseException:
                self._depth -= 1
                raise
            self._pending_callbacks.append([])

            try:
                yield self
            except BaseException:
                self._pending_callbacks.pop()
                self._depth -= 1
                if level == 1:
                    self.rollback()
                else:
                    self._rollback_to_savepoint(level)
                raise

            callbacks = self._pending_callbacks.pop()
            self._depth -= 1
            if level > 1:
                self._release_savepoint(level)
                self._pending_callbacks[-1].extend(callbacks)
                return

            try:
                self.commit()
            except BaseException:
                self.rollback()
                raise

        # Outermost commit done and lock released
        self._run_callbacks(callbacks)

    def _run_callbacks(self, callbacks: List[Callable[[], None]]) -> None:
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"After-commit callback failed: {e}")


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._snapshots: List[Dict[str, Dict[str, Dict[str, Any]]]] = []

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return copy.deepcopy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [copy.deepcopy(record) for record in self._data[table].values()]

    def load_last(self, table: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            records = self._data[table]
            if not records:
                return None
            return copy.deepcopy(next(reversed(records.values())))

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                if all(record.get(key) == value for key, value in filters.items()):
                    results.append(copy.deepcopy(record))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def begin_transaction(self) -> None:
        self._snapshots = [copy.deepcopy(self._data)]

    def commit(self) -> None:
        self._snapshots = []

    def rollback(self) -> None:
        if self._snapshots:
            self._data = self._snapshots[0]
        self._snapshots = []

    def _savepoint(self, level: int) -> None:
        self._snapshots.append(copy.deepcopy(self._data))

    def _release_savepoint(self, level: int) -> None:
        self._snapshots.pop()

    def _rollback_to_savepoint(self, level: int) -> None:
        self._data = self._snapshots.pop()


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        super().__init__()
        self.db_path = str(db_path)
        try:
            # Autocommit mode; units of work issue BEGIN/COMMIT explicitly
            self._connection = sqlite3.connect(
                self.db_path, check_same_thread=False, isolation_level=None
            )
        except sqlite3.Error as e:
            raise StorageFailure(f"Cannot open database {self.db_path}: {e}") from e
        self._connection.row_factory = sqlite3.Row
        self._tables = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._execute("PRAGMA journal_mode = WAL")
                self._execute("PRAGMA synchronous = NORMAL")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._connection.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageFailure(f"SQLite error: {e}") from e

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
            self._execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Upsert keeps rowid and created_at of existing rows
            self._execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, data_json, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            row = self._execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,)).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT data FROM {table} ORDER BY rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def load_last(self, table: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._execute(f"""
                SELECT data FROM {table} ORDER BY rowid DESC LIMIT 1
            """).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def _where(self, filters: Dict[str, Any]):
        conditions = []
        params = []
        for key, value in filters.items():
            if value is None:
                conditions.append("json_extract(data, ?) IS NULL")
                params.append(f"$.{key}")
            else:
                conditions.append("json_extract(data, ?) = ?")
                params.extend([f"$.{key}", value])
        return " AND ".join(conditions), params

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSON1 operators"""
        with self._lock:
            self._ensure_table(table)
            if not filters:
                return self.load_all(table)
            where_clause, params = self._where(filters)
            cursor = self._execute(f"""
                SELECT data FROM {table}
                WHERE {where_clause}
                ORDER BY rowid
            """, tuple(params))
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def update_where(self, table: str, record_id: str, expected: Dict[str, Any],
                     data: Dict[str, Any]) -> bool:
        """Conditional UPDATE; the predicate is evaluated by SQLite itself"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            where_clause, params = self._where(expected)
            sql = f"UPDATE {table} SET data = ?, updated_at = ? WHERE id = ?"
            if where_clause:
                sql += f" AND {where_clause}"
            cursor = self._execute(
                sql, (json.dumps(data, default=str), now, record_id, *params)
            )
            return cursor.rowcount == 1

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._execute(f"DELETE FROM {table}")

    def begin_transaction(self) -> None:
        """Start a database transaction, taking the write lock up front"""
        self._execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        """Commit current transaction"""
        self._execute("COMMIT")

    def rollback(self) -> None:
        """Rollback current transaction"""
        # DDL is transactional: tables created in this unit are gone too
        self._tables.clear()
        if self._connection is not None and self._connection.in_transaction:
            self._execute("ROLLBACK")

    def _savepoint(self, level: int) -> None:
        self._execute(f"SAVEPOINT sp_{level}")

    def _release_savepoint(self, level: int) -> None:
        self._execute(f"RELEASE SAVEPOINT sp_{level}")

    def _rollback_to_savepoint(self, level: int) -> None:
        self._tables.clear()
        self._execute(f"ROLLBACK TO SAVEPOINT sp_{level}")
        self._execute(f"RELEASE SAVEPOINT sp_{level}")

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(backend: str = "sqlite", database_path: str = "backoffice.db") -> StorageInterface:
    """Build the configured storage backend"""
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(database_path)
    raise ValueError(f"Unknown storage backend: {backend}")
