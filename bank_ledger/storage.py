"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite (persistence) and PostgreSQL (production). All monetary values stored as
Decimal strings.

Every backend offers an atomic unit (``atomic()``) that is all-or-nothing and
isolated from other units touching the same rows. Lock waits and statements
are bounded by the backend timeout; a timeout surfaces as
StorageUnavailableError and the unit is rolled back.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Iterable, Union
from decimal import Decimal
from datetime import datetime
from enum import Enum
import copy
import json
import math
import sqlite3
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


DEFAULT_TIMEOUT_SECONDS = 5.0


class StorageError(Exception):
    """Base class for storage failures"""


class StorageUnavailableError(StorageError):
    """Transient failure: lock timeout, busy database, lost connection"""


class DuplicateRecordError(StorageError):
    """Insert of a record whose id already exists"""


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
            elif isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, Enum):
                result[key] = value.value
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._lock = threading.RLock()
        self._depth = 0
        self._rollback_only = False

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (insert or replace) a record"""
        pass

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record; raises DuplicateRecordError if the id exists"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
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

    # Unit-of-work hooks, only called for the outermost unit
    @abstractmethod
    def _begin(self) -> None:
        pass

    @abstractmethod
    def _commit(self) -> None:
        pass

    @abstractmethod
    def _rollback(self) -> None:
        pass

    def lock_rows(self, table: str, record_ids: Iterable[str]) -> None:
        """
        Take write locks on rows for the rest of the current unit.

        Default is a no-op for backends whose unit already excludes every
        other writer.
        """
        with self._guard():
            self._require_transaction()

    @property
    def in_transaction(self) -> bool:
        """True while a unit is open on this storage instance, from any thread"""
        return self._depth > 0

    @contextmanager
    def _guard(self):
        """Hold the instance lock, bounded by the storage timeout"""
        if not self._lock.acquire(timeout=self.timeout):
            raise StorageUnavailableError(
                f"Timed out after {self.timeout}s waiting for storage lock"
            )
        try:
            yield
        finally:
            self._lock.release()

    def _require_transaction(self) -> None:
        if self._depth == 0:
            raise StorageError("Operation requires an open transaction")

    def begin_transaction(self) -> None:
        """Start a unit, or join the unit already open on this thread"""
        if not self._lock.acquire(timeout=self.timeout):
            raise StorageUnavailableError(
                f"Timed out after {self.timeout}s waiting for storage lock"
            )
        if self._depth == 0:
            try:
                self._begin()
            except BaseException:
                self._lock.release()
                raise
            self._rollback_only = False
        self._depth += 1

    def commit(self) -> None:
        """Commit the current unit (outermost level only)"""
        self._require_transaction()
        self._depth -= 1
        try:
            if self._depth == 0:
                if self._rollback_only:
                    self._rollback()
                    raise StorageError("Transaction rolled back: a nested unit failed")
                try:
                    self._commit()
                except Exception:
                    self._rollback()
                    raise
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback the current unit; a nested rollback dooms the outer unit"""
        self._require_transaction()
        self._depth -= 1
        try:
            if self._depth == 0:
                self._rollback()
            else:
                self._rollback_only = True
        finally:
            self._lock.release()

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield self
        except BaseException:
            # Cancellation (KeyboardInterrupt, SystemExit) also rolls back
            self.rollback()
            raise
        self.commit()


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        super().__init__(timeout)
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        # Pre-unit contents of each table written in the open unit; None
        # marks a table the unit created
        self._snapshot: Optional[Dict[str, Optional[Dict[str, Dict[str, Any]]]]] = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def _before_write(self, table: str) -> None:
        """Snapshot a table the first time the open unit writes to it"""
        if self._snapshot is not None and table not in self._snapshot:
            existing = self._data.get(table)
            # Writes replace whole records, so a shallow copy is enough
            self._snapshot[table] = dict(existing) if existing is not None else None
        self._ensure_table(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._guard():
            self._before_write(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record into memory"""
        with self._guard():
            self._ensure_table(table)
            if record_id in self._data[table]:
                raise DuplicateRecordError(f"{table} record {record_id} already exists")
            self._before_write(table)
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._guard():
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return copy.deepcopy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._guard():
            self._ensure_table(table)
            return [copy.deepcopy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._guard():
            self._ensure_table(table)
            if record_id in self._data[table]:
                self._before_write(table)
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._guard():
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._guard():
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(copy.deepcopy(record))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._guard():
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._guard():
            self._before_write(table)
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    # The unit holds the instance lock throughout, so it excludes every
    # other reader and writer. Rollback restores only the tables it wrote.
    def _begin(self) -> None:
        self._snapshot = {}

    def _commit(self) -> None:
        self._snapshot = None

    def _rollback(self) -> None:
        for table, records in (self._snapshot or {}).items():
            if records is None:
                self._data.pop(table, None)
            else:
                self._data[table] = records
        self._snapshot = None


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:",
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        super().__init__(timeout)
        self.db_path = str(db_path)
        self._tables = set()
        try:
            # Autocommit mode: units are opened explicitly with BEGIN IMMEDIATE
            self._connection = sqlite3.connect(
                self.db_path, timeout=timeout,
                check_same_thread=False, isolation_level=None
            )
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Cannot open SQLite database {self.db_path}: {e}")
        self._connection.row_factory = sqlite3.Row

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            self._execute("PRAGMA journal_mode = WAL")
            self._execute("PRAGMA synchronous = NORMAL")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run a statement, translating sqlite errors to storage errors"""
        if self._connection is None:
            raise StorageUnavailableError("Storage is closed")
        try:
            return self._connection.execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(str(e))
        except (sqlite3.OperationalError, sqlite3.ProgrammingError) as e:
            # "database is locked" after the busy timeout lands here
            raise StorageUnavailableError(str(e))
        except sqlite3.DatabaseError as e:
            raise StorageError(str(e))

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
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

    @staticmethod
    def _timestamps(data: Dict[str, Any]) -> tuple:
        created_at = str(data.get('created_at', ''))
        updated_at = str(data.get('updated_at') or created_at)
        return created_at, updated_at

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._guard():
            self._ensure_table(table)
            created_at, updated_at = self._timestamps(data)
            data_json = json.dumps(data, default=str)

            # Use INSERT OR REPLACE to handle updates
            self._execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, created_at, updated_at))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record into SQLite"""
        with self._guard():
            self._ensure_table(table)
            created_at, updated_at = self._timestamps(data)
            self._execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, (record_id, json.dumps(data, default=str), created_at, updated_at))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._guard():
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._guard():
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._guard():
            self._ensure_table(table)
            cursor = self._execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._guard():
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        with self._guard():
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)

            results = []
            for row in cursor.fetchall():
                record = json.loads(row['data'])
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(record)

            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._guard():
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._guard():
            self._ensure_table(table)
            self._execute(f"DELETE FROM {table}")

    # BEGIN IMMEDIATE takes the database write lock up front, so units on
    # other connections (or processes) wait for the busy timeout instead of
    # interleaving their read-check-write with ours.
    def _begin(self) -> None:
        self._execute("BEGIN IMMEDIATE")

    def _commit(self) -> None:
        self._execute("COMMIT")

    def _rollback(self) -> None:
        # Tables created inside the unit vanish with it
        self._tables.clear()
        if self._connection is not None and self._connection.in_transaction:
            self._execute("ROLLBACK")

    def close(self) -> None:
        """Close SQLite connection"""
        with self._guard():
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with ACID transaction support"""

    def __init__(self, connection_string: str, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        try:
            import psycopg2
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install bank-ledger[postgres]")

        super().__init__(timeout)
        self.connection_string = connection_string
        self._connection = None
        self._tables = set()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection"""
        timeout_ms = int(self.timeout * 1000)
        try:
            self._connection = self.psycopg2.connect(
                self.connection_string,
                connect_timeout=max(1, math.ceil(self.timeout)),
                options=f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}",
                cursor_factory=self.extras.RealDictCursor
            )
        except self.psycopg2.OperationalError as e:
            raise StorageUnavailableError(f"Cannot connect to PostgreSQL: {e}")
        self._connection.autocommit = False  # We handle transactions manually

    def _execute(self, sql: str, params: Any = (), fetch: Optional[str] = None) -> Any:
        """
        Run a statement and optionally fetch results.

        Outside a unit each statement is committed on its own. Inside a unit
        errors propagate and the unit's rollback discards the work.
        """
        if self._connection is None:
            raise StorageUnavailableError("Storage is closed")

        cursor = self._connection.cursor()
        try:
            cursor.execute(sql, params)
            if fetch == "one":
                result = cursor.fetchone()
            elif fetch == "all":
                result = cursor.fetchall()
            else:
                result = cursor.rowcount
            if self._depth == 0:
                self._connection.commit()
            return result
        except self.psycopg2.Error as e:
            if self._depth == 0:
                self._connection.rollback()
            if isinstance(e, self.psycopg2.IntegrityError):
                raise DuplicateRecordError(str(e))
            if isinstance(e, (self.psycopg2.OperationalError, self.psycopg2.InterfaceError)):
                # Includes statement_timeout and lock_timeout cancellations
                raise StorageUnavailableError(str(e))
            raise StorageError(str(e))
        finally:
            cursor.close()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self._execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
        """)
        self._execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_data
            ON {table} USING gin(data)
        """)
        self._execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._tables.add(table)

    @staticmethod
    def _timestamps(data: Dict[str, Any]) -> tuple:
        created_at = data.get('created_at')
        updated_at = data.get('updated_at') or created_at
        return created_at, updated_at

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        with self._guard():
            self._ensure_table(table)
            created_at, updated_at = self._timestamps(data)
            self._execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = EXCLUDED.updated_at
            """, (record_id, json.dumps(data, default=str), created_at, updated_at))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record into PostgreSQL"""
        with self._guard():
            self._ensure_table(table)
            created_at, updated_at = self._timestamps(data)
            self._execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (%s, %s, %s, %s)
            """, (record_id, json.dumps(data, default=str), created_at, updated_at))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        with self._guard():
            self._ensure_table(table)
            row = self._execute(f"""
                SELECT data FROM {table} WHERE id = %s
            """, (record_id,), fetch="one")
            if row:
                return dict(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._guard():
            self._ensure_table(table)
            rows = self._execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """, fetch="all")
            return [dict(row['data']) for row in rows]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from PostgreSQL"""
        with self._guard():
            self._ensure_table(table)
            rowcount = self._execute(f"""
                DELETE FROM {table} WHERE id = %s
            """, (record_id,))
            return rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._guard():
            self._ensure_table(table)
            row = self._execute(f"""
                SELECT 1 FROM {table} WHERE id = %s LIMIT 1
            """, (record_id,), fetch="one")
            return row is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        with self._guard():
            self._ensure_table(table)
            conditions = []
            params = []
            for key, value in filters.items():
                if value is None:
                    conditions.append("data ->> %s IS NULL")
                    params.append(key)
                else:
                    conditions.append("data ->> %s = %s")
                    params.extend([key, str(value)])

            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            rows = self._execute(f"""
                SELECT data FROM {table}
                {where_clause}
                ORDER BY created_at
            """, params, fetch="all")
            return [dict(row['data']) for row in rows]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._guard():
            self._ensure_table(table)
            row = self._execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """, fetch="one")
            return row['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._guard():
            self._ensure_table(table)
            self._execute(f"DELETE FROM {table}")

    def lock_rows(self, table: str, record_ids: Iterable[str]) -> None:
        """Row-level write locks, taken in id order so lockers never deadlock"""
        ids = sorted(set(record_ids))
        with self._guard():
            self._require_transaction()
            if not ids:
                return
            self._ensure_table(table)
            self._execute(f"""
                SELECT id FROM {table} WHERE id = ANY(%s)
                ORDER BY id FOR UPDATE
            """, (ids,), fetch="all")

    # PostgreSQL transactions start automatically on the first statement
    def _begin(self) -> None:
        if self._connection is None:
            raise StorageUnavailableError("Storage is closed")

    def _commit(self) -> None:
        try:
            self._connection.commit()
        except self.psycopg2.Error as e:
            raise StorageUnavailableError(f"Commit failed: {e}")

    def _rollback(self) -> None:
        self._tables.clear()
        if self._connection is not None:
            try:
                self._connection.rollback()
            except self.psycopg2.InterfaceError:
                # Connection already gone; the server discards the work
                pass

    def close(self) -> None:
        """Close PostgreSQL connection"""
        with self._guard():
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> StorageInterface:
    """
    Build a storage backend from a database URL

    Args:
        database_url: ``memory://``, ``sqlite:///path/to.db`` (``sqlite:///:memory:``
            for a private in-memory database) or ``postgresql://...``
        timeout: Bound in seconds for lock waits and statements

    Returns:
        Storage backend instance
    """
    if database_url in ("", "memory://"):
        return InMemoryStorage(timeout=timeout)

    if database_url.startswith("sqlite:///"):
        path = database_url[len("sqlite:///"):] or ":memory:"
        return SQLiteStorage(path, timeout=timeout)

    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url, timeout=timeout)

    raise ValueError(f"Unsupported database URL: {database_url}")
