"""
Storage Backend Module

Keyed JSON records grouped into tables, with nested atomic blocks: an inner
block that fails restores the state at its entry without disturbing the
outer one. InMemoryStorage is the default for tests and single-process use;
SQLiteStorage persists across restarts.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
import sqlite3
import json
import threading
from pathlib import Path
from contextlib import contextmanager


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record, or None if absent"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """All records of a table in insertion order"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        """Open a (possibly nested) transaction level"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit the innermost transaction level"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard the innermost transaction level"""
        pass

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        """True while at least one atomic block is open"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        self.commit()


# Journal entry: (table, record_id) -> stored value before the level's first write, None if absent
UndoJournal = Dict[Tuple[str, str], Optional[Dict[str, Any]]]


class InMemoryStorage(StorageInterface):
    """
    In-memory storage with a per-level undo journal

    Each open transaction level remembers the prior value of every record it
    overwrites, once per record. Rollback replays that journal; commit folds
    it into the parent level so an outer rollback still restores the values
    from before the inner block. Cost is proportional to the records an
    operation writes, not to the size of the store.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._journals: List[UndoJournal] = []
        self._lock = threading.RLock()

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(table, {})

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            rows = self._table(table)
            if self._journals:
                self._journals[-1].setdefault((table, record_id), rows.get(record_id))
            # Stored values are never mutated in place, only replaced
            rows[record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a copy of a record"""
        with self._lock:
            record = self._table(table).get(record_id)
            if record is not None:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load copies of all records in a table"""
        with self._lock:
            return [json.loads(json.dumps(record)) for record in self._table(table).values()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            return len(self._table(table))

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def begin_transaction(self) -> None:
        """Open a new journal level"""
        with self._lock:
            self._journals.append({})

    def commit(self) -> None:
        """Keep the innermost level's writes and hand its undo entries to the parent"""
        with self._lock:
            if not self._journals:
                return
            journal = self._journals.pop()
            if self._journals:
                parent = self._journals[-1]
                for key, prior in journal.items():
                    parent.setdefault(key, prior)

    def rollback(self) -> None:
        """Restore every record the innermost level wrote"""
        with self._lock:
            if not self._journals:
                return
            journal = self._journals.pop()
            for (table, record_id), prior in journal.items():
                rows = self._table(table)
                if prior is None:
                    rows.pop(record_id, None)
                else:
                    rows[record_id] = prior

    @property
    def in_transaction(self) -> bool:
        return bool(self._journals)


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Autocommit mode; transactions are driven explicitly with SAVEPOINTs
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._tables = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def _ensure_table(self, table: str) -> None:
        if table in self._tables:
            return
        self._connection.execute(
            f"CREATE TABLE IF NOT EXISTS {table} (id TEXT PRIMARY KEY, data TEXT NOT NULL)"
        )
        self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Upsert a record, keeping its original rowid so insertion order holds"""
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(
                f"INSERT INTO {table} (id, data) VALUES (?, ?) "
                f"ON CONFLICT(id) DO UPDATE SET data = excluded.data",
                (record_id, json.dumps(data, default=str))
            )

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT data FROM {table} ORDER BY rowid")
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return self._connection.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()['n']

    def _savepoint_name(self) -> str:
        return f"sp_{self._depth}"

    def begin_transaction(self) -> None:
        """Open a savepoint; the outermost one starts the SQLite transaction"""
        with self._lock:
            self._depth += 1
            self._connection.execute(f"SAVEPOINT {self._savepoint_name()}")

    def commit(self) -> None:
        """Release the innermost savepoint"""
        with self._lock:
            if self._depth:
                self._connection.execute(f"RELEASE SAVEPOINT {self._savepoint_name()}")
                self._depth -= 1

    def rollback(self) -> None:
        """Undo everything since the innermost savepoint was opened"""
        with self._lock:
            if self._depth:
                name = self._savepoint_name()
                self._connection.execute(f"ROLLBACK TO SAVEPOINT {name}")
                self._connection.execute(f"RELEASE SAVEPOINT {name}")
                self._depth -= 1
                # Tables created inside the savepoint are gone again
                self._tables.clear()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL

    Supported forms:
        memory://               in-process, non-persistent
        sqlite:///:memory:      SQLite in memory
        sqlite:///path/to.db    SQLite file
    """
    if database_url in ("memory://", "memory", ""):
        return InMemoryStorage()

    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")

    raise ValueError(f"Unsupported database URL: {database_url}")
