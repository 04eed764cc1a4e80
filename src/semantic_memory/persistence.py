"""Durable key-value storage for memory entries.

The engine needs only put / get_all / delete. Entries are stored as JSON
documents keyed by id, with a few columns broken out for inspection.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, runtime_checkable

from semantic_memory.config import Settings, ensure_data_dir, get_settings
from semantic_memory.errors import PersistenceError
from semantic_memory.logging import get_logger
from semantic_memory.models import MemoryEntry

log = get_logger("persistence")

EXPORT_VERSION = 1

# Current schema version - increment when making breaking changes
SCHEMA_VERSION = 1

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT DEFAULT CURRENT_TIMESTAMP
);

-- One JSON document per memory
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    project_id TEXT,
    importance REAL NOT NULL,
    created_at TEXT NOT NULL,
    document TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memories_kind ON memories(kind);
CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created_at);
"""


class SchemaVersionError(Exception):
    """Raised when database schema is incompatible."""


@runtime_checkable
class PersistenceBackend(Protocol):
    """Key-value contract the manager persists through."""

    def put(self, entry: MemoryEntry) -> None:
        """Insert or replace one entry."""
        ...

    def get_all(self) -> list[MemoryEntry]:
        """Every stored entry."""
        ...

    def delete(self, memory_id: str) -> None:
        """Remove one entry; deleting a missing id is not an error."""
        ...

    def clear(self) -> None:
        """Remove every entry."""
        ...

    def close(self) -> None:
        """Release resources."""
        ...


class InMemoryPersistence:
    """Ephemeral backend holding serialized documents in a dict."""

    def __init__(self) -> None:
        self._documents: dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, entry: MemoryEntry) -> None:
        document = json.dumps(entry.to_dict())
        with self._lock:
            self._documents[entry.id] = document

    def get_all(self) -> list[MemoryEntry]:
        with self._lock:
            documents = list(self._documents.values())
        return [MemoryEntry.from_dict(json.loads(doc)) for doc in documents]

    def delete(self, memory_id: str) -> None:
        with self._lock:
            self._documents.pop(memory_id, None)

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()

    def close(self) -> None:
        pass


class SqlitePersistence:
    """SQLite backend with thread-safe connection handling."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()  # Reentrant lock for nested calls
        log.info("SqlitePersistence initialized with db_path={}", self.settings.db_path)

    @property
    def db_path(self) -> Path:
        return self.settings.db_path

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection. Must be called with lock held."""
        if self._conn is None:
            ensure_data_dir(self.settings)
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=30.0,  # Wait up to 30s for locks
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=30000")
            self._init_schema(self._conn)
        return self._conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        """Create tables and record the schema version."""
        table_exists = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name='schema_version'"
        ).fetchone()
        if table_exists:
            current = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            ).fetchone()
            if current and current[0] > SCHEMA_VERSION:
                raise SchemaVersionError(
                    f"Database schema version {current[0]} is newer than "
                    f"supported version {SCHEMA_VERSION}. Please upgrade semantic-memory."
                )

        conn.executescript(SCHEMA)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
        )
        conn.commit()
        log.debug("Database schema initialized (version={})", SCHEMA_VERSION)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for read operations with thread safety."""
        with self._lock:
            yield self._get_connection()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for transactions with thread safety."""
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def put(self, entry: MemoryEntry) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO memories
                    (id, kind, project_id, importance, created_at, document)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.kind.value,
                    entry.metadata.project_id,
                    entry.importance,
                    entry.created_at.isoformat(),
                    json.dumps(entry.to_dict()),
                ),
            )
        log.debug("Saved memory: {} ({})", entry.kind.value, entry.id)

    def get_all(self) -> list[MemoryEntry]:
        with self._connection() as conn:
            rows = conn.execute("SELECT document FROM memories ORDER BY created_at").fetchall()
        return [MemoryEntry.from_dict(json.loads(row["document"])) for row in rows]

    def delete(self, memory_id: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))

    def clear(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM memories")
        log.info("Cleared all persisted memories")

    def count(self) -> int:
        with self._connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


def create_persistence(settings: Settings | None = None) -> PersistenceBackend:
    """Create the backend named by ``settings.persistence_backend``."""
    settings = settings or get_settings()
    if settings.persistence_backend == "memory":
        return InMemoryPersistence()
    if settings.persistence_backend == "sqlite":
        return SqlitePersistence(settings)
    raise PersistenceError(f"Unknown persistence backend: {settings.persistence_backend}")


def export_entries(entries: list[MemoryEntry]) -> str:
    """Serialize entries to a JSON export document."""
    return json.dumps(
        {"version": EXPORT_VERSION, "memories": [entry.to_dict() for entry in entries]},
        indent=2,
    )


def import_entries(data: str) -> list[MemoryEntry]:
    """Parse a JSON export document.

    Accepts the versioned envelope or a bare list of entry objects.

    Raises:
        PersistenceError: If the document cannot be parsed.
    """
    try:
        payload = json.loads(data)
        records = payload["memories"] if isinstance(payload, dict) else payload
        return [MemoryEntry.from_dict(record) for record in records]
    except (ValueError, KeyError, TypeError) as e:
        raise PersistenceError(f"Invalid memory export: {e}") from e
