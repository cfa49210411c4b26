"""
MCP Memory Record Store -- SQLite-backed relational half of a memory.

One table, ``memories(id PRIMARY KEY, namespace, content, created_at)``.
Every statement is scoped by namespace; the namespace is never defaulted.

Usage:
    records = RecordStore(Path("records.db"))
    records.create_table()
    records.insert("mem-1", "alice", "I like dark roast coffee")
    rows = records.select_all_by_namespace("alice")
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from mcp_memory import crypto
from mcp_memory.errors import RecordStoreError

logger = logging.getLogger("mcp_memory.records")

_CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS memories (
        id TEXT PRIMARY KEY,
        namespace TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    )
"""
_CREATE_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_memories_namespace_created
    ON memories(namespace, created_at)
"""


@dataclass
class MemoryRecord:
    """A row of the record store."""

    id: str
    namespace: str
    content: str
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "content": self.content}


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)
    except ValueError:
        dt = datetime.fromisoformat(value)
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class RecordStore:
    """Durable store of memory records keyed by (id, namespace)."""

    def __init__(self, db_path):
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            conn = crypto.secure_connect(self.db_path, timeout=30, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=30000")
            self._conn = conn
        return self._conn

    def _fail(self, operation: str, exc: Exception, namespace=None, memory_id=None) -> RecordStoreError:
        logger.error("Record store %s failed: %s", operation, exc)
        return RecordStoreError(
            f"Record store {operation} failed: {exc}",
            operation=f"record {operation}",
            namespace=namespace,
            memory_id=memory_id,
        )

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def create_table(self) -> None:
        """Create the memories table if it does not exist (idempotent)."""
        try:
            with self._lock:
                conn = self._connection()
                conn.execute(_CREATE_TABLE)
                conn.execute(_CREATE_INDEX)
                conn.commit()
        except sqlite3.Error as e:
            raise self._fail("create_table", e) from e
        logger.debug("Checked/created memories table in %s", self.db_path)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def insert(self, memory_id: str, namespace: str, content: str) -> None:
        try:
            with self._lock:
                conn = self._connection()
                conn.execute(
                    "INSERT INTO memories (id, namespace, content) VALUES (?, ?, ?)",
                    (memory_id, namespace, crypto.encrypt(content)),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise self._fail("insert", e, namespace, memory_id) from e
        logger.info("Memory %s stored in record store (namespace %s)", memory_id, namespace)

    def get(self, memory_id: str, namespace: str) -> Optional[MemoryRecord]:
        """Point lookup of one record within a namespace."""
        try:
            with self._lock:
                row = self._connection().execute(
                    "SELECT id, namespace, content, created_at FROM memories WHERE id = ? AND namespace = ?",
                    (memory_id, namespace),
                ).fetchone()
            return self._row_to_record(row) if row else None
        except (sqlite3.Error, ValueError) as e:
            raise self._fail("get", e, namespace, memory_id) from e

    def select_all_by_namespace(self, namespace: str) -> List[MemoryRecord]:
        """All records in a namespace, most recent first."""
        try:
            with self._lock:
                rows = self._connection().execute(
                    """SELECT id, namespace, content, created_at FROM memories
                       WHERE namespace = ?
                       ORDER BY created_at DESC, rowid DESC""",
                    (namespace,),
                ).fetchall()
            return [self._row_to_record(r) for r in rows]
        except (sqlite3.Error, ValueError) as e:
            raise self._fail("select", e, namespace) from e

    def delete_by_id_and_namespace(self, memory_id: str, namespace: str) -> int:
        """Delete one record. Returns the number of rows removed (0 if absent)."""
        try:
            with self._lock:
                conn = self._connection()
                cur = conn.execute(
                    "DELETE FROM memories WHERE id = ? AND namespace = ?",
                    (memory_id, namespace),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise self._fail("delete", e, namespace, memory_id) from e
        logger.info("Memory %s deleted from record store (namespace %s, rows=%d)", memory_id, namespace, cur.rowcount)
        return cur.rowcount

    def update_content_by_id_and_namespace(self, memory_id: str, namespace: str, content: str) -> int:
        """Replace a record's content. Returns rows changed.

        SQLite counts every row the WHERE clause matched, so rewriting the
        same text still reports 1; only a missing (id, namespace) gives 0.
        """
        try:
            with self._lock:
                conn = self._connection()
                cur = conn.execute(
                    "UPDATE memories SET content = ? WHERE id = ? AND namespace = ?",
                    (crypto.encrypt(content), memory_id, namespace),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise self._fail("update", e, namespace, memory_id) from e
        return cur.rowcount

    def count(self, namespace: Optional[str] = None) -> int:
        try:
            with self._lock:
                conn = self._connection()
                if namespace is None:
                    row = conn.execute("SELECT COUNT(*) FROM memories").fetchone()
                else:
                    row = conn.execute("SELECT COUNT(*) FROM memories WHERE namespace = ?", (namespace,)).fetchone()
            return row[0]
        except sqlite3.Error as e:
            raise self._fail("count", e, namespace) from e

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @staticmethod
    def _row_to_record(row: tuple) -> MemoryRecord:
        memory_id, namespace, content, created_at = row
        return MemoryRecord(
            id=memory_id,
            namespace=namespace,
            content=crypto.decrypt(content),
            created_at=_parse_dt(created_at),
        )
