"""
MCP Memory Vector Index -- sqlite-vec similarity index, partitioned by namespace.

Lives in its own database file so it fails independently of the record store.
Each entry holds the memory id, its namespace (a vec0 partition key, so KNN
queries never cross namespaces), the embedding, and a JSON payload carrying a
denormalized copy of the content.

Dimensionality and metric (cosine) are fixed when the index is created and
recorded in ``vector_index_meta``; reopening with another dimension fails.

Deletion is by id only. The namespace is not part of the delete statement, so
a delete-by-id removes the entry whatever namespace it was written under.
"""

import json
import logging
import sqlite3
import struct
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from mcp_memory import crypto
from mcp_memory.errors import VectorIndexError

logger = logging.getLogger("mcp_memory.vectors")

DISTANCE_METRIC = "cosine"


def _serialize_f32(vector: Sequence[float]) -> bytes:
    """Serialize a float32 vector to bytes for sqlite-vec."""
    return struct.pack(f"{len(vector)}f", *vector)


@dataclass
class VectorEntry:
    """One vector to upsert."""

    id: str
    vector: Sequence[float]
    namespace: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    """One similarity hit. ``score`` is cosine similarity (1 - cosine distance)."""

    id: str
    score: float
    metadata: Optional[Dict[str, Any]] = None


class VectorIndex:
    """Namespace-partitioned top-K similarity index over sqlite-vec."""

    def __init__(self, db_path, dimension: int):
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self.db_path = Path(db_path)
        self.dimension = dimension
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            conn = crypto.secure_connect(self.db_path, timeout=30, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=30000")

            try:
                import sqlite_vec

                conn.enable_load_extension(True)
                sqlite_vec.load(conn)
                conn.enable_load_extension(False)
            except (ImportError, AttributeError) as e:
                conn.close()
                raise VectorIndexError(
                    f"sqlite-vec extension unavailable: {e}",
                    operation="vector connect",
                ) from e
            self._conn = conn
        return self._conn

    def _fail(self, operation: str, exc: Exception, namespace=None, memory_id=None) -> VectorIndexError:
        logger.error("Vector index %s failed: %s", operation, exc)
        return VectorIndexError(
            f"Vector index {operation} failed: {exc}",
            operation=f"vector {operation}",
            namespace=namespace,
            memory_id=memory_id,
        )

    def _check_dimension(self, vector: Sequence[float], operation: str, namespace=None, memory_id=None) -> List[float]:
        values = [float(x) for x in vector]
        if len(values) != self.dimension:
            raise VectorIndexError(
                f"Vector dimension {len(values)} does not match index dimension {self.dimension}",
                operation=f"vector {operation}",
                namespace=namespace,
                memory_id=memory_id,
            )
        return values

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def create_index(self) -> None:
        """Create the vec0 table if needed and verify its recorded dimension."""
        try:
            with self._lock:
                conn = self._connection()
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS vector_index_meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
                )
                rows = dict(conn.execute("SELECT key, value FROM vector_index_meta").fetchall())
                if "dimension" in rows and int(rows["dimension"]) != self.dimension:
                    raise VectorIndexError(
                        f"Index at {self.db_path} was created with dimension {rows['dimension']}, "
                        f"configured dimension is {self.dimension}",
                        operation="vector create_index",
                    )
                conn.execute(f"""
                    CREATE VIRTUAL TABLE IF NOT EXISTS memory_vectors USING vec0(
                        memory_id text primary key,
                        namespace text partition key,
                        embedding float[{self.dimension}] distance_metric={DISTANCE_METRIC},
                        +payload text
                    )
                """)
                conn.execute(
                    "INSERT OR IGNORE INTO vector_index_meta (key, value) VALUES ('dimension', ?)",
                    (str(self.dimension),),
                )
                conn.execute(
                    "INSERT OR IGNORE INTO vector_index_meta (key, value) VALUES ('metric', ?)",
                    (DISTANCE_METRIC,),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise self._fail("create_index", e) from e
        logger.debug("Checked/created vector index in %s (dim=%d)", self.db_path, self.dimension)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, entries: Iterable[VectorEntry]) -> None:
        """Insert or replace entries by id. All entries commit together."""
        entries = list(entries)
        prepared = [
            (
                e.id,
                e.namespace,
                _serialize_f32(self._check_dimension(e.vector, "upsert", e.namespace, e.id)),
                crypto.encrypt(json.dumps(e.payload)),
            )
            for e in entries
        ]
        first = entries[0] if entries else None
        try:
            with self._lock:
                conn = self._connection()
                try:
                    for memory_id, namespace, blob, payload in prepared:
                        conn.execute("DELETE FROM memory_vectors WHERE memory_id = ?", (memory_id,))
                        conn.execute(
                            "INSERT INTO memory_vectors (memory_id, namespace, embedding, payload) VALUES (?, ?, ?, ?)",
                            (memory_id, namespace, blob, payload),
                        )
                    conn.commit()
                except sqlite3.Error:
                    conn.rollback()
                    raise
        except sqlite3.Error as e:
            raise self._fail(
                "upsert", e,
                first.namespace if first else None,
                first.id if first else None,
            ) from e
        for memory_id, namespace, _, _ in prepared:
            logger.debug("Vector %s upserted (namespace %s)", memory_id, namespace)

    def delete_by_ids(self, ids: Iterable[str]) -> int:
        """Delete entries by id, regardless of namespace. Returns entries removed."""
        ids = list(ids)
        deleted = 0
        try:
            with self._lock:
                conn = self._connection()
                try:
                    for memory_id in ids:
                        cur = conn.execute("DELETE FROM memory_vectors WHERE memory_id = ?", (memory_id,))
                        deleted += max(cur.rowcount, 0)
                    conn.commit()
                except sqlite3.Error:
                    conn.rollback()
                    raise
        except sqlite3.Error as e:
            raise self._fail("delete", e, memory_id=ids[0] if ids else None) from e
        logger.debug("Deleted %d vector(s) for ids %s", deleted, ids)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(
        self,
        vector: Sequence[float],
        namespace: str,
        top_k: int = 10,
        return_metadata: bool = True,
    ) -> List[VectorMatch]:
        """Top-K nearest entries within one namespace, nearest first."""
        values = self._check_dimension(vector, "query", namespace)
        try:
            with self._lock:
                rows = self._connection().execute(
                    """SELECT memory_id, distance, payload FROM memory_vectors
                       WHERE embedding MATCH ? AND k = ? AND namespace = ?
                       ORDER BY distance""",
                    (_serialize_f32(values), top_k, namespace),
                ).fetchall()
        except sqlite3.Error as e:
            raise self._fail("query", e, namespace) from e

        matches = []
        for memory_id, distance, payload in rows:
            if distance is None:
                # sqlite-vec reports no cosine distance when either vector has zero norm
                logger.warning("Skipping vector %s in namespace %s: distance undefined", memory_id, namespace)
                continue
            metadata = None
            if return_metadata:
                metadata = self._load_payload(payload, namespace, memory_id)
            matches.append(VectorMatch(id=memory_id, score=1.0 - float(distance), metadata=metadata))
        return matches

    def count(self, namespace: Optional[str] = None) -> int:
        try:
            with self._lock:
                conn = self._connection()
                if namespace is None:
                    row = conn.execute("SELECT COUNT(*) FROM memory_vectors").fetchone()
                else:
                    row = conn.execute(
                        "SELECT COUNT(*) FROM memory_vectors WHERE namespace = ?", (namespace,)
                    ).fetchone()
            return row[0]
        except sqlite3.Error as e:
            raise self._fail("count", e, namespace) from e

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _load_payload(self, payload: Optional[str], namespace: str, memory_id: str) -> Dict[str, Any]:
        if not payload:
            return {}
        try:
            data = json.loads(crypto.decrypt(payload))
        except ValueError as e:
            raise self._fail("payload decode", e, namespace, memory_id) from e
        return data if isinstance(data, dict) else {}
