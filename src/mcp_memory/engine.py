"""
MCP Memory Engine -- keeps the record store and the vector index in step.

Four write/read operations (remember, search, update, forget) plus list_all
and stats. Every call is scoped to exactly one namespace.

The two stores share no transaction. Each multi-store operation is an
explicit two-step sequence:

    remember  vector upsert, then record insert   (both required, no rollback)
    update    record update, then vector upsert   (vector step best-effort)
    forget    record delete, then vector delete   (vector step best-effort)

A memory whose halves disagree is a divergence. It is logged, never repaired.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, List, Optional

from mcp_memory.config import DEFAULT_MIN_SCORE, DEFAULT_TOP_K
from mcp_memory.embeddings import EmbeddingProvider
from mcp_memory.errors import (
    EmbeddingError,
    MemoryStoreError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from mcp_memory.records import MemoryRecord, RecordStore
from mcp_memory.vectors import VectorEntry, VectorIndex

logger = logging.getLogger("mcp_memory.engine")

MISSING_CONTENT = "Missing memory content (ID: {id})"


@dataclass
class SearchHit:
    id: str
    content: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "content": self.content, "score": self.score}


@dataclass
class MemoryChange:
    """Outcome of update/forget.

    ``rows_changed`` comes from the record store (the authoritative step).
    ``vector_synced`` is False when the secondary vector step failed, in
    which case ``vector_error`` holds the message that was logged.
    """

    id: str
    namespace: str
    rows_changed: int
    vector_synced: bool = True
    vector_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rows_changed": self.rows_changed,
            "vector_synced": self.vector_synced,
            "vector_error": self.vector_error,
        }


class MemoryEngine:
    """Orchestrates the embedding provider, record store and vector index."""

    def __init__(
        self,
        records: RecordStore,
        vectors: VectorIndex,
        embedder: EmbeddingProvider,
        top_k: int = DEFAULT_TOP_K,
        min_score: float = DEFAULT_MIN_SCORE,
        max_content_size: int = 1_000_000,
    ):
        self.records = records
        self.vectors = vectors
        self.embedder = embedder
        self.top_k = top_k
        self.min_score = min_score
        self.max_content_size = max_content_size
        # Set after the first successful schema check. Two callers racing
        # here just run the idempotent CREATE ... IF NOT EXISTS twice.
        self._schema_ready = False

    @classmethod
    def from_settings(cls, settings) -> "MemoryEngine":
        from mcp_memory.embeddings import create_embedding_provider

        return cls(
            RecordStore(settings.record_db),
            VectorIndex(settings.vector_db, settings.embedding_dim),
            create_embedding_provider(settings),
            top_k=settings.top_k,
            min_score=settings.min_score,
            max_content_size=settings.max_content_size,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self, fn, *args, **kwargs):
        """Run a blocking store call on the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    async def _ensure_ready(self) -> None:
        if self._schema_ready:
            return
        await self._run(self.records.create_table)
        await self._run(self.vectors.create_index)
        self._schema_ready = True

    async def _embed(self, text: str, operation: str, namespace: str, memory_id: Optional[str] = None) -> List[float]:
        try:
            vector = await self.embedder.embed(text)
        except EmbeddingError as e:
            raise EmbeddingError(e.message, operation=operation, namespace=namespace, memory_id=memory_id) from e
        if not vector:
            raise EmbeddingError(
                "Failed to generate vector embedding", operation=operation, namespace=namespace, memory_id=memory_id
            )
        return vector

    def _require_namespace(self, namespace: Optional[str], operation: str) -> str:
        if not isinstance(namespace, str) or not namespace.strip():
            raise ValidationError("namespace is required", operation=operation)
        return namespace

    def _require_id(self, memory_id: Optional[str], operation: str, namespace: str) -> str:
        if not isinstance(memory_id, str) or not memory_id.strip():
            raise ValidationError("memory id is required", operation=operation, namespace=namespace)
        return memory_id

    def _require_content(self, content: Optional[str], operation: str, namespace: str, memory_id=None) -> str:
        if not isinstance(content, str) or not content.strip():
            raise ValidationError(
                "content must be non-empty text", operation=operation, namespace=namespace, memory_id=memory_id
            )
        if len(content) > self.max_content_size:
            raise ValidationError(
                f"content exceeds {self.max_content_size} characters ({len(content)})",
                operation=operation,
                namespace=namespace,
                memory_id=memory_id,
            )
        return content

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def remember(self, content: str, namespace: str) -> str:
        """Store a new memory and return its generated id.

        The vector entry is written first, then the record under the same id.
        If the record insert fails the vector entry is left in place and the
        error propagates.
        """
        namespace = self._require_namespace(namespace, "remember")
        content = self._require_content(content, "remember", namespace)
        await self._ensure_ready()

        memory_id = str(uuid.uuid4())
        vector = await self._embed(content, "remember", namespace, memory_id)

        entry = VectorEntry(id=memory_id, vector=vector, namespace=namespace, payload={"content": content})
        await self._run(self.vectors.upsert, [entry])
        try:
            await self._run(self.records.insert, memory_id, namespace, content)
        except StoreError:
            logger.error(
                "Record insert failed after vector upsert; orphaned vector %s left in namespace %s",
                memory_id, namespace,
            )
            raise

        logger.info("Remembered %s in namespace %s", memory_id, namespace)
        return memory_id

    async def search(
        self,
        query: str,
        namespace: str,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[SearchHit]:
        """Return memories in ``namespace`` whose similarity to ``query`` is above ``min_score``.

        Content comes from the vector payload. Results are ordered by score,
        highest first; an empty list means nothing cleared the threshold.
        """
        namespace = self._require_namespace(namespace, "search")
        query = self._require_content(query, "search", namespace)
        k = self.top_k if top_k is None else top_k
        threshold = self.min_score if min_score is None else min_score
        if k < 1:
            raise ValidationError("top_k must be at least 1", operation="search", namespace=namespace)
        await self._ensure_ready()

        vector = await self._embed(query, "search", namespace)
        matches = await self._run(self.vectors.query, vector, namespace, k, True)

        hits = []
        for match in matches:
            if match.score <= threshold:
                continue
            content = (match.metadata or {}).get("content")
            if not content:
                logger.warning("Vector %s in namespace %s has no payload content", match.id, namespace)
                content = MISSING_CONTENT.format(id=match.id)
            hits.append(SearchHit(id=match.id, content=content, score=match.score))

        hits.sort(key=lambda h: h.score, reverse=True)
        logger.debug("Search in %s returned %d of %d matches", namespace, len(hits), len(matches))
        return hits

    async def update(self, memory_id: str, namespace: str, content: str) -> MemoryChange:
        """Replace a memory's content, then re-embed it.

        Raises NotFoundError when no record matches (id, namespace). A failed
        re-embed or vector upsert is logged and reported on the result; the
        record update stands.
        """
        namespace = self._require_namespace(namespace, "update")
        memory_id = self._require_id(memory_id, "update", namespace)
        content = self._require_content(content, "update", namespace, memory_id)
        await self._ensure_ready()

        rows = await self._run(self.records.update_content_by_id_and_namespace, memory_id, namespace, content)
        if rows == 0:
            raise NotFoundError(
                f"Memory {memory_id} not found in namespace {namespace}",
                operation="update",
                namespace=namespace,
                memory_id=memory_id,
            )

        change = MemoryChange(id=memory_id, namespace=namespace, rows_changed=rows)
        try:
            vector = await self._embed(content, "update", namespace, memory_id)
            entry = VectorEntry(id=memory_id, vector=vector, namespace=namespace, payload={"content": content})
            await self._run(self.vectors.upsert, [entry])
        except MemoryStoreError as e:
            logger.warning("Record %s updated but its vector was not (namespace %s): %s", memory_id, namespace, e)
            change.vector_synced = False
            change.vector_error = str(e)
        else:
            logger.info("Updated %s in namespace %s", memory_id, namespace)
        return change

    async def forget(self, memory_id: str, namespace: str) -> MemoryChange:
        """Delete a memory's record, then its vector entry.

        The vector delete is by id only and is not namespace-scoped by the
        index. Its failure is logged and reported on the result. Forgetting an
        id that is already gone succeeds with ``rows_changed == 0``.
        """
        namespace = self._require_namespace(namespace, "forget")
        memory_id = self._require_id(memory_id, "forget", namespace)
        await self._ensure_ready()

        rows = await self._run(self.records.delete_by_id_and_namespace, memory_id, namespace)
        change = MemoryChange(id=memory_id, namespace=namespace, rows_changed=rows)
        try:
            await self._run(self.vectors.delete_by_ids, [memory_id])
        except MemoryStoreError as e:
            logger.warning("Record %s deleted but its vector was not (namespace %s): %s", memory_id, namespace, e)
            change.vector_synced = False
            change.vector_error = str(e)
        else:
            logger.info("Forgot %s in namespace %s (rows=%d)", memory_id, namespace, rows)
        return change

    async def list_all(self, namespace: str) -> List[MemoryRecord]:
        """All records in ``namespace``, most recent first."""
        namespace = self._require_namespace(namespace, "list")
        await self._ensure_ready()
        return await self._run(self.records.select_all_by_namespace, namespace)

    async def stats(self, namespace: Optional[str] = None) -> Dict[str, Any]:
        """Record and vector counts, overall or for one namespace.

        ``counts_differ`` only compares totals: one orphaned record and one
        orphaned vector cancel out and go unnoticed.
        """
        await self._ensure_ready()
        record_count = await self._run(self.records.count, namespace)
        vector_count = await self._run(self.vectors.count, namespace)
        return {
            "namespace": namespace,
            "records": record_count,
            "vectors": vector_count,
            "counts_differ": record_count != vector_count,
            "embedding": self.embedder.info(),
            "top_k": self.top_k,
            "min_score": self.min_score,
        }

    def close(self) -> None:
        self.records.close()
        self.vectors.close()
