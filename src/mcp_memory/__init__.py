"""MCP Memory -- per-user semantic memory store.

Direct Python API -- no MCP server required::

    from mcp_memory import MemoryEngine, Settings
    engine = MemoryEngine.from_settings(Settings.from_env())
    memory_id = await engine.remember("I like dark roast coffee", "alice")
    hits = await engine.search("coffee preference", "alice")

Serve it to agents with ``mcp-memory serve`` (stdio) or ``mcp-memory serve-http``.
"""

__version__ = "0.1.0"

from mcp_memory.config import Settings
from mcp_memory.engine import MemoryChange, MemoryEngine, SearchHit
from mcp_memory.errors import (
    EmbeddingError,
    MemoryStoreError,
    NotFoundError,
    RecordStoreError,
    StoreError,
    ValidationError,
    VectorIndexError,
)
from mcp_memory.records import MemoryRecord, RecordStore
from mcp_memory.vectors import VectorIndex

__all__ = [
    "__version__",
    "Settings",
    "MemoryEngine",
    "MemoryChange",
    "SearchHit",
    "MemoryRecord",
    "RecordStore",
    "VectorIndex",
    "MemoryStoreError",
    "ValidationError",
    "EmbeddingError",
    "StoreError",
    "RecordStoreError",
    "VectorIndexError",
    "NotFoundError",
]
