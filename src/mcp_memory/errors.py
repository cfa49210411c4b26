"""
MCP Memory Errors -- typed failures raised by the stores and the engine.

Every error carries the operation, namespace and memory id it concerns so the
surfaces can show a readable message without leaking a raw store exception.
"""

from typing import Optional


class MemoryStoreError(Exception):
    """Base class for every failure surfaced by the memory engine."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        namespace: Optional[str] = None,
        memory_id: Optional[str] = None,
    ):
        self.message = message
        self.operation = operation
        self.namespace = namespace
        self.memory_id = memory_id
        super().__init__(self._describe())

    def _describe(self) -> str:
        parts = []
        if self.operation:
            parts.append(self.operation)
        if self.memory_id:
            parts.append(f"id={self.memory_id}")
        if self.namespace:
            parts.append(f"namespace={self.namespace}")
        if not parts:
            return self.message
        return f"{self.message} ({', '.join(parts)})"


class ValidationError(MemoryStoreError):
    """Missing or empty input, rejected before any store is touched."""


class EmbeddingError(MemoryStoreError):
    """The embedding provider is unavailable or returned no vector."""


class StoreError(MemoryStoreError):
    """An underlying store call failed."""


class RecordStoreError(StoreError):
    """The relational record store failed."""


class VectorIndexError(StoreError):
    """The vector similarity index failed."""


class NotFoundError(MemoryStoreError):
    """No record matched (id, namespace)."""
