"""
MCP Memory Bridge -- process-wide MemoryEngine used by the MCP and HTTP surfaces.

The engine is built lazily from environment settings on first use and closed
at interpreter exit. Tests call ``reset_engine()`` between cases, or install
their own engine with ``set_engine()``.
"""

import atexit
import logging
import threading
from typing import Optional

from mcp_memory.config import Settings
from mcp_memory.engine import MemoryEngine

logger = logging.getLogger("mcp_memory.bridge")

_engine_instance: Optional[MemoryEngine] = None
_engine_lock = threading.Lock()
_atexit_registered = False


def get_engine() -> MemoryEngine:
    """Get or create the MemoryEngine singleton (thread-safe)."""
    global _engine_instance, _atexit_registered
    if _engine_instance is not None:
        return _engine_instance
    with _engine_lock:
        if _engine_instance is not None:
            return _engine_instance
        settings = Settings.from_env()
        _engine_instance = MemoryEngine.from_settings(settings)
        logger.info("Memory engine ready (records=%s, vectors=%s)", settings.record_db, settings.vector_db)
        if not _atexit_registered:
            atexit.register(close_engine)
            _atexit_registered = True
    return _engine_instance


def set_engine(engine: Optional[MemoryEngine]) -> None:
    """Install a specific engine (or None to force a rebuild on next use)."""
    global _engine_instance
    with _engine_lock:
        _engine_instance = engine


def close_engine() -> None:
    """Close the engine's store connections on process exit."""
    global _engine_instance
    if _engine_instance is not None:
        try:
            _engine_instance.close()
        except Exception as e:
            logger.debug("Engine close failed: %s", e)


def reset_engine() -> None:
    """Close and drop the singleton (useful for testing)."""
    global _engine_instance
    close_engine()
    _engine_instance = None
