"""
MCP Memory Config -- environment-driven settings.

All values are read lazily from ``MEMORY_*`` environment variables so tests
can point MEMORY_HOME at a temporary directory before anything is opened.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger("mcp_memory.config")

DEFAULT_TOP_K = 10
DEFAULT_MIN_SCORE = 0.5
DEFAULT_EMBEDDING_DIM = 384
DEFAULT_EMBED_MODEL = "BAAI/bge-small-en-v1.5"
DEFAULT_ONNX_DIR = "~/.cache/mcp-memory/models/bge-small-en-v1.5-onnx"
EMBED_BACKENDS = ("auto", "onnx", "sentence-transformers", "hash")


def memory_home() -> Path:
    """Resolve MEMORY_HOME lazily so tests can override via env var."""
    return Path(os.environ.get("MEMORY_HOME", str(Path.home() / ".mcp-memory")))


def _env_int(name: str, default: int, min_val: int, max_val: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default
    return max(min_val, min(value, max_val))


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.environ.get(name)
    return Path(os.path.expanduser(raw)) if raw else default


@dataclass(frozen=True)
class Settings:
    """Resolved runtime configuration."""

    home: Path
    record_db: Path
    vector_db: Path
    embed_backend: str = "auto"
    embed_model: str = DEFAULT_EMBED_MODEL
    onnx_model_dir: Path = Path(os.path.expanduser(DEFAULT_ONNX_DIR))
    embedding_dim: int = DEFAULT_EMBEDDING_DIM
    top_k: int = DEFAULT_TOP_K
    min_score: float = DEFAULT_MIN_SCORE
    max_content_size: int = 1_000_000
    default_namespace: Optional[str] = None
    api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        home = memory_home()
        backend = os.environ.get("MEMORY_EMBED_BACKEND", "auto").strip().lower()
        if backend not in EMBED_BACKENDS:
            logger.warning("Unknown MEMORY_EMBED_BACKEND=%r, using 'auto'", backend)
            backend = "auto"
        return cls(
            home=home,
            record_db=_env_path("MEMORY_RECORD_DB", home / "records.db"),
            vector_db=_env_path("MEMORY_VECTOR_DB", home / "vectors.db"),
            embed_backend=backend,
            embed_model=os.environ.get("MEMORY_EMBED_MODEL", DEFAULT_EMBED_MODEL),
            onnx_model_dir=_env_path("MEMORY_ONNX_MODEL_DIR", Path(os.path.expanduser(DEFAULT_ONNX_DIR))),
            embedding_dim=_env_int("MEMORY_EMBEDDING_DIM", DEFAULT_EMBEDDING_DIM, 1, 8192),
            top_k=_env_int("MEMORY_TOP_K", DEFAULT_TOP_K, 1, 1000),
            min_score=_env_float("MEMORY_MIN_SCORE", DEFAULT_MIN_SCORE),
            max_content_size=_env_int("MEMORY_MAX_CONTENT_SIZE", 1_000_000, 1, 100_000_000),
            default_namespace=os.environ.get("MEMORY_NAMESPACE") or None,
            api_key=os.environ.get("MEMORY_API_KEY") or None,
        )
