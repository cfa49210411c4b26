"""MCP Memory test configuration."""
import hashlib
import math
import re
import sys
from pathlib import Path

import pytest

# Ensure mcp_memory is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mcp_memory.embeddings import EmbeddingProvider  # noqa: E402

CONCEPT_DIM = 32

# Words mapped onto shared axes so related statements score as similar.
# Every other word gets its own hashed axis in dims 8..31.
_CONCEPT_AXES = {
    "coffee": (0, 1.0), "roast": (0, 1.0), "espresso": (0, 1.0),
    "tea": (1, 1.0),
    "like": (2, 0.5), "love": (2, 0.5), "prefer": (2, 0.5), "preference": (2, 0.5),
}
_STOPWORDS = {"i", "a", "an", "the", "my", "is", "to", "of"}


class ConceptEmbedder(EmbeddingProvider):
    """Deterministic bag-of-concepts embedder used in place of a model.

    "I like dark roast coffee" vs "coffee preference" scores about 0.88;
    "I like tea" vs "coffee preference" scores 0.2.
    """

    name = "concept"

    def __init__(self):
        super().__init__(CONCEPT_DIM)
        self.calls = 0

    def _encode(self, text):
        self.calls += 1
        vec = [0.0] * CONCEPT_DIM
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            if word in _STOPWORDS:
                continue
            if word in _CONCEPT_AXES:
                axis, weight = _CONCEPT_AXES[word]
            else:
                axis = 8 + int(hashlib.md5(word.encode()).hexdigest(), 16) % (CONCEPT_DIM - 8)
                weight = 1.0
            vec[axis] += weight
        norm = math.sqrt(sum(x * x for x in vec))
        if norm == 0:
            vec[7] = 1.0
            return vec
        return [x / norm for x in vec]


@pytest.fixture
def tmp_memory_home(tmp_path, monkeypatch):
    """Temporary MEMORY_HOME with encryption disabled for deterministic output."""
    home = tmp_path / ".mcp-memory"
    home.mkdir()
    monkeypatch.setenv("MEMORY_HOME", str(home))
    monkeypatch.setenv("MEMORY_ENCRYPT", "0")
    for var in ("MEMORY_RECORD_DB", "MEMORY_VECTOR_DB", "MEMORY_NAMESPACE", "MEMORY_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    from mcp_memory.crypto import reset_crypto_state

    reset_crypto_state()
    yield home
    reset_crypto_state()


@pytest.fixture
def tmp_memory_home_encrypted(tmp_memory_home, monkeypatch):
    """Temporary MEMORY_HOME with encryption enabled."""
    monkeypatch.setenv("MEMORY_ENCRYPT", "1")
    from mcp_memory.crypto import reset_crypto_state

    reset_crypto_state()
    yield tmp_memory_home


@pytest.fixture
def embedder():
    return ConceptEmbedder()


@pytest.fixture
def records(tmp_memory_home):
    """Create a fresh RecordStore for testing."""
    from mcp_memory.records import RecordStore

    store = RecordStore(tmp_memory_home / "records.db")
    store.create_table()
    yield store
    store.close()


@pytest.fixture
def vectors(tmp_memory_home):
    """Create a fresh VectorIndex for testing."""
    from mcp_memory.vectors import VectorIndex

    index = VectorIndex(tmp_memory_home / "vectors.db", CONCEPT_DIM)
    index.create_index()
    yield index
    index.close()


@pytest.fixture
def engine(tmp_memory_home, embedder):
    """A MemoryEngine over fresh stores and the concept embedder."""
    from mcp_memory.engine import MemoryEngine
    from mcp_memory.records import RecordStore
    from mcp_memory.vectors import VectorIndex

    eng = MemoryEngine(
        RecordStore(tmp_memory_home / "records.db"),
        VectorIndex(tmp_memory_home / "vectors.db", CONCEPT_DIM),
        embedder,
    )
    yield eng
    eng.close()


@pytest.fixture
def bridge_engine(engine):
    """Install ``engine`` as the bridge singleton used by the MCP/HTTP surfaces."""
    from mcp_memory.bridge import reset_engine, set_engine

    set_engine(engine)
    yield engine
    set_engine(None)
    reset_engine()
