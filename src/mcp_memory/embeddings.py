"""
MCP Memory Embeddings -- text -> fixed-length vector providers.

Provides:
- OnnxEmbeddingProvider: bge-small-en-v1.5 via ONNX Runtime + tokenizers
- SentenceTransformerEmbeddingProvider: PyTorch fallback
- HashEmbeddingProvider: deterministic pseudo-embeddings, opt-in only
- create_embedding_provider(settings): picks a backend from MEMORY_EMBED_BACKEND

Every provider exposes ``async embed(text)``; inference runs on a small
thread pool so the event loop never blocks. Failures surface as
EmbeddingError -- there is no silent fallback to hash vectors.
"""

import asyncio
import hashlib
import importlib.util
import logging
import math
import os
import random
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

from mcp_memory.errors import EmbeddingError

logger = logging.getLogger("mcp_memory.embeddings")

_EMBEDDING_CACHE_MAX = 512
_EMBEDDING_EXECUTOR: Optional[ThreadPoolExecutor] = None


def _get_embedding_executor() -> ThreadPoolExecutor:
    """Get or create the thread pool executor for embedding operations."""
    global _EMBEDDING_EXECUTOR
    if _EMBEDDING_EXECUTOR is None:
        _EMBEDDING_EXECUTOR = ThreadPoolExecutor(max_workers=2, thread_name_prefix="embedding")
    return _EMBEDDING_EXECUTOR


def has_onnx_runtime() -> bool:
    return importlib.util.find_spec("onnxruntime") is not None


def has_sentence_transformers() -> bool:
    return importlib.util.find_spec("sentence_transformers") is not None


class EmbeddingProvider:
    """Base provider: subclasses implement ``_encode``.

    Results are kept in a small LRU cache keyed by the text digest.
    """

    name = "base"

    def __init__(self, dimension: int):
        self.dimension = dimension
        self._cache: OrderedDict = OrderedDict()

    def _encode(self, text: str) -> List[float]:
        raise NotImplementedError

    def embed_sync(self, text: str) -> List[float]:
        cache_key = hashlib.md5(text.encode()).hexdigest()
        if cache_key in self._cache:
            self._cache.move_to_end(cache_key)
            return self._cache[cache_key]

        vector = self._encode(text)
        if vector is None or len(vector) == 0:
            raise EmbeddingError("Failed to generate vector embedding", operation="embed")
        if len(vector) != self.dimension:
            raise EmbeddingError(
                f"{self.name} returned {len(vector)} dimensions, expected {self.dimension}",
                operation="embed",
            )
        if not all(math.isfinite(x) for x in vector):
            raise EmbeddingError(f"{self.name} returned a non-finite vector", operation="embed")
        # cosine similarity is undefined for a zero vector
        if not any(vector):
            raise EmbeddingError(f"{self.name} returned an all-zero vector", operation="embed")

        self._cache[cache_key] = vector
        while len(self._cache) > _EMBEDDING_CACHE_MAX:
            self._cache.popitem(last=False)
        return vector

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding without blocking the event loop."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(_get_embedding_executor(), self.embed_sync, text)
        except EmbeddingError:
            raise
        except Exception as e:
            logger.warning("%s embedding failed: %s", self.name, e)
            raise EmbeddingError(f"Embedding generation failed: {e}", operation="embed") from e

    def info(self) -> dict:
        return {"backend": self.name, "dimension": self.dimension, "cache_size": len(self._cache)}


# ---------------------------------------------------------------------------
# ONNX Runtime
# ---------------------------------------------------------------------------


def _onnx_encode(tokenizer, session, texts: List[str]):
    """Encode texts using ONNX Runtime. Returns L2-normalized embeddings."""
    import numpy as np

    batch = tokenizer.encode_batch(texts)
    ids = np.array([b.ids for b in batch], dtype=np.int64)
    mask = np.array([b.attention_mask for b in batch], dtype=np.int64)
    feed = {"input_ids": ids, "attention_mask": mask}
    input_names = {i.name for i in session.get_inputs()}
    if "token_type_ids" in input_names:
        feed["token_type_ids"] = np.zeros_like(ids)
    outputs = session.run(None, feed)
    embeddings = outputs[1] if len(outputs) > 1 else outputs[0]
    if embeddings.ndim == 3:
        # mean pooling over non-padding tokens
        mask_expanded = mask[:, :, np.newaxis].astype(np.float32)
        sum_emb = np.sum(embeddings * mask_expanded, axis=1)
        sum_mask = np.clip(np.sum(mask_expanded, axis=1), a_min=1e-9, a_max=None)
        embeddings = sum_emb / sum_mask
    norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
    return embeddings / np.clip(norms, a_min=1e-9, a_max=None)


class OnnxEmbeddingProvider(EmbeddingProvider):
    """ONNX Runtime model loaded lazily from ``model_dir``.

    The directory must contain ``model.onnx`` and ``tokenizer.json``.
    """

    name = "onnx"

    def __init__(self, model_dir, dimension: int = 384):
        super().__init__(dimension)
        self.model_dir = Path(model_dir)
        self._model = None

    def available(self) -> bool:
        return has_onnx_runtime() and (self.model_dir / "model.onnx").exists()

    def _load(self):
        if self._model is not None:
            return self._model
        if not (self.model_dir / "model.onnx").exists():
            raise EmbeddingError(f"ONNX model not found in {self.model_dir}", operation="embed")

        import contextlib
        import io

        import onnxruntime as ort
        from tokenizers import Tokenizer

        tokenizer = Tokenizer.from_file(str(self.model_dir / "tokenizer.json"))
        tokenizer.enable_padding(pad_id=0, pad_token="[PAD]")
        tokenizer.enable_truncation(max_length=512)
        sess_opts = ort.SessionOptions()
        sess_opts.log_severity_level = 4
        sess_opts.enable_cpu_mem_arena = False
        with contextlib.redirect_stderr(io.StringIO()):
            session = ort.InferenceSession(
                str(self.model_dir / "model.onnx"),
                sess_options=sess_opts,
                providers=["CPUExecutionProvider"],
            )
        self._model = (tokenizer, session)
        logger.info("Loaded ONNX embedding model from %s", self.model_dir)
        return self._model

    def _encode(self, text: str) -> List[float]:
        tokenizer, session = self._load()
        return _onnx_encode(tokenizer, session, [text])[0].tolist()


# ---------------------------------------------------------------------------
# sentence-transformers (PyTorch)
# ---------------------------------------------------------------------------


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    name = "sentence-transformers"

    def __init__(self, model_name: str = "BAAI/bge-small-en-v1.5", dimension: int = 384):
        super().__init__(dimension)
        self.model_name = model_name
        self._model = None

    def _encode(self, text: str) -> List[float]:
        if self._model is None:
            os.environ.setdefault("TQDM_DISABLE", "1")
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model_name)
            logger.info("Loaded sentence-transformers model %s", self.model_name)
        return self._model.encode(text, normalize_embeddings=True).tolist()


# ---------------------------------------------------------------------------
# Deterministic hash vectors
# ---------------------------------------------------------------------------


class HashEmbeddingProvider(EmbeddingProvider):
    """Deterministic pseudo-embedding seeded from the text digest.

    Identical texts map to identical unit vectors; nothing else is similar.
    Only used when MEMORY_EMBED_BACKEND=hash.
    """

    name = "hash"

    def _encode(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.md5(text.encode()).digest()[:4], byteorder="big")
        rng = random.Random(seed)
        vector = [rng.gauss(0, 1) for _ in range(self.dimension)]
        magnitude = math.sqrt(sum(x * x for x in vector))
        if magnitude == 0:
            return [1.0 / math.sqrt(self.dimension)] * self.dimension
        return [x / magnitude for x in vector]


def create_embedding_provider(settings) -> EmbeddingProvider:
    """Build the provider selected by ``settings.embed_backend``.

    ``auto`` prefers ONNX when onnxruntime and a downloaded model are present,
    then sentence-transformers.
    """
    backend = settings.embed_backend
    dim = settings.embedding_dim
    if backend == "hash":
        return HashEmbeddingProvider(dim)
    if backend == "sentence-transformers":
        return SentenceTransformerEmbeddingProvider(settings.embed_model, dim)

    onnx = OnnxEmbeddingProvider(settings.onnx_model_dir, dim)
    if backend == "onnx" or onnx.available():
        return onnx
    if has_sentence_transformers():
        return SentenceTransformerEmbeddingProvider(settings.embed_model, dim)
    logger.warning(
        "No embedding backend available (onnxruntime=%s, model dir %s, sentence-transformers=%s); "
        "embedding calls will fail",
        has_onnx_runtime(), settings.onnx_model_dir, has_sentence_transformers(),
    )
    return onnx
