# Embedding providers: the contract the vector store consumes, a dependency-free
# local fallback, and a factory that picks the configured backend.
from __future__ import annotations
from typing import Dict, List, Protocol, Tuple, runtime_checkable

import numpy as np
from loguru import logger

from counsel_retrieval.application.settings import Settings, get_settings


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed_query(self, text: str) -> List[float]: ...

    async def embed_documents(self, texts: List[str]) -> List[List[float]]: ...


class HashEmbedder:
    """
    Deterministic character-hash embedding. Not semantic; used when no model
    is configured so the store still works end to end (and in tests).
    """

    def __init__(self, dimension: int = 384):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def _hash(self, text: str) -> List[float]:
        vec = np.zeros(self.dimension, dtype=np.float64)
        # each character's code point lands in slot i % dim
        for i, ch in enumerate(text or ""):
            vec[i % self.dimension] += ord(ch) / 255.0
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec = vec / norm
        return vec.tolist()

    async def embed_query(self, text: str) -> List[float]:
        return self._hash(text)

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self._hash(t) for t in texts]


_providers: Dict[Tuple[str, str], EmbeddingProvider] = {}


def get_embeddings(model_name: str | None = None, settings: Settings | None = None) -> EmbeddingProvider:
    """
    Return the provider named by settings.embedding_provider.
    One instance per (provider, model) so models are loaded once per process.
    """
    settings = settings or get_settings()
    kind = settings.embedding_provider
    model = model_name or settings.embedding_model_name
    key = (kind, model if kind != "hash" else str(settings.embedding_dim))

    if key in _providers:
        return _providers[key]

    if kind == "sentence-transformers":
        from counsel_retrieval.application.services.st_embedder import STEmbedder
        provider: EmbeddingProvider = STEmbedder(model_name=model, device=None)
    elif kind == "ollama":
        from counsel_retrieval.application.services.ollama_embedder import OllamaEmbedder
        provider = OllamaEmbedder(model=model, host=settings.ollama_host)
    else:
        logger.warning("Using local hash embeddings (dim={}); results are not semantic", settings.embedding_dim)
        provider = HashEmbedder(dimension=settings.embedding_dim)

    _providers[key] = provider
    return provider
