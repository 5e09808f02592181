from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List
from collections.abc import Mapping

from loguru import logger
import ollama

from counsel_retrieval.application.services.errors import EmbeddingError


@dataclass
class OllamaEmbedder:
    """Embeddings from a local Ollama model (e.g. nomic-embed-text, all-minilm)."""
    model: str
    host: str
    _client: ollama.AsyncClient | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        logger.info("Initialized Ollama embedder with model '{}' at {}", self.model, self.host)

    @property
    def client(self) -> ollama.AsyncClient:
        if self._client is None:
            self._client = ollama.AsyncClient(host=self.host)
        return self._client

    @staticmethod
    def _extract_embeddings(resp: Any) -> List[List[float]]:
        """
        The `ollama` python client may return a typed EmbedResponse
        (with .embeddings) or a plain mapping, depending on version.
        """
        embeddings = getattr(resp, "embeddings", None)
        if embeddings is None and isinstance(resp, Mapping):
            embeddings = resp.get("embeddings")
        if not embeddings:
            raise EmbeddingError(f"Ollama returned no embeddings (model='{_model_hint(resp)}')")
        return [list(map(float, vec)) for vec in embeddings]

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        resp = await self.client.embed(model=self.model, input=texts)
        vectors = self._extract_embeddings(resp)
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Ollama returned {len(vectors)} embeddings for {len(texts)} inputs"
            )
        return vectors

    async def embed_query(self, text: str) -> List[float]:
        resp = await self.client.embed(model=self.model, input=text)
        return self._extract_embeddings(resp)[0]


def _model_hint(resp: Any) -> str:
    model = getattr(resp, "model", None)
    if model is None and isinstance(resp, Mapping):
        model = resp.get("model")
    return str(model or "?")
