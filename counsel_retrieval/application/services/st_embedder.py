from __future__ import annotations
import asyncio
from typing import List
from loguru import logger

# Sentence Transformers (uses PyTorch under the hood)
from sentence_transformers import SentenceTransformer
import numpy as np


class STEmbedder:
    """Thin wrapper around SentenceTransformer exposing the async provider contract."""
    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2", device: str | None = None):
        logger.info("Loading sentence-transformer model: {}", model_name)
        self.model = SentenceTransformer(model_name, device=device)

    def embed(self, text: str) -> np.ndarray:
        # Returns shape (d,)
        vec = self.model.encode(text, normalize_embeddings=True)  # cosine-ready
        # ensure 1D np.ndarray float32
        return np.asarray(vec, dtype=np.float32).reshape(-1)

    def embed_many(self, texts: List[str]) -> np.ndarray:
        # Returns shape (n, d)
        mat = self.model.encode(texts, normalize_embeddings=True)
        return np.asarray(mat, dtype=np.float32).reshape(len(texts), -1)

    # encode() is CPU/GPU bound, keep it off the event loop
    async def embed_query(self, text: str) -> List[float]:
        vec = await asyncio.to_thread(self.embed, text)
        return vec.tolist()

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        mat = await asyncio.to_thread(self.embed_many, texts)
        return mat.tolist()
