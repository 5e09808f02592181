from __future__ import annotations
import asyncio
from pathlib import Path
from typing import Callable, Dict, List, Optional

from loguru import logger

from counsel_retrieval.application.settings import Settings, get_settings
from counsel_retrieval.application.services.embedder import EmbeddingProvider, get_embeddings
from counsel_retrieval.application.services.vector_store import VectorStore

EmbeddingsFactory = Callable[[Optional[str], Settings], EmbeddingProvider]


class StoreRegistry:
    """
    One live VectorStore per (collection name, persistence directory).

    Instances live until shutdown(): the app runs as a single long-lived
    process, so stores are never evicted. Create one registry per process (or
    per test) and pass it to whoever needs stores.
    """

    def __init__(self, settings: Settings | None = None, embeddings_factory: EmbeddingsFactory = get_embeddings):
        self.settings = settings or get_settings()
        self.embeddings_factory = embeddings_factory
        self._stores: Dict[str, VectorStore] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(collection_name: str, persist_directory: str | Path) -> str:
        return f"{collection_name}:{persist_directory}"

    async def get_or_create_store(
        self,
        collection_name: str,
        persist_directory: str | Path,
        embedding_model_name: str | None = None,
    ) -> VectorStore:
        key = self._key(collection_name, persist_directory)
        store = self._stores.get(key)
        if store is not None:
            return store

        # two first accesses must not both load the file
        async with self._lock:
            store = self._stores.get(key)
            if store is not None:
                return store

            logger.info("Creating VectorStore for collection '{}' in {}", collection_name, persist_directory)
            embeddings = self.embeddings_factory(embedding_model_name, self.settings)
            store = await VectorStore.open(
                embeddings,
                collection_name,
                persist_directory,
                threshold=self.settings.relevance_threshold,
                default_page_size=self.settings.default_page_size,
                batch_size=self.settings.embedding_batch_size,
                embedding_timeout_s=self.settings.embedding_timeout_s,
                persist_max_attempts=self.settings.persist_max_attempts,
            )
            self._stores[key] = store
            return store

    def keys(self) -> List[str]:
        return list(self._stores)

    def __contains__(self, key: object) -> bool:
        return key in self._stores

    def __len__(self) -> int:
        return len(self._stores)

    async def flush_all(self) -> None:
        # save failures are logged by the store itself and mark it non-durable
        for store in list(self._stores.values()):
            await store.flush()

    async def shutdown(self) -> None:
        """Flush every store and forget them all."""
        await self.flush_all()
        logger.info("Shutting down store registry ({} store(s))", len(self._stores))
        self._stores.clear()
