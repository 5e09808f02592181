from __future__ import annotations
import asyncio
import json
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from counsel_retrieval.application.services.embedder import EmbeddingProvider
from counsel_retrieval.application.services.embedding_cache import EmbeddingCache
from counsel_retrieval.application.services.errors import (
    DimensionMismatchError,
    EmbeddingError,
    PersistenceError,
    QueryEmbeddingError,
)
from counsel_retrieval.application.services.models import (
    CollectionSnapshot,
    Document,
    MemoryStats,
    SearchResult,
)
from counsel_retrieval.application.services.persistence import CollectionFile
from counsel_retrieval.application.services.similarity import as_vector, cosine_similarity, paginate, rank


class VectorStore:
    """
    Embedded, file-persisted store for one collection.

    Holds the ordered documents plus an embedding cache keyed by exact content,
    mirrors both to <persist_directory>/<collection_name>.json after every
    mutation, and ranks documents against a query by cosine similarity.

    Mutations are serialized by a per-collection lock. Searches read a snapshot
    of the document list, embed the query without the lock, then take it to fill
    the cache for documents whose embedding failed at ingestion time; those
    fills are written out by flush(). A search that overlaps a clear returns
    nothing.
    """

    def __init__(
        self,
        embeddings: EmbeddingProvider,
        collection_name: str,
        persist_directory: str | Path,
        *,
        threshold: float = 0.6,
        default_page_size: int = 10,
        batch_size: int = 100,
        embedding_timeout_s: Optional[float] = 30.0,
        persist_max_attempts: int = 3,
        dimension: Optional[int] = None,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if default_page_size <= 0:
            raise ValueError("default_page_size must be positive")
        self.embeddings = embeddings
        self.collection_name = collection_name
        self.file = CollectionFile(persist_directory, collection_name)
        self.threshold = threshold
        self.default_page_size = default_page_size
        self.batch_size = batch_size
        self.embedding_timeout_s = embedding_timeout_s
        self.persist_max_attempts = persist_max_attempts

        self.cache = EmbeddingCache(dimension=dimension)
        self._documents: List[Document] = []
        self._lock = asyncio.Lock()
        self._dirty = False     # cache filled by a search since the last save
        self._durable = True    # last save succeeded
        self._generation = 0    # bumped by clear_collection()

    @classmethod
    async def open(cls, embeddings: EmbeddingProvider, collection_name: str, persist_directory: str | Path, **kwargs: Any) -> "VectorStore":
        """Construct a store and load whatever is persisted for it."""
        store = cls(embeddings, collection_name, persist_directory, **kwargs)
        await store.load()
        return store

    @property
    def documents(self) -> Tuple[Document, ...]:
        return tuple(self._documents)

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    async def load(self) -> None:
        documents, pairs = await self.file.load()
        self._documents = documents
        self.cache.clear()
        for content, vector in pairs:
            try:
                self.cache.put(content, vector)
            except (DimensionMismatchError, ValueError) as e:
                logger.bind(event="collection_embedding_rejected", collection=self.collection_name).warning(
                    "Dropping cached embedding from {}: {}", self.file.path, e
                )
        self._dirty = False

    def _snapshot(self) -> CollectionSnapshot:
        return CollectionSnapshot(
            documents=list(self._documents),
            embeddings=[(content, vec.tolist()) for content, vec in self.cache.items()],
        )

    async def _persist(self) -> None:
        # in-memory state stays authoritative even if the disk write fails.
        # Anything cached after the snapshot is taken marks the store dirty again.
        self._dirty = False
        snapshot = self._snapshot()
        try:
            await self.file.save(snapshot, max_attempts=self.persist_max_attempts)
        except PersistenceError as e:
            self._durable = False
            logger.bind(event="collection_save_failed", collection=self.collection_name, path=str(self.file.path)).error(
                "Collection '{}' is NOT durable: {}", self.collection_name, e
            )
            return
        self._durable = True

    async def flush(self) -> None:
        """Persist embeddings computed lazily by searches (or retry a failed save)."""
        async with self._lock:
            if self._dirty or not self._durable:
                await self._persist()

    # ------------------------------------------------------------------
    # embedding
    # ------------------------------------------------------------------
    async def _call(self, coro):
        if self.embedding_timeout_s is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=self.embedding_timeout_s)

    async def _embed_one(self, text: str) -> Optional[np.ndarray]:
        try:
            return as_vector(await self._call(self.embeddings.embed_query(text)))
        except Exception as e:
            logger.warning(
                "Embedding failed for a document in '{}' ({}: {}); skipping it",
                self.collection_name, type(e).__name__, e,
            )
            return None

    async def _embed_batch(self, texts: List[str]) -> int:
        """Embed and cache uncached, non-empty texts. Returns how many were cached."""
        pending = list(dict.fromkeys(t for t in texts if t and t not in self.cache))
        if not pending:
            return 0

        vectors: Optional[List[np.ndarray]] = None
        try:
            raw = await self._call(self.embeddings.embed_documents(pending))
            if len(raw) != len(pending):
                raise EmbeddingError(f"provider returned {len(raw)} vectors for {len(pending)} texts")
            vectors = [as_vector(v) for v in raw]
        except Exception as e:
            logger.warning(
                "Batch embedding of {} text(s) failed ({}: {}); retrying one by one",
                len(pending), type(e).__name__, e,
            )

        if vectors is not None:
            for text, vec in zip(pending, vectors):
                self.cache.put(text, vec)
            return len(pending)

        cached = 0
        for text in pending:
            vec = await self._embed_one(text)
            if vec is not None:
                self.cache.put(text, vec)
                cached += 1
        return cached

    async def _embed_missing(self, documents: Sequence[Document]) -> int:
        cached = 0
        for start in range(0, len(documents), self.batch_size):
            batch = documents[start:start + self.batch_size]
            cached += await self._embed_batch([d.page_content for d in batch])
        return cached

    async def _embed_query(self, query: str) -> np.ndarray:
        try:
            return as_vector(await self._call(self.embeddings.embed_query(query)))
        except Exception as e:
            raise QueryEmbeddingError(f"Could not embed query: {type(e).__name__}: {e}") from e

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    async def add_documents(self, documents: Sequence[Document | Mapping[str, Any]]) -> None:
        """
        Append documents in input order, embedding and caching each new content.

        A document whose embedding fails is still appended; it is embedded again
        the first time a search reaches it. The whole collection is saved once
        all batches are processed. An empty list does nothing.
        """
        docs = [d if isinstance(d, Document) else Document.model_validate(d) for d in documents]
        if not docs:
            return

        async with self._lock:
            embedded = 0
            for start in range(0, len(docs), self.batch_size):
                batch = docs[start:start + self.batch_size]
                embedded += await self._embed_batch([d.page_content for d in batch])
                self._documents.extend(batch)

            logger.info(
                "Added {} document(s) to collection '{}' ({} newly embedded, {} total)",
                len(docs), self.collection_name, embedded, len(self._documents),
            )
            await self._persist()

    async def search(
        self,
        query: str,
        k: int = 5,
        threshold: Optional[float] = None,
        page: int = 1,
    ) -> SearchResult:
        """
        Rank stored documents by cosine similarity to `query`.

        Keeps documents scoring >= threshold, sorts them best first (stable on
        ties) and returns page `page` of size `k` (or default_page_size when
        k <= 0). `total` counts every document that passed the threshold.

        Raises QueryEmbeddingError if the query cannot be embedded and
        DimensionMismatchError if query and document vectors differ in length.
        """
        page_size = k if k > 0 else self.default_page_size
        page = max(page, 1)
        threshold = self.threshold if threshold is None else threshold

        if not self._documents:
            return SearchResult(page=page, page_size=page_size)

        documents = list(self._documents)
        generation = self._generation
        query_vec = await self._embed_query(query)

        # lazy cache fills are mutations: never interleave them with a clear
        async with self._lock:
            if generation != self._generation:
                logger.debug("Collection '{}' was cleared during the search; no results", self.collection_name)
                return SearchResult(page=page, page_size=page_size)

            if await self._embed_missing(documents):
                self._dirty = True

            scored: List[Tuple[Document, float]] = []
            for doc in documents:
                if not doc.page_content:
                    continue
                vec = self.cache.get(doc.page_content)
                if vec is None:
                    continue  # embedding failed again; skip
                scored.append((doc, cosine_similarity(query_vec, vec)))

        ranked = rank(scored, threshold)
        hits = paginate(ranked, page_size, page)
        logger.debug(
            "Search in '{}': {} scored, {} >= {}, returning {} (page {})",
            self.collection_name, len(scored), len(ranked), threshold, len(hits), page,
        )
        return SearchResult(hits=hits, total=len(ranked), page=page, page_size=page_size)

    async def similarity_search_with_score(
        self,
        query: str,
        k: int = 5,
        threshold: Optional[float] = None,
        page: int = 1,
    ) -> List[Tuple[Document, float]]:
        """Like search(), but a failed search is logged and returns no results."""
        try:
            result = await self.search(query, k=k, threshold=threshold, page=page)
        except DimensionMismatchError:
            raise
        except Exception:
            logger.exception("Error in similarity_search_with_score for collection '{}'", self.collection_name)
            return []
        return result.hits

    async def clear_collection(self) -> None:
        async with self._lock:
            self._generation += 1
            self._documents = []
            self.cache.clear()
            logger.info("Cleared collection '{}'", self.collection_name)
            await self._persist()

    def get_document_count(self) -> int:
        return len(self._documents)

    def get_memory_stats(self) -> MemoryStats:
        # rough accounting for visibility only
        text_bytes = sum(len(d.page_content.encode("utf-8")) for d in self._documents)
        metadata_bytes = sum(len(json.dumps(d.metadata)) for d in self._documents)
        total = text_bytes + metadata_bytes + self.cache.nbytes
        return MemoryStats(
            documents_count=len(self._documents),
            cache_size=len(self.cache),
            estimated_memory_usage_mb=total / (1024 * 1024),
            durable=self._durable,
        )

    def __repr__(self) -> str:
        return f"VectorStore(collection={self.collection_name!r}, path={str(self.file.path)!r}, documents={len(self._documents)})"
