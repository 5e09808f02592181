from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence
from loguru import logger

from counsel_retrieval.application.settings import Settings
from counsel_retrieval.application.services.errors import QueryEmbeddingError
from counsel_retrieval.application.services.models import (
    Document,
    IngestResult,
    OperationResult,
    Pagination,
    QueryResult,
    RetrievalResult,
)
from counsel_retrieval.application.services.registry import StoreRegistry


def _describe(e: Exception) -> str:
    return str(e) or type(e).__name__


@dataclass
class RetrievalService:
    """
    What the rest of the application talks to. Every method returns a
    structured result and never raises, so callers see {success: false, error}
    instead of an exception.
    """
    settings: Settings
    registry: StoreRegistry

    @classmethod
    def build(cls, settings: Settings) -> "RetrievalService":
        logger.info(
            "Using embedded vector store at {} (embeddings: {})",
            settings.vector_store_dir,
            settings.embedding_provider,
        )
        return cls(settings=settings, registry=StoreRegistry(settings=settings))

    def _target(self, collection_name: Optional[str], persist_directory: Optional[str]) -> tuple[str, str]:
        return (
            collection_name or self.settings.default_collection,
            persist_directory or self.settings.vector_store_dir,
        )

    async def query_store(
        self,
        query: str,
        collection_name: Optional[str] = None,
        persist_directory: Optional[str] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        page: int = 1,
    ) -> RetrievalResult:
        """
        Search one collection and format hits as {text, score, metadata}
        with pagination {page, pageSize, totalResults}.

        A query that cannot be embedded counts as "no results", not as a failure.
        """
        if not query or not query.strip():
            return RetrievalResult(success=False, error="Query is required")

        collection, directory = self._target(collection_name, persist_directory)
        limit = self.settings.default_k if limit is None else limit
        try:
            store = await self.registry.get_or_create_store(collection, directory)
            result = await store.search(query, k=limit, threshold=threshold, page=page)
        except QueryEmbeddingError as e:
            logger.error("Query embedding failed for collection '{}'; returning no results: {}", collection, e)
            return RetrievalResult(
                success=True,
                results=[],
                pagination=Pagination(
                    page=max(page, 1),
                    page_size=limit if limit > 0 else store.default_page_size,
                    total_results=0,
                ),
            )
        except Exception as e:
            logger.exception("Error querying vector store collection '{}'", collection)
            return RetrievalResult(success=False, error=_describe(e))

        return RetrievalResult(
            success=True,
            results=[
                QueryResult(text=doc.page_content, score=score, metadata=dict(doc.metadata))
                for (doc, score) in result.hits
            ],
            pagination=Pagination(page=result.page, page_size=result.page_size, total_results=result.total),
        )

    async def add_documents(
        self,
        documents: Sequence[Document | Mapping[str, Any]],
        collection_name: Optional[str] = None,
        persist_directory: Optional[str] = None,
    ) -> IngestResult:
        collection, directory = self._target(collection_name, persist_directory)
        try:
            docs = [d if isinstance(d, Document) else Document.model_validate(d) for d in documents]
            store = await self.registry.get_or_create_store(collection, directory)
            await store.add_documents(docs)
        except Exception as e:
            logger.exception("Error adding documents to collection '{}'", collection)
            return IngestResult(success=False, error=_describe(e))
        return IngestResult(success=True, added=len(docs), document_count=store.get_document_count())

    async def delete_collection(self, collection_name: str, persist_directory: Optional[str] = None) -> OperationResult:
        if not collection_name:
            return OperationResult(success=False, error="Collection name is required")

        collection, directory = self._target(collection_name, persist_directory)
        logger.info("Attempting to delete collection: {}", collection)
        try:
            store = await self.registry.get_or_create_store(collection, directory)
            await store.clear_collection()
        except Exception as e:
            logger.exception("Error deleting collection '{}'", collection)
            return OperationResult(success=False, error=_describe(e))
        return OperationResult(success=True, message=f"Collection {collection} deleted successfully")

    async def collection_stats(self, collection_name: Optional[str] = None, persist_directory: Optional[str] = None) -> dict:
        collection, directory = self._target(collection_name, persist_directory)
        try:
            store = await self.registry.get_or_create_store(collection, directory)
        except Exception as e:
            logger.exception("Error opening collection '{}'", collection)
            return {"success": False, "error": _describe(e)}
        return {
            "success": True,
            "collection": collection,
            "stats": store.get_memory_stats().model_dump(by_alias=True),
        }

    async def shutdown(self) -> None:
        await self.registry.shutdown()
