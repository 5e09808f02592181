from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, JsonValue


# --- Stored data ---

class Document(BaseModel):
    """
    A piece of text plus free-form metadata. Immutable once created.

    Serialized with the `pageContent` key so collection files stay readable by
    the rest of the application.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    page_content: str = Field(alias="pageContent")
    metadata: Dict[str, JsonValue] = Field(default_factory=dict)


class CollectionSnapshot(BaseModel):
    """On-disk shape of one collection file."""
    documents: List[Document] = Field(default_factory=list)
    # serialized map: [content, vector] pairs
    embeddings: List[Tuple[str, List[float]]] = Field(default_factory=list)


# --- Search ---

class SearchResult(BaseModel):
    """One page of ranked hits plus the number of documents that passed the threshold."""
    hits: List[Tuple[Document, float]] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 0


class MemoryStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    documents_count: int = Field(alias="documentsCount")
    cache_size: int = Field(alias="cacheSize")
    estimated_memory_usage_mb: float = Field(alias="estimatedMemoryUsageMB")
    # False once a write of the collection file has failed and not yet succeeded
    durable: bool = True


# --- Service-level results (what the rest of the app sees) ---

class QueryResult(BaseModel):
    text: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int
    page_size: int = Field(alias="pageSize")
    total_results: int = Field(alias="totalResults")


class RetrievalResult(BaseModel):
    success: bool
    results: Optional[List[QueryResult]] = None
    pagination: Optional[Pagination] = None
    error: Optional[str] = None


class IngestResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    added: int = 0
    document_count: Optional[int] = Field(default=None, alias="documentCount")
    error: Optional[str] = None


class OperationResult(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
