from __future__ import annotations


class VectorStoreError(Exception):
    """Base class for errors raised by the embedded vector store."""


class EmbeddingError(VectorStoreError):
    """The embedding provider failed, timed out, or returned something unusable."""


class QueryEmbeddingError(EmbeddingError):
    """The query's own embedding could not be computed; the search cannot run."""


class DimensionMismatchError(VectorStoreError, ValueError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class PersistenceError(VectorStoreError):
    """A collection file could not be written."""
