from __future__ import annotations
from typing import Dict, Iterator, Optional, Sequence, Tuple

import numpy as np

from counsel_retrieval.application.services.errors import DimensionMismatchError
from counsel_retrieval.application.services.similarity import as_vector


class EmbeddingCache:
    """
    Maps exact document text -> its embedding vector.

    Entries are never invalidated implicitly; only clear() removes them.
    Every vector must have the same length: either the `dimension` given up
    front or the length of the first vector stored.
    Persistence is the owner's job (see VectorStore).
    """

    def __init__(self, dimension: Optional[int] = None):
        self._data: Dict[str, np.ndarray] = {}
        self._fixed_dimension = dimension
        self.dimension = dimension
        self.hits = 0
        self.misses = 0

    def get(self, content: str) -> Optional[np.ndarray]:
        vec = self._data.get(content)
        if vec is None:
            self.misses += 1
        else:
            self.hits += 1
        return vec

    def put(self, content: str, vector: Sequence[float] | np.ndarray) -> None:
        vec = as_vector(vector)
        if self.dimension is None:
            self.dimension = vec.shape[0]
        elif vec.shape[0] != self.dimension:
            raise DimensionMismatchError(expected=self.dimension, actual=vec.shape[0])
        self._data[content] = vec

    def clear(self) -> None:
        self._data.clear()
        self.dimension = self._fixed_dimension
        self.hits = 0
        self.misses = 0

    def items(self) -> Iterator[Tuple[str, np.ndarray]]:
        return iter(self._data.items())

    @property
    def nbytes(self) -> int:
        return sum(vec.nbytes for vec in self._data.values())

    def __contains__(self, content: object) -> bool:
        return content in self._data

    def __len__(self) -> int:
        return len(self._data)
