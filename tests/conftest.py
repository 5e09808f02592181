import asyncio
from typing import Dict, List

import pytest

from counsel_retrieval.application.services.vector_store import VectorStore


class StubEmbeddings:
    """
    Embedding provider with hand-picked vectors.

    Texts not in `vectors` get `default` (or raise if default is None).
    Texts listed in `failing` always raise. Every text embedded is counted.
    """

    def __init__(self, vectors: Dict[str, List[float]], default: List[float] | None = None, failing=()):
        self.vectors = dict(vectors)
        self.default = default
        self.failing = set(failing)
        self.calls: Dict[str, int] = {}
        self.query_calls = 0
        self.batch_calls = 0

    def _vec(self, text: str) -> List[float]:
        self.calls[text] = self.calls.get(text, 0) + 1
        if text in self.failing:
            raise RuntimeError(f"cannot embed {text!r}")
        if text in self.vectors:
            return list(self.vectors[text])
        if self.default is None:
            raise KeyError(text)
        return list(self.default)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def embed_query(self, text: str) -> List[float]:
        self.query_calls += 1
        return self._vec(text)

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.batch_calls += 1
        return [self._vec(t) for t in texts]


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def stub():
    # query "q" points along x; documents are placed at known cosines to it
    return StubEmbeddings(
        {
            "q": [1.0, 0.0],
            "exact": [2.0, 0.0],          # 1.0
            "close": [4.0, 3.0],          # 0.8
            "edge": [3.0, 4.0],           # 0.6 exactly (3/5)
            "far": [0.0, 1.0],            # 0.0
            "opposite": [-1.0, 0.0],      # -1.0
        }
    )


@pytest.fixture
def make_store(tmp_path):
    def _make(embeddings, name="default", directory=None, **kwargs):
        return run(VectorStore.open(embeddings, name, directory or tmp_path, **kwargs))
    return _make
