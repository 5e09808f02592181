from __future__ import annotations
from typing import List, Sequence, Tuple, TypeVar
import numpy as np

from counsel_retrieval.application.services.errors import DimensionMismatchError

T = TypeVar("T")


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    """Coerce provider output to a 1-D float64 array."""
    vec = np.asarray(values, dtype=np.float64)
    if vec.ndim != 1:
        raise ValueError(f"Embedding must be one-dimensional, got shape {vec.shape}")
    return vec


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    # dot(a,b) / (||a|| * ||b||); zero-magnitude vectors score 0. No clamping.
    if a.shape != b.shape:
        raise DimensionMismatchError(expected=a.shape[0], actual=b.shape[0])
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


def rank(scored: List[Tuple[T, float]], threshold: float) -> List[Tuple[T, float]]:
    """Keep pairs scoring >= threshold, best first. Ties keep insertion order."""
    kept = [pair for pair in scored if pair[1] >= threshold]
    # list.sort is stable, so equal scores stay in their original order
    kept.sort(key=lambda x: x[1], reverse=True)
    return kept


def paginate(items: List[T], page_size: int, page: int = 1) -> List[T]:
    """Slice out 1-indexed page `page`; pages past the end are empty."""
    page = max(page, 1)
    skip = (page - 1) * page_size
    return items[skip:skip + page_size]
