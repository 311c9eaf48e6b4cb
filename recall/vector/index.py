"""
Similarity index interface and the numpy linear-scan backend.

An index holds one (dimension, mode) partition of the vectors table. The table is the
source of truth; an index only caches row ids and normalised vectors.
"""

from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

import numpy as np

from ..core.errors import DimensionMismatchError
from .embeddings import l2_normalize
from .types import QueryResult


class IVectorIndex(ABC):
    """Abstract interface for a single-dimension similarity index."""

    backend: str = "abstract"

    def __init__(self, dimension: int):
        self.dimension = dimension

    @abstractmethod
    def add(self, ids: Sequence[int], vectors: Sequence[np.ndarray]) -> None:
        """Add vectors with their row ids."""
        pass

    @abstractmethod
    def search(self, query_vector: np.ndarray, top_k: int = 5) -> List[QueryResult]:
        """Return up to top_k hits, cosine score descending."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop all vectors."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    def _check_dimension(self, vector: np.ndarray):
        if len(vector) != self.dimension:
            raise DimensionMismatchError(
                f"Vector dimension {len(vector)} does not match index dimension {self.dimension}"
            )


class LinearScanIndex(IVectorIndex):
    """Exact cosine similarity over every vector in the partition."""

    backend = "scan"

    def __init__(self, dimension: int):
        super().__init__(dimension)
        # ids and matrix rows are swapped together so a reader never sees them out of step
        self._data: Tuple[List[int], np.ndarray] = ([], np.zeros((0, dimension), dtype=np.float32))

    def add(self, ids: Sequence[int], vectors: Sequence[np.ndarray]) -> None:
        if not ids:
            return
        rows = []
        for vector in vectors:
            self._check_dimension(vector)
            rows.append(l2_normalize(vector))
        current_ids, matrix = self._data
        self._data = (current_ids + [int(i) for i in ids],
                      np.vstack([matrix, np.vstack(rows)]).astype(np.float32))

    def search(self, query_vector: np.ndarray, top_k: int = 5) -> List[QueryResult]:
        ids, matrix = self._data
        if not ids:
            return []
        self._check_dimension(query_vector)
        query = l2_normalize(query_vector)
        if not np.any(query):
            return []

        scores = matrix @ query
        k = min(top_k, len(ids))
        # Stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")[:k]
        return [QueryResult(id=ids[i], score=float(scores[i])) for i in order]

    def clear(self) -> None:
        self._data = ([], np.zeros((0, self.dimension), dtype=np.float32))

    def count(self) -> int:
        return len(self._data[0])
