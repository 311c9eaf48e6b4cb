"""
FAISS-backed similarity index (HNSW graph over normalised vectors).
"""

from typing import Dict, List, Sequence

import numpy as np

from .embeddings import l2_normalize
from .index import IVectorIndex
from .types import QueryResult


class FaissIndex(IVectorIndex):
    """HNSW index with L2 metric; unit vectors make 1 - d/2 the cosine score."""

    backend = "faiss"

    def __init__(self, dimension: int, m: int = 32, ef_search: int = 64):
        """
        Initialize FAISS index.

        Args:
            dimension: Dimension of the vectors
            m: HNSW graph degree
            ef_search: HNSW search breadth
        """
        try:
            import faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")

        super().__init__(dimension)
        self.faiss = faiss
        self.m = m
        self.ef_search = ef_search
        self.index = None
        self.vector_id_map: Dict[int, int] = {}  # FAISS position -> row id
        self.clear()

    def add(self, ids: Sequence[int], vectors: Sequence[np.ndarray]) -> None:
        if not ids:
            return
        rows = []
        for vector in vectors:
            self._check_dimension(vector)
            rows.append(l2_normalize(vector))

        start = self.index.ntotal
        self.index.add(np.vstack(rows).astype(np.float32))
        for offset, row_id in enumerate(ids):
            self.vector_id_map[start + offset] = int(row_id)

    def search(self, query_vector: np.ndarray, top_k: int = 5) -> List[QueryResult]:
        if not self.index.ntotal:
            return []
        self._check_dimension(query_vector)
        query = l2_normalize(query_vector)
        if not np.any(query):
            return []

        distances, positions = self.index.search(query.reshape(1, -1), min(top_k, self.index.ntotal))

        results = []
        for distance, position in zip(distances[0], positions[0]):
            if position < 0 or int(position) not in self.vector_id_map:
                continue
            # Squared L2 between unit vectors is 2 - 2cos
            results.append(QueryResult(id=self.vector_id_map[int(position)], score=float(1.0 - distance / 2.0)))
        results.sort(key=lambda r: r.score, reverse=True)
        return results

    def clear(self) -> None:
        """FAISS HNSW has no deletion; clearing builds a fresh graph."""
        self.index = self.faiss.IndexHNSWFlat(self.dimension, self.m)
        self.index.hnsw.efSearch = self.ef_search
        self.vector_id_map = {}

    def count(self) -> int:
        return self.index.ntotal
