"""Approximate cosine k-NN over gallery embeddings (faiss HNSW graph).

Node ``i`` is the ``i``-th vector added. Vectors are L2-normalised before they
reach faiss so inner product equals cosine similarity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import faiss
import numpy as np

from feedercam.types import l2_normalize


@dataclass(frozen=True)
class IndexParams:
    m: int = 16
    ef_construction: int = 100
    ef_search: int = 64

    def __post_init__(self) -> None:
        if self.m < 2:
            raise ValueError("Index degree m must be >= 2")
        if self.ef_construction < 1 or self.ef_search < 1:
            raise ValueError("Index search breadth must be >= 1")


class NearestNeighborIndex:
    """Graph index supporting incremental insertion and approximate queries.

    Insertions are applied one vector at a time so the graph (and therefore
    every query answer) only depends on insertion order.
    """

    def __init__(self, dim: int, params: Optional[IndexParams] = None) -> None:
        if dim < 1:
            raise ValueError("Embedding dimension must be >= 1")
        self.dim = dim
        self.params = params or IndexParams()
        self._index = faiss.IndexHNSWFlat(dim, self.params.m, faiss.METRIC_INNER_PRODUCT)
        self._index.hnsw.efConstruction = self.params.ef_construction
        self._index.hnsw.efSearch = self.params.ef_search

    def __len__(self) -> int:
        return int(self._index.ntotal)

    def copy(self) -> "NearestNeighborIndex":
        clone = NearestNeighborIndex.__new__(NearestNeighborIndex)
        clone.dim = self.dim
        clone.params = self.params
        clone._index = faiss.clone_index(self._index)
        return clone

    def add(self, vector: np.ndarray) -> int:
        """Insert a vector and return its node id."""
        node = len(self)
        self._index.add(self._prepare(vector)[None, :])
        return node

    def add_many(self, vectors: Sequence[np.ndarray]) -> List[int]:
        return [self.add(vec) for vec in vectors]

    def query(self, vector: np.ndarray, k: int) -> List[Tuple[int, float]]:
        """Return up to ``k`` (node_id, similarity) pairs, most similar first."""
        total = len(self)
        if k < 1 or total == 0:
            return []
        k = min(k, total)
        search_params = faiss.SearchParametersHNSW()
        search_params.efSearch = max(self.params.ef_search, k)
        sims, ids = self._index.search(self._prepare(vector)[None, :], k, params=search_params)
        return [(int(node), float(sim)) for node, sim in zip(ids[0], sims[0]) if node >= 0]

    def _prepare(self, vector: np.ndarray) -> np.ndarray:
        vec = np.asarray(vector, dtype=np.float32).reshape(-1)
        if vec.shape[0] != self.dim:
            raise ValueError(f"Expected embedding dim {self.dim}, got {vec.shape[0]}")
        return np.ascontiguousarray(l2_normalize(vec), dtype=np.float32)
