"""Two-regime background clustering of fingerprints in Hamming space."""

from __future__ import annotations

import logging
from typing import List, Sequence

import numpy as np
from scipy.spatial.distance import cdist

from feedercam.errors import ClusteringDegenerate
from feedercam.presence.dhash import HASH_BITS, fingerprint_bits
from feedercam.types import ClusterAssignment, ClusterStats, Fingerprint

LOGGER = logging.getLogger("feedercam.presence.background")


def _hamming_matrix(a_bits: np.ndarray, b_bits: np.ndarray) -> np.ndarray:
    """Pairwise Hamming distances (in bits) between two bit matrices."""
    if a_bits.size == 0 or b_bits.size == 0:
        return np.zeros((len(a_bits), len(b_bits)), dtype=np.float64)
    return np.rint(cdist(a_bits, b_bits, metric="hamming") * HASH_BITS)


class BackgroundClusterer:
    """K=2 medoid clustering separating e.g. day and night backgrounds.

    Duplicate fingerprints are collapsed and weighted by their multiplicity, so
    the cost is driven by the number of distinct fingerprints in a folder.
    Medoid 0 starts at the fingerprint nearest the bitwise-majority string and
    medoid 1 at the fingerprint farthest from medoid 0; ties resolve to the
    smallest fingerprint value so results are reproducible.
    """

    def __init__(self, max_iter: int = 20, chunk_size: int = 1024) -> None:
        if max_iter < 1:
            raise ValueError("max_iter must be >= 1")
        self.max_iter = max_iter
        self.chunk_size = max(1, chunk_size)

    def fit(self, fingerprints: Sequence[Fingerprint]) -> ClusterAssignment:
        if len(fingerprints) == 0:
            raise ValueError("Cannot cluster an empty fingerprint set")

        uniq, counts = np.unique(np.asarray(fingerprints, dtype=np.uint64), return_counts=True)
        values = [int(v) for v in uniq]
        bits = fingerprint_bits(values)
        weights = counts.astype(np.float64)

        try:
            medoids = self._initial_medoids(bits, weights)
        except ClusteringDegenerate as exc:
            LOGGER.warning("Background clustering degenerate (%s); using a single cluster", exc)
            return self._single_cluster(values, bits, weights)

        labels = self._assign(bits, medoids)
        iterations = 0
        for iterations in range(1, self.max_iter + 1):
            medoids = [
                self._medoid(bits, weights, np.flatnonzero(labels == cluster_id))
                for cluster_id in (0, 1)
            ]
            new_labels = self._assign(bits, medoids)
            if np.array_equal(new_labels, labels):
                break
            labels = new_labels
        else:
            LOGGER.info("Background clustering hit iteration cap (%d)", self.max_iter)

        clusters = [
            self._stats(cluster_id, values[medoids[cluster_id]], bits, weights, labels)
            for cluster_id in (0, 1)
        ]
        assignment = ClusterAssignment(
            clusters=clusters,
            labels={value: int(label) for value, label in zip(values, labels)},
            degenerate=False,
            iterations=iterations,
        )
        for stats in clusters:
            LOGGER.info(
                "Cluster %d: centroid=%016x members=%d mean=%.2f std=%.2f",
                stats.cluster_id,
                stats.centroid,
                stats.count,
                stats.mean_distance,
                stats.std_distance,
            )
        return assignment

    def _initial_medoids(self, bits: np.ndarray, weights: np.ndarray) -> List[int]:
        if len(bits) < 2:
            raise ClusteringDegenerate(f"{len(bits)} distinct fingerprint(s)")
        votes = (bits * weights[:, None]).sum(axis=0)
        majority = (votes * 2 >= weights.sum())[None, :]
        first = int(np.argmin(_hamming_matrix(bits, majority)[:, 0]))
        second = int(np.argmax(_hamming_matrix(bits, bits[first : first + 1])[:, 0]))
        return [first, second]

    @staticmethod
    def _assign(bits: np.ndarray, medoids: List[int]) -> np.ndarray:
        dists = _hamming_matrix(bits, bits[medoids])
        # ties go to cluster 0
        return (dists[:, 1] < dists[:, 0]).astype(np.int64)

    def _medoid(self, bits: np.ndarray, weights: np.ndarray, members: np.ndarray) -> int:
        member_bits = bits[members]
        member_weights = weights[members]
        totals = np.empty(len(members), dtype=np.float64)
        for start in range(0, len(members), self.chunk_size):
            stop = start + self.chunk_size
            totals[start:stop] = _hamming_matrix(member_bits[start:stop], member_bits) @ member_weights
        return int(members[int(np.argmin(totals))])

    @staticmethod
    def _stats(
        cluster_id: int,
        centroid: Fingerprint,
        bits: np.ndarray,
        weights: np.ndarray,
        labels: np.ndarray,
    ) -> ClusterStats:
        mask = labels == cluster_id
        centroid_bits = fingerprint_bits([centroid])
        dists = _hamming_matrix(bits[mask], centroid_bits)[:, 0]
        w = weights[mask]
        total = float(w.sum())
        mean = float((dists * w).sum() / total)
        std = float(np.sqrt(((dists - mean) ** 2 * w).sum() / total))
        return ClusterStats(
            cluster_id=cluster_id,
            centroid=centroid,
            count=int(total),
            mean_distance=mean,
            std_distance=std,
        )

    def _single_cluster(
        self, values: List[Fingerprint], bits: np.ndarray, weights: np.ndarray
    ) -> ClusterAssignment:
        labels = np.zeros(len(values), dtype=np.int64)
        stats = self._stats(0, values[0], bits, weights, labels)
        return ClusterAssignment(
            clusters=[stats],
            labels={value: 0 for value in values},
            degenerate=True,
            iterations=0,
        )
