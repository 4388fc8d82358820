"""Presence decisions relative to a frame's background regime."""

from __future__ import annotations

import logging

import cv2
import numpy as np

from feedercam.presence.dhash import to_gray
from feedercam.types import ClusterAssignment, Fingerprint, PresenceRecord, hamming

LOGGER = logging.getLogger("feedercam.presence.decider")

# Outlier multiplier over the cluster's distance std; operator constant only.
OUTLIER_K = 2.5


class PresenceDecider:
    """Flags a frame as present when it is a Hamming outlier of its regime."""

    def __init__(self, k: float = OUTLIER_K) -> None:
        if k <= 0:
            raise ValueError("Outlier multiplier must be positive")
        self.k = k

    def threshold(self, mean: float, std: float) -> float:
        return mean + self.k * std

    def is_outlier(self, score: float, mean: float, std: float) -> bool:
        if std == 0:
            return score > 0
        return score > self.threshold(mean, std)

    def decide(
        self,
        frame_id: str,
        fingerprint: Fingerprint,
        assignment: ClusterAssignment,
    ) -> PresenceRecord:
        cluster = assignment.cluster_of(fingerprint)
        score = float(hamming(fingerprint, cluster.centroid))
        present = self.is_outlier(score, cluster.mean_distance, cluster.std_distance)
        LOGGER.debug(
            "%s cluster=%d score=%.0f mean=%.2f std=%.2f present=%s",
            frame_id,
            cluster.cluster_id,
            score,
            cluster.mean_distance,
            cluster.std_distance,
            present,
        )
        return PresenceRecord(
            frame_id=frame_id,
            is_present=present,
            outlier_score=score,
            cluster_id=cluster.cluster_id,
        )


class HeuristicPresenceDetector:
    """Intensity-variance fallback: busy frames are assumed to hold an animal."""

    def __init__(self, stddev_threshold: float = 10.0, sample_size: int = 64) -> None:
        self.stddev_threshold = stddev_threshold
        self.sample_size = sample_size

    def score(self, pixels: np.ndarray) -> float:
        gray = to_gray(pixels)
        if self.sample_size > 0:
            gray = cv2.resize(gray, (self.sample_size, self.sample_size), interpolation=cv2.INTER_AREA)
        return float(np.std(gray.astype(np.float64)))

    def decide(self, frame_id: str, score: float) -> PresenceRecord:
        return PresenceRecord(
            frame_id=frame_id,
            is_present=score >= self.stddev_threshold,
            outlier_score=score,
        )
