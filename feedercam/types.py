"""Common dataclasses and type aliases used across the feedercam package."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import numpy as np

# 64-bit dHash packed into a Python int (bit i = row * 8 + col)
Fingerprint = int

UNKNOWN_LABEL = "Unknown"


class FrameStatus:
    """Per-frame processing status carried through to the exported records."""

    OK = "ok"
    DECODE_ERROR = "decode_error"
    EMBEDDING_FAILED = "embedding_failed"
    BACKGROUND = "background"


class Reason:
    """Why a classification ended with its label."""

    ACCEPTED = "accepted"
    BELOW_THRESHOLD = "below_threshold"
    AMBIGUOUS = "ambiguous"
    EMPTY_GALLERY = "empty_gallery"
    EMBEDDING_FAILED = "embedding_failed"


@dataclass
class Frame:
    """A single camera-trap frame handed to the pipeline by the ingestor.

    Pixels are owned transiently: folder sources only carry a path and decode on
    ``load()`` so that no buffer outlives one pipeline pass.
    """

    frame_id: str
    pixels: Optional[np.ndarray] = None
    path: Optional[Path] = None

    def load(self) -> np.ndarray:
        if self.pixels is not None:
            return self.pixels
        from feedercam.errors import DecodeError
        from feedercam.io_utils import decode_image

        if self.path is None:
            raise DecodeError(f"Frame {self.frame_id} has neither pixels nor a path")
        return decode_image(self.path)


@dataclass(frozen=True)
class ClusterStats:
    """Centroid and Hamming dispersion of one background regime."""

    cluster_id: int
    centroid: Fingerprint
    count: int
    mean_distance: float
    std_distance: float


@dataclass
class ClusterAssignment:
    """Result of clustering one folder's fingerprints."""

    clusters: List[ClusterStats]
    labels: Dict[Fingerprint, int] = field(default_factory=dict)
    degenerate: bool = False
    iterations: int = 0

    def cluster_of(self, fingerprint: Fingerprint) -> ClusterStats:
        """Return the cluster a fingerprint belongs to (nearest centroid if unseen)."""
        cluster_id = self.labels.get(fingerprint)
        if cluster_id is not None:
            return self.clusters[cluster_id]
        best = self.clusters[0]
        best_dist = hamming(fingerprint, best.centroid)
        for stats in self.clusters[1:]:
            dist = hamming(fingerprint, stats.centroid)
            if dist < best_dist:
                best, best_dist = stats, dist
        return best

    def members(self, cluster_id: int) -> List[Fingerprint]:
        return sorted(fp for fp, cid in self.labels.items() if cid == cluster_id)


@dataclass(frozen=True)
class PresenceRecord:
    frame_id: str
    is_present: bool
    outlier_score: float
    cluster_id: Optional[int] = None
    status: str = FrameStatus.OK
    error: Optional[str] = None


@dataclass(frozen=True)
class GalleryEntry:
    """A labelled reference embedding held by the gallery."""

    entry_id: int
    label: str
    embedding: np.ndarray
    provenance: str = "manual"


@dataclass(frozen=True)
class Match:
    label: str
    similarity: float
    entry_id: int


@dataclass(frozen=True)
class ClassificationResult:
    frame_id: str
    label: str
    confidence: float
    reason: str = Reason.ACCEPTED

    @property
    def is_known(self) -> bool:
        return self.label != UNKNOWN_LABEL


@dataclass(frozen=True)
class FrameResult:
    """Final per-frame record handed to export and review consumers."""

    file: str
    present: bool
    species: Optional[str]
    confidence: Optional[float]
    status: str = FrameStatus.OK
    reason: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "file": self.file,
            "present": self.present,
            "species": self.species,
            "confidence": self.confidence,
            "status": self.status,
            "reason": self.reason,
        }


def hamming(a: Fingerprint, b: Fingerprint) -> int:
    """Count differing bits between two fingerprints."""
    return bin(a ^ b).count("1")


def l2_normalize(vec: np.ndarray, eps: float = 1e-6) -> np.ndarray:
    """L2-normalize the input vector."""
    norm = np.linalg.norm(vec)
    if norm < eps:
        return vec
    return vec / norm


def iter_batches(iterable: Iterable, batch_size: int) -> Iterable[List]:
    """Yield successive batches from an iterable."""
    batch: List = []
    for item in iterable:
        batch.append(item)
        if len(batch) >= batch_size:
            yield batch
            batch = []
    if batch:
        yield batch
