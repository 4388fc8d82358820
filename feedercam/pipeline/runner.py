"""Folder scan orchestration: hash, cluster, decide presence, classify."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from feedercam.attribution.aggregate import ResultAggregator
from feedercam.errors import DecodeError, EmbeddingUnavailable, ModelLoadError
from feedercam.io_utils import load_yaml
from feedercam.presence.background import BackgroundClusterer
from feedercam.presence.decider import OUTLIER_K, HeuristicPresenceDetector, PresenceDecider
from feedercam.presence.dhash import PerceptualHasher
from feedercam.recognition.classifier import DEFAULT_DELTA_MIN, DEFAULT_T_MIN, OpenSetClassifier
from feedercam.recognition.embed_onnx import EmbeddingExtractor
from feedercam.recognition.gallery import ReferenceGallery
from feedercam.recognition.index import IndexParams
from feedercam.types import (
    ClassificationResult,
    Fingerprint,
    Frame,
    FrameResult,
    FrameStatus,
    PresenceRecord,
    iter_batches,
)

LOGGER = logging.getLogger("feedercam.pipeline")

PRESENCE_BACKENDS = ("background", "heuristic")

ProgressCallback = Callable[[str, int], None]


@dataclass
class PipelineConfig:
    outlier_k: float = OUTLIER_K
    t_min: float = DEFAULT_T_MIN
    delta_min: float = DEFAULT_DELTA_MIN
    embedding_dim: Optional[int] = None
    index: IndexParams = field(default_factory=IndexParams)
    workers: int = 4
    batch_size: int = 16
    embed_timeout_s: float = 30.0
    top_k: int = 10
    max_cluster_iter: int = 20
    recursive: bool = False
    presence_backend: str = "background"
    heuristic_stddev: float = 10.0
    background_labels: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.presence_backend not in PRESENCE_BACKENDS:
            raise ValueError(
                f"presence_backend must be one of {PRESENCE_BACKENDS}, got {self.presence_backend!r}"
            )
        if self.workers < 1:
            LOGGER.warning("Invalid workers=%s requested; defaulting to 1", self.workers)
            self.workers = 1
        if self.batch_size < 1:
            LOGGER.warning("Invalid batch_size=%s requested; defaulting to 1", self.batch_size)
            self.batch_size = 1
        self.background_labels = tuple(self.background_labels or ())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            if key not in known:
                LOGGER.warning("Ignoring unknown pipeline config key %r", key)
                continue
            kwargs[key] = value
        if isinstance(kwargs.get("index"), dict):
            kwargs["index"] = IndexParams(**kwargs["index"])
        if "background_labels" in kwargs:
            kwargs["background_labels"] = tuple(kwargs["background_labels"] or ())
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Path) -> "PipelineConfig":
        return cls.from_dict(load_yaml(path))


@dataclass
class ScanResult:
    results: List[FrameResult] = field(default_factory=list)
    total_frames: int = 0
    cancelled: bool = False
    no_images: bool = False
    degenerate_background: bool = False
    summary: Dict[str, int] = field(default_factory=dict)


@dataclass
class _HashOutcome:
    position: int
    frame_id: str
    fingerprint: Optional[Fingerprint] = None
    heuristic_score: Optional[float] = None
    error: Optional[str] = None


class ScanRunner:
    """Runs the two-stage pipeline over one restartable frame source.

    Pass 1 hashes every frame on a worker pool. Clustering is the barrier: it
    runs once over the complete fingerprint set before any presence decision.
    Pass 2 re-iterates the source and classifies present frames only. The
    ``cancel`` event is checked between batches.
    """

    def __init__(
        self,
        config: PipelineConfig,
        gallery: ReferenceGallery,
        extractor: EmbeddingExtractor,
        hasher: Optional[PerceptualHasher] = None,
        clusterer: Optional[BackgroundClusterer] = None,
    ) -> None:
        self.config = config
        self.gallery = gallery
        self.extractor = extractor
        self.hasher = hasher or PerceptualHasher()
        self.clusterer = clusterer or BackgroundClusterer(max_iter=config.max_cluster_iter)
        self.decider = PresenceDecider(k=config.outlier_k)
        self.heuristic = HeuristicPresenceDetector(stddev_threshold=config.heuristic_stddev)
        self.classifier = OpenSetClassifier(t_min=config.t_min, delta_min=config.delta_min)
        self._background_labels = {label.lower() for label in config.background_labels}

    def run(
        self,
        source: Iterable[Frame],
        cancel: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
        keep_partial: bool = True,
    ) -> ScanResult:
        self._check_dimensions()
        cancel = cancel or threading.Event()
        aggregator = ResultAggregator()

        with ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="scan") as pool:
            outcomes, cancelled = self._hash_pass(source, pool, cancel, progress)
            total = len(outcomes)
            if total == 0 and not cancelled:
                LOGGER.warning("No images found; nothing to cluster")
                return ScanResult(no_images=True)

            for outcome in outcomes:
                if outcome.error is not None:
                    aggregator.add(
                        outcome.position,
                        PresenceRecord(
                            frame_id=outcome.frame_id,
                            is_present=False,
                            outlier_score=float("nan"),
                            status=FrameStatus.DECODE_ERROR,
                            error=outcome.error,
                        ),
                    )

            if cancelled:
                return self._finish(aggregator, total, cancelled=True, keep_partial=keep_partial)

            presence, degenerate = self._decide_presence(outcomes)
            present: Dict[int, PresenceRecord] = {}
            for position, record in presence.items():
                if record.is_present:
                    present[position] = record
                else:
                    aggregator.add(position, record)
            LOGGER.info("Presence: %d of %d decodable frames flagged present", len(present), len(presence))

            cancelled = self._classify_pass(source, present, pool, aggregator, cancel, progress)

        return self._finish(
            aggregator,
            total,
            cancelled=cancelled,
            keep_partial=keep_partial,
            degenerate=degenerate,
        )

    def _check_dimensions(self) -> None:
        """Fail before any work when the model cannot be queried against the gallery."""
        gallery_dim = self.gallery.dim
        if gallery_dim is None:
            return
        if self.extractor.dim is None:
            self.extractor.dim = gallery_dim
        elif self.extractor.dim != gallery_dim:
            raise ModelLoadError(
                f"Embedding model dim {self.extractor.dim} does not match gallery dim {gallery_dim}"
            )

    # ---------------------------------------------------------------- pass 1
    def _hash_pass(
        self,
        source: Iterable[Frame],
        pool: ThreadPoolExecutor,
        cancel: threading.Event,
        progress: Optional[ProgressCallback],
    ) -> Tuple[List[_HashOutcome], bool]:
        outcomes: List[_HashOutcome] = []
        for batch in iter_batches(enumerate(source), self.config.batch_size):
            if cancel.is_set():
                LOGGER.info("Scan cancelled during hashing after %d frames", len(outcomes))
                return outcomes, True
            futures = [pool.submit(self._hash_frame, position, frame) for position, frame in batch]
            outcomes.extend(future.result() for future in futures)
            if progress is not None:
                progress("hash", len(batch))
        return outcomes, False

    def _hash_frame(self, position: int, frame: Frame) -> _HashOutcome:
        try:
            pixels = frame.load()
            fingerprint = self.hasher.fingerprint(pixels)
            score = self.heuristic.score(pixels) if self.config.presence_backend == "heuristic" else None
        except DecodeError as exc:
            LOGGER.warning("Decode failed for %s: %s", frame.frame_id, exc)
            return _HashOutcome(position=position, frame_id=frame.frame_id, error=str(exc))
        return _HashOutcome(
            position=position,
            frame_id=frame.frame_id,
            fingerprint=fingerprint,
            heuristic_score=score,
        )

    # --------------------------------------------------------------- barrier
    def _decide_presence(self, outcomes: List[_HashOutcome]) -> Tuple[Dict[int, PresenceRecord], bool]:
        valid = [o for o in outcomes if o.error is None]
        if not valid:
            LOGGER.warning("No decodable frames; skipping background clustering")
            return {}, False

        if self.config.presence_backend == "heuristic":
            return {o.position: self.heuristic.decide(o.frame_id, o.heuristic_score) for o in valid}, False

        assignment = self.clusterer.fit([o.fingerprint for o in valid])
        decisions = {
            o.position: self.decider.decide(o.frame_id, o.fingerprint, assignment) for o in valid
        }
        return decisions, assignment.degenerate

    # ---------------------------------------------------------------- pass 2
    def _classify_pass(
        self,
        source: Iterable[Frame],
        present: Dict[int, PresenceRecord],
        pool: ThreadPoolExecutor,
        aggregator: ResultAggregator,
        cancel: threading.Event,
        progress: Optional[ProgressCallback],
    ) -> bool:
        if not present:
            return False
        pending = ((pos, frame) for pos, frame in enumerate(source) if pos in present)
        for batch in iter_batches(pending, self.config.batch_size):
            if cancel.is_set():
                LOGGER.info("Scan cancelled during classification")
                return True
            futures = [
                pool.submit(self._classify_frame, pos, frame, present[pos], aggregator)
                for pos, frame in batch
            ]
            for future in futures:
                future.result()
            if progress is not None:
                progress("classify", len(batch))

        missing = sorted(set(present) - aggregator.positions())
        if missing:
            LOGGER.error("Frame source yielded %d present frames only once; it must be restartable", len(missing))
            for position in missing:
                record = present[position]
                aggregator.add(position, record, self.classifier.embedding_failed(record.frame_id))
        return False

    def _classify_frame(
        self,
        position: int,
        frame: Frame,
        presence: PresenceRecord,
        aggregator: ResultAggregator,
    ) -> None:
        try:
            embedding = self.extractor.extract(frame.load())
        except (DecodeError, EmbeddingUnavailable) as exc:
            LOGGER.warning("Embedding failed for %s: %s", frame.frame_id, exc)
            aggregator.add(position, presence, self.classifier.embedding_failed(frame.frame_id))
            return

        matches = self.gallery.top_species(embedding, n=2, k=self.config.top_k)
        result = self.classifier.decide(frame.frame_id, matches)
        if result.is_known and result.label.lower() in self._background_labels:
            aggregator.add_result(position, self._background_result(presence, result))
            return
        aggregator.add(position, presence, result)

    @staticmethod
    def _background_result(presence: PresenceRecord, result: ClassificationResult) -> FrameResult:
        return FrameResult(
            file=presence.frame_id,
            present=False,
            species=None,
            confidence=None,
            status=FrameStatus.BACKGROUND,
            reason=result.reason,
        )

    def _finish(
        self,
        aggregator: ResultAggregator,
        total: int,
        cancelled: bool,
        keep_partial: bool,
        degenerate: bool = False,
    ) -> ScanResult:
        summary = aggregator.summary()
        results = aggregator.results if (keep_partial or not cancelled) else []
        LOGGER.info(
            "Scan %s: %d/%d frames aggregated (present=%d known=%d decode_errors=%d embed_failures=%d)",
            "cancelled" if cancelled else "complete",
            len(results),
            total,
            summary["present"],
            summary["known"],
            summary[FrameStatus.DECODE_ERROR],
            summary[FrameStatus.EMBEDDING_FAILED],
        )
        return ScanResult(
            results=results,
            total_frames=total,
            cancelled=cancelled,
            degenerate_background=degenerate,
            summary=summary,
        )
