"""Assemble per-frame presence and classification into exportable records."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import pandas as pd

from feedercam.io_utils import dump_json
from feedercam.types import ClassificationResult, FrameResult, FrameStatus, PresenceRecord, Reason

LOGGER = logging.getLogger("feedercam.attribution.aggregate")

CSV_COLUMNS = ["file", "present", "species", "confidence"]


def assemble(
    presence: PresenceRecord,
    classification: Optional[ClassificationResult] = None,
) -> FrameResult:
    """Merge one frame's records; absent frames carry no species or confidence."""
    if not presence.is_present or classification is None:
        return FrameResult(
            file=presence.frame_id,
            present=presence.is_present,
            species=None,
            confidence=None,
            status=presence.status,
            reason=None,
        )
    status = FrameStatus.EMBEDDING_FAILED if classification.reason == Reason.EMBEDDING_FAILED else FrameStatus.OK
    return FrameResult(
        file=presence.frame_id,
        present=True,
        species=classification.label,
        confidence=classification.confidence,
        status=status,
        reason=classification.reason,
    )


def _format_confidence(confidence: Optional[float]) -> str:
    if confidence is None:
        return ""
    return f"{round(float(confidence), 4):g}"


class ResultAggregator:
    """Collects FrameResults in input order (records may arrive from worker threads)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: Dict[int, FrameResult] = {}

    def __len__(self) -> int:
        return len(self._results)

    def add(
        self,
        position: int,
        presence: PresenceRecord,
        classification: Optional[ClassificationResult] = None,
    ) -> FrameResult:
        result = assemble(presence, classification)
        self.add_result(position, result)
        return result

    def add_result(self, position: int, result: FrameResult) -> None:
        with self._lock:
            if position in self._results:
                raise ValueError(f"Frame at position {position} already aggregated")
            self._results[position] = result

    def positions(self) -> Set[int]:
        with self._lock:
            return set(self._results)

    @property
    def results(self) -> List[FrameResult]:
        with self._lock:
            return [self._results[pos] for pos in sorted(self._results)]

    def to_rows(self) -> List[Dict[str, str]]:
        return to_rows(self.results)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([result.to_dict() for result in self.results])

    def export_csv(self, path: Path) -> Path:
        return export_csv(self.results, path)

    def dump_json(self, path: Path) -> Path:
        return dump_results_json(self.results, path)

    def summary(self) -> Dict[str, int]:
        results = self.results
        counts = {
            "frames": len(results),
            "present": sum(1 for r in results if r.present),
            "known": sum(1 for r in results if r.present and r.reason == Reason.ACCEPTED),
        }
        for status in (FrameStatus.DECODE_ERROR, FrameStatus.EMBEDDING_FAILED, FrameStatus.BACKGROUND):
            counts[status] = sum(1 for r in results if r.status == status)
        return counts


def to_rows(results: Iterable[FrameResult]) -> List[Dict[str, str]]:
    """Render results in the ``file,present,species,confidence`` CSV schema."""
    return [
        {
            "file": result.file,
            "present": "true" if result.present else "false",
            "species": result.species or "",
            "confidence": _format_confidence(result.confidence),
        }
        for result in results
    ]


def export_csv(results: Iterable[FrameResult], path: Path) -> Path:
    df = pd.DataFrame(to_rows(results), columns=CSV_COLUMNS)
    df.to_csv(path, index=False)
    LOGGER.info("Exported %d rows to %s", len(df), path)
    return path


def dump_results_json(results: Iterable[FrameResult], path: Path) -> Path:
    dump_json(path, [result.to_dict() for result in results])
    LOGGER.info("Wrote per-frame status JSON %s", path)
    return path
