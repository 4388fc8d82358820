"""Open-set species decision over the two best gallery matches."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from feedercam.types import UNKNOWN_LABEL, ClassificationResult, Match, Reason

LOGGER = logging.getLogger("feedercam.recognition.classifier")

# Offline-calibrated acceptance constants; operators may override via config.
DEFAULT_T_MIN = 0.5
DEFAULT_DELTA_MIN = 0.1


def _clip_confidence(similarity: float) -> float:
    return float(np.clip(similarity, 0.0, 1.0))


class OpenSetClassifier:
    """Accepts the top species only when it is both similar enough and unambiguous.

    ``matches`` must hold at most one match per species, best first (see
    ``ReferenceGallery.top_species``). A missing runner-up counts as -inf, so a
    single-species gallery only has to clear ``t_min``.
    """

    def __init__(self, t_min: float = DEFAULT_T_MIN, delta_min: float = DEFAULT_DELTA_MIN) -> None:
        if delta_min < 0:
            raise ValueError("delta_min must be non-negative")
        self.t_min = t_min
        self.delta_min = delta_min

    def decide(self, frame_id: str, matches: Sequence[Match]) -> ClassificationResult:
        if not matches:
            return ClassificationResult(
                frame_id=frame_id,
                label=UNKNOWN_LABEL,
                confidence=0.0,
                reason=Reason.EMPTY_GALLERY,
            )

        ranked = sorted(matches, key=lambda m: m.similarity, reverse=True)
        top = ranked[0]
        s1 = float(top.similarity)
        s2 = float(ranked[1].similarity) if len(ranked) > 1 else float("-inf")
        confidence = _clip_confidence(s1)

        if s1 < self.t_min:
            reason = Reason.BELOW_THRESHOLD
        elif (s1 - s2) < self.delta_min:
            reason = Reason.AMBIGUOUS
        else:
            return ClassificationResult(
                frame_id=frame_id,
                label=top.label,
                confidence=confidence,
                reason=Reason.ACCEPTED,
            )

        LOGGER.debug(
            "%s abstained (%s): top=%s s1=%.3f s2=%.3f",
            frame_id,
            reason,
            top.label,
            s1,
            s2,
        )
        return ClassificationResult(
            frame_id=frame_id,
            label=UNKNOWN_LABEL,
            confidence=confidence,
            reason=reason,
        )

    @staticmethod
    def embedding_failed(frame_id: str) -> ClassificationResult:
        return ClassificationResult(
            frame_id=frame_id,
            label=UNKNOWN_LABEL,
            confidence=0.0,
            reason=Reason.EMBEDDING_FAILED,
        )
