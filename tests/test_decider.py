import numpy as np
import pytest

from feedercam.presence.decider import HeuristicPresenceDetector, PresenceDecider
from feedercam.types import ClusterAssignment, ClusterStats

CENTROID = 0x0F0F_0F0F_0F0F_0F0F


def _assignment(mean: float, std: float) -> ClusterAssignment:
    stats = ClusterStats(cluster_id=0, centroid=CENTROID, count=20, mean_distance=mean, std_distance=std)
    return ClusterAssignment(clusters=[stats], labels={CENTROID: 0})


def _at_distance(bits: int) -> int:
    value = CENTROID
    for bit in range(bits):
        value ^= 1 << bit
    return value


def test_threshold_is_mean_plus_k_std():
    decider = PresenceDecider(k=2.5)
    assert decider.threshold(2.0, 1.0) == pytest.approx(4.5)
    assert not decider.is_outlier(4.5, 2.0, 1.0)
    assert decider.is_outlier(5.0, 2.0, 1.0)


def test_zero_std_flags_any_difference():
    decider = PresenceDecider()
    assert not decider.is_outlier(0.0, 0.0, 0.0)
    assert decider.is_outlier(1.0, 0.0, 0.0)


def test_decision_is_monotone_in_distance():
    decider = PresenceDecider()
    assignment = _assignment(mean=3.0, std=1.5)
    flags = [
        decider.decide(f"frame_{bits}", _at_distance(bits), assignment).is_present
        for bits in range(0, 20)
    ]
    first_present = flags.index(True)
    assert all(flags[first_present:])
    assert not any(flags[:first_present])


def test_decide_reports_score_and_cluster():
    record = PresenceDecider().decide("a.jpg", _at_distance(12), _assignment(mean=2.0, std=1.0))
    assert record.is_present
    assert record.outlier_score == pytest.approx(12.0)
    assert record.cluster_id == 0
    assert record.frame_id == "a.jpg"


def test_non_positive_k_rejected():
    with pytest.raises(ValueError):
        PresenceDecider(k=0.0)


def test_heuristic_blank_frame_is_absent():
    detector = HeuristicPresenceDetector()
    blank = np.full((120, 160, 3), 128, dtype=np.uint8)
    score = detector.score(blank)
    assert score == pytest.approx(0.0)
    assert not detector.decide("blank.jpg", score).is_present


def test_heuristic_textured_frame_is_present(day_scene):
    detector = HeuristicPresenceDetector()
    score = detector.score(day_scene)
    assert score >= 10.0
    record = detector.decide("busy.jpg", score)
    assert record.is_present
    assert record.cluster_id is None
