import pytest

from feedercam.presence.background import BackgroundClusterer
from feedercam.types import hamming

DAY = 0x0F0F_0F0F_0F0F_0F0F
NIGHT = 0xF0F0_F0F0_F0F0_F0F0


def _flip(value: int, *bits: int) -> int:
    for bit in bits:
        value ^= 1 << bit
    return value


def test_two_regimes_are_separated():
    day = [DAY, DAY, _flip(DAY, 3), DAY, _flip(DAY, 40)]
    night = [NIGHT, _flip(NIGHT, 7), NIGHT, NIGHT]
    assignment = BackgroundClusterer().fit(day + night)

    assert not assignment.degenerate
    assert len(assignment.clusters) == 2
    day_cluster = assignment.cluster_of(DAY).cluster_id
    night_cluster = assignment.cluster_of(NIGHT).cluster_id
    assert day_cluster != night_cluster
    assert all(assignment.cluster_of(fp).cluster_id == day_cluster for fp in day)
    assert all(assignment.cluster_of(fp).cluster_id == night_cluster for fp in night)
    assert {assignment.clusters[day_cluster].centroid, assignment.clusters[night_cluster].centroid} == {DAY, NIGHT}


def test_every_fingerprint_assigned_once_and_counts_add_up():
    fingerprints = [DAY] * 6 + [NIGHT] * 3 + [_flip(DAY, 1, 2)]
    assignment = BackgroundClusterer().fit(fingerprints)

    members = assignment.members(0) + assignment.members(1)
    assert sorted(members) == sorted(set(fingerprints))
    assert all(stats.count > 0 for stats in assignment.clusters)
    assert sum(stats.count for stats in assignment.clusters) == len(fingerprints)


def test_cluster_stats_are_weighted_by_multiplicity():
    fingerprints = [DAY] * 9 + [_flip(DAY, 0, 1, 2, 3)] + [NIGHT] * 5
    assignment = BackgroundClusterer().fit(fingerprints)
    day_stats = assignment.cluster_of(DAY)

    assert day_stats.centroid == DAY
    assert day_stats.count == 10
    assert day_stats.mean_distance == pytest.approx(0.4)
    assert day_stats.std_distance == pytest.approx(1.2)


def test_single_distinct_fingerprint_is_degenerate():
    assignment = BackgroundClusterer().fit([DAY] * 4)
    assert assignment.degenerate
    assert len(assignment.clusters) == 1
    stats = assignment.clusters[0]
    assert stats.centroid == DAY
    assert stats.std_distance == 0.0
    assert stats.count == 4


def test_single_frame_folder_is_degenerate():
    assignment = BackgroundClusterer().fit([NIGHT])
    assert assignment.degenerate
    assert assignment.cluster_of(NIGHT).count == 1


def test_empty_input_raises():
    with pytest.raises(ValueError):
        BackgroundClusterer().fit([])


def test_clustering_is_reproducible():
    fingerprints = [DAY, _flip(DAY, 5), NIGHT, _flip(NIGHT, 60), _flip(NIGHT, 61), DAY]
    first = BackgroundClusterer().fit(fingerprints)
    second = BackgroundClusterer().fit(list(reversed(fingerprints)))
    assert first.labels == second.labels
    assert [c.centroid for c in first.clusters] == [c.centroid for c in second.clusters]


def test_unseen_fingerprint_maps_to_nearest_centroid():
    assignment = BackgroundClusterer().fit([DAY, DAY, NIGHT, NIGHT])
    probe = _flip(NIGHT, 10, 11)
    assert assignment.cluster_of(probe).centroid == NIGHT
    assert hamming(probe, assignment.cluster_of(probe).centroid) == 2
