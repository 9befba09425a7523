import numpy as np
import pytest

from opsfinder.filters.clustering import cluster_hits
from opsfinder.physics.classify import is_accepted, tag_hit
from opsfinder.physics.events import EventType

from conftest import make_hit


def test_window_measured_from_seed(cuts):
    hits = [tag_hit(h, cuts) for h in (
        make_hit(0.0, 20.0),
        make_hit(1000.0, 5.0),
        make_hit(10000.0, 20.0),
    )]
    clusters = cluster_hits(hits, cuts.cluster_time_window_ps, is_accepted, window_index=7)
    assert [[h.t_ps for h in c.hits] for c in clusters] == [[0.0, 1000.0], [10000.0]]
    assert all(c.window == 7 and c.event_type is EventType.UNKNOWN for c in clusters)


def test_chained_hits_do_not_extend_cluster():
    # each hit is within the window of its predecessor, not of the seed
    hits = [make_hit(t) for t in (0.0, 3000.0, 6000.0, 9000.0)]
    clusters = cluster_hits(hits, 5000.0)
    assert [[h.t_ps for h in c.hits] for c in clusters] == [[0.0, 3000.0], [6000.0, 9000.0]]


def test_filtered_hits_neither_join_nor_close(cuts):
    hits = [tag_hit(h, cuts) for h in (
        make_hit(0.0, 20.0),
        make_hit(500.0, 40.0),     # rejected, inside the window
        make_hit(1000.0, 20.0),
        make_hit(7000.0, 40.0),    # rejected, outside the window
        make_hit(8000.0, 20.0),
    )]
    clusters = cluster_hits(hits, 5000.0, is_accepted)
    assert [[h.t_ps for h in c.hits] for c in clusters] == [[0.0, 1000.0], [8000.0]]


def test_rejected_leading_hits_never_seed(cuts):
    hits = [tag_hit(h, cuts) for h in (make_hit(0.0, 40.0), make_hit(4000.0, 20.0), make_hit(8000.0, 20.0))]
    clusters = cluster_hits(hits, 5000.0, is_accepted)
    assert [[h.t_ps for h in c.hits] for c in clusters] == [[4000.0, 8000.0]]


def test_partition_and_seed_bound_on_random_windows(cuts):
    rng = np.random.default_rng(3)
    for _ in range(20):
        times = np.sort(rng.uniform(0.0, 50000.0, size=40))
        tots = rng.choice([5.0, 20.0, 40.0], size=40)
        hits = [tag_hit(make_hit(t, tot), cuts) for t, tot in zip(times, tots)]
        clusters = cluster_hits(hits, 5000.0, is_accepted)

        flat = [h for c in clusters for h in c.hits]
        assert flat == [h for h in hits if is_accepted(h)]
        for c in clusters:
            assert len(c) > 0
            assert all(a.t_ps <= b.t_ps for a, b in zip(c.hits, c.hits[1:]))
            assert c.hits[-1].t_ps - c.hits[0].t_ps < 5000.0


def test_empty_input_gives_no_clusters():
    assert cluster_hits([], 5000.0) == []


def test_non_positive_window_rejected():
    with pytest.raises(ValueError):
        cluster_hits([make_hit(0.0)], 0.0)
