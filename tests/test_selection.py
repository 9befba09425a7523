import pytest

from opsfinder.filters.selection import (
    count_hit_classes,
    is_prompt_cluster,
    passes_multiplicity,
    select_prompt,
    select_three_gamma,
)
from opsfinder.filters.veto import veto
from opsfinder.physics.classify import tag_hit
from opsfinder.physics.events import EventCandidate, EventType

from conftest import make_hit


def _cluster(rows, cuts):
    """rows: (t_ps, tot_ns, theta_deg)"""
    return EventCandidate(hits=[tag_hit(make_hit(t, tot, theta=th), cuts) for t, tot, th in rows])


def test_three_annihilation_plus_prompt_accepted(cuts):
    cl = _cluster([(0, 20, 10), (100, 20, 130), (200, 20, 250), (300, 5, 60)], cuts)
    out = select_three_gamma(cl, cuts)
    assert out is not None
    assert out.event_type is EventType.THREE_GAMMA
    assert out.angles.sum_two_smallest == pytest.approx(240.0)
    # input untouched
    assert cl.event_type is EventType.UNKNOWN and cl.angles is None


@pytest.mark.parametrize(
    "rows",
    [
        [(0, 20, 10), (100, 20, 130)],
        [(0, 20, 10), (100, 20, 130), (200, 20, 250), (300, 20, 300)],
        [(0, 20, 10), (100, 20, 130), (200, 20, 250), (300, 5, 60), (400, 5, 90)],
    ],
)
def test_multiplicity_is_exact(cuts, rows):
    assert select_three_gamma(_cluster(rows, cuts), cuts) is None


def test_count_hit_classes(cuts):
    counts = count_hit_classes(_cluster([(0, 20, 10), (100, 5, 130), (200, 40, 250)], cuts))
    assert (counts.n_annih, counts.n_prompt) == (1, 1)
    assert not passes_multiplicity(counts)


def test_angle_sum_cut_only_when_enabled(cuts):
    # sorted gaps 20, 90, 250 -> sum of two smallest 110
    cl = _cluster([(0, 20, 350), (100, 20, 10), (200, 20, 100)], cuts)
    assert select_three_gamma(cl, cuts, angle_cut=True) is None
    out = select_three_gamma(cl, cuts, angle_cut=False)
    assert out is not None
    assert out.angles.sum_two_smallest == pytest.approx(110.0)
    assert out.angles.diff_two_smallest == pytest.approx(70.0)


def test_duplicate_element_removal_leaves_too_few_annihilation_hits(cuts):
    hits = [
        make_hit(0.0, 20.0, theta=0.0, slot=5),
        make_hit(100.0, 20.0, theta=0.0, slot=5),
        make_hit(200.0, 20.0, theta=30.0, slot=9, r=[42.5, 3.0, 0.0]),
        make_hit(300.0, 5.0, theta=90.0, slot=20),
    ]
    vetoed = veto(EventCandidate(hits=[tag_hit(h, cuts) for h in hits]), cuts)
    assert vetoed is not None
    assert count_hit_classes(vetoed).n_annih == 1
    assert select_three_gamma(vetoed, cuts) is None


def test_select_prompt_needs_prompt_only_cluster(cuts):
    prompt_only = _cluster([(0, 5, 10), (100, 5, 130)], cuts)
    mixed = _cluster([(0, 5, 10), (100, 20, 130)], cuts)
    out = select_prompt(prompt_only)
    assert out is not None and out.event_type is EventType.PROMPT
    assert select_prompt(mixed) is None
    assert select_prompt(EventCandidate(hits=[])) is None


def test_select_prompt_drops_shared_element_hits(cuts):
    hits = [
        make_hit(0.0, 5.0, theta=10.0, slot=3),
        make_hit(50.0, 5.0, theta=10.0, slot=3),
        make_hit(80.0, 5.0, theta=200.0, slot=40),
    ]
    out = select_prompt(EventCandidate(hits=[tag_hit(h, cuts) for h in hits]))
    assert out is not None and out.event_type is EventType.PROMPT
    assert [h.t_ps for h in out.hits] == [80.0]

    only_duplicates = EventCandidate(hits=[tag_hit(h, cuts) for h in hits[:2]])
    assert is_prompt_cluster(only_duplicates)
    assert select_prompt(only_duplicates) is None
