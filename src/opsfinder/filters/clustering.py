# src/opsfinder/filters/clustering.py
from __future__ import annotations
from typing import Callable, List, Optional, Sequence

from opsfinder.physics.hits import Hit
from opsfinder.physics.events import EventCandidate, EventType


def cluster_hits(
    hits: Sequence[Hit],
    window_ps: float,
    accept: Optional[Callable[[Hit], bool]] = None,
    *,
    window_index: int = -1,
) -> List[EventCandidate]:
    """
    Group time-sorted hits into clusters measured from each cluster's seed.

    The first accepted hit not yet consumed seeds a cluster; following
    accepted hits join while (t - t_seed) < window_ps. The first accepted
    hit outside the seed's window closes the cluster and seeds the next one.
    Hits failing `accept` are skipped outright: they never seed, join or
    close a cluster.

    The result partitions the accepted hits into disjoint clusters in input
    order; no cluster is empty.
    """
    if window_ps <= 0:
        raise ValueError(f"window_ps must be positive, got {window_ps}")

    clusters: List[EventCandidate] = []
    n = len(hits)
    s = 0
    while s < n:
        seed = hits[s]
        if accept is not None and not accept(seed):
            s += 1
            continue

        members = [seed]
        k = 1
        while s + k < n:
            current = hits[s + k]
            if accept is not None and not accept(current):
                k += 1
                continue
            if current.t_ps - seed.t_ps < window_ps:
                members.append(current)
                k += 1
            else:
                break

        s += k
        clusters.append(
            EventCandidate(hits=members, event_type=EventType.UNKNOWN, window=window_index)
        )

    return clusters
