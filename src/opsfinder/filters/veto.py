# src/opsfinder/filters/veto.py
from __future__ import annotations
from dataclasses import dataclass, field
from itertools import combinations
from typing import List, Optional, Sequence, Set

from opsfinder.config.schemas import CutsCfg
from opsfinder.physics.events import EventCandidate, is_annihilation_quality
from opsfinder.physics.hits import Hit
from opsfinder.physics.kinematics import (
    C_CM_PER_NS,
    azimuthal_separation_deg,
    tof_residual_ns,
)

# min_dvt before any annihilation pair has been seen
DVT_SENTINEL_NS = -10000.0


@dataclass(frozen=True)
class PairCheck:
    """Verdict of the pairwise scattering tests for one hit pair."""
    same_element: bool = False
    too_close: bool = False
    d_theta_deg: Optional[float] = None
    dvt_ns: Optional[float] = None


@dataclass
class VetoResult:
    """
    Outcome of the scattering veto for one cluster.

    cluster is None when the whole cluster was discarded; reason then says
    which rule did it ("theta" or "dvt").
    """
    cluster: Optional[EventCandidate]
    reason: Optional[str] = None
    min_dvt_ns: float = DVT_SENTINEL_NS
    theta_diffs_deg: List[float] = field(default_factory=list)
    same_element_tots: List[tuple] = field(default_factory=list)
    close_element_tots: List[tuple] = field(default_factory=list)
    removed: int = 0

    @property
    def passed_theta(self) -> bool:
        return self.reason != "theta"

    @property
    def passed(self) -> bool:
        return self.cluster is not None


def check_pair(h1: Hit, h2: Hit, cuts: CutsCfg, c_cm_per_ns: float = C_CM_PER_NS) -> PairCheck:
    """
    Pairwise scattering tests; symmetric in (h1, h2).

    Two hits on one detector element are flagged and not tested further.
    Angular and time-of-flight tests apply to annihilation/annihilation
    pairs only.
    """
    if h1.element == h2.element:
        return PairCheck(same_element=True)

    if not (is_annihilation_quality(h1.quality) and is_annihilation_quality(h2.quality)):
        return PairCheck()

    d_theta = azimuthal_separation_deg(h1.element.theta_deg, h2.element.theta_deg)
    dvt = tof_residual_ns(h1.r, h1.t_ps, h2.r, h2.t_ps, c_cm_per_ns)
    return PairCheck(
        too_close=d_theta < cuts.same_element_theta_veto_deg,
        d_theta_deg=d_theta,
        dvt_ns=dvt,
    )


def dvt_passes(min_dvt_ns: float, cuts: CutsCfg) -> bool:
    """
    Cluster-level time-of-flight decision on the smallest-magnitude residual.
    """
    above = min_dvt_ns > cuts.dvt_veto_threshold_ns
    if cuts.dvt_veto_direction == "accept_above":
        return above
    return not above


def shared_element_indices(hits: Sequence[Hit]) -> Set[int]:
    """Indices of every hit that shares its detector element with another hit."""
    out: Set[int] = set()
    for i, j in combinations(range(len(hits)), 2):
        if hits[i].element == hits[j].element:
            out.update((i, j))
    return out


def drop_shared_elements(cluster: EventCandidate) -> EventCandidate:
    """Copy of `cluster` without the hits that share a detector element."""
    remove = shared_element_indices(cluster.hits)
    return cluster.with_hits([h for k, h in enumerate(cluster.hits) if k not in remove])


def veto_scatterings(
    cluster: EventCandidate,
    cuts: CutsCfg,
    c_cm_per_ns: float = C_CM_PER_NS,
) -> VetoResult:
    """
    Apply the scattering veto to one cluster.

    - hits sharing a detector element are all removed from a surviving cluster
    - any annihilation pair closer than cuts.same_element_theta_veto_deg in
      azimuth discards the cluster
    - otherwise the cluster is kept or discarded by dvt_passes() on the
      signed residual of smallest magnitude among annihilation pairs
    """
    hits = cluster.hits
    to_remove: Set[int] = set()
    skip = False
    min_dvt = DVT_SENTINEL_NS
    res = VetoResult(cluster=None)

    for i, j in combinations(range(len(hits)), 2):
        h1, h2 = hits[i], hits[j]
        pc = check_pair(h1, h2, cuts, c_cm_per_ns)

        if pc.same_element:
            res.same_element_tots.append((h1.tot_ns, h2.tot_ns))
            to_remove.update((i, j))
            continue

        if pc.d_theta_deg is None:
            continue

        res.theta_diffs_deg.append(pc.d_theta_deg)
        if pc.too_close:
            res.close_element_tots.append((h1.tot_ns, h2.tot_ns))
            skip = True

        if abs(pc.dvt_ns) < abs(min_dvt):
            min_dvt = pc.dvt_ns

    res.min_dvt_ns = min_dvt

    if skip:
        res.reason = "theta"
        return res

    if not dvt_passes(min_dvt, cuts):
        res.reason = "dvt"
        return res

    kept = [h for k, h in enumerate(hits) if k not in to_remove]
    res.cluster = cluster.with_hits(kept)
    res.removed = len(to_remove)
    return res


def veto(cluster: EventCandidate, cuts: CutsCfg) -> Optional[EventCandidate]:
    """Surviving (reduced) cluster, or None when the cluster is discarded."""
    return veto_scatterings(cluster, cuts).cluster
