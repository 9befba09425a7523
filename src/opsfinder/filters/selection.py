# src/opsfinder/filters/selection.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from opsfinder.analysis.angles import AngleSignature, azimuthal_signature
from opsfinder.config.schemas import CutsCfg
from opsfinder.filters.veto import drop_shared_elements
from opsfinder.physics.events import (
    EventCandidate,
    EventType,
    is_annihilation_quality,
    is_prompt_quality,
)


@dataclass(frozen=True)
class HitCounts:
    n_annih: int
    n_prompt: int


def count_hit_classes(cluster: EventCandidate) -> HitCounts:
    n_annih = sum(1 for h in cluster.hits if is_annihilation_quality(h.quality))
    n_prompt = sum(1 for h in cluster.hits if is_prompt_quality(h.quality))
    return HitCounts(n_annih=n_annih, n_prompt=n_prompt)


def passes_multiplicity(counts: HitCounts) -> bool:
    """Exactly three annihilation candidates and at most one prompt candidate."""
    return counts.n_annih == 3 and counts.n_prompt <= 1


def select_three_gamma(
    cluster: EventCandidate,
    cuts: CutsCfg,
    *,
    angle_cut: bool = False,
) -> Optional[EventCandidate]:
    """
    Accept a vetoed cluster as a ThreeGamma candidate or drop it.

    With angle_cut=True the azimuthal signature of the three annihilation
    hits must also have sum_two_smallest > cuts.angle_sum_cut_deg.
    The accepted candidate carries that signature in `angles` either way.
    """
    if not passes_multiplicity(count_hit_classes(cluster)):
        return None

    sig: AngleSignature = azimuthal_signature(cluster.annihilation_hits())
    if angle_cut and not sig.passes(cuts.angle_sum_cut_deg):
        return None

    out = cluster.tagged(EventType.THREE_GAMMA)
    out.angles = sig
    return out


def is_prompt_cluster(cluster: EventCandidate) -> bool:
    """Non-empty and free of annihilation or rejected hits."""
    return bool(cluster.hits) and all(h.quality >= 0.5 for h in cluster.hits)


def select_prompt(cluster: EventCandidate) -> Optional[EventCandidate]:
    """
    Tag a prompt-only cluster as a Prompt candidate.

    Hits sharing a detector element are dropped first, as in the scattering
    veto; the angular and time-of-flight rules do not apply. None when the
    cluster is not prompt-only or nothing survives the removal.
    """
    if not is_prompt_cluster(cluster):
        return None
    kept = drop_shared_elements(cluster)
    if not kept.hits:
        return None
    return kept.tagged(EventType.PROMPT)
