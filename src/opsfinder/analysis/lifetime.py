# src/opsfinder/analysis/lifetime.py
from __future__ import annotations
from dataclasses import replace
from typing import Optional, Sequence, Tuple

import numpy as np

from opsfinder.physics.events import EventCandidate, EventType
from opsfinder.physics.hits import Hit
from opsfinder.physics.kinematics import C_CM_PER_NS, flight_time_ps


def corrected_prompt_time(prompt: Hit, vertex: np.ndarray, c_cm_per_ns: float = C_CM_PER_NS) -> float:
    """
    Emission time of the prompt photon [ps]: hit time minus the light travel
    time from the decay vertex to the hit.
    """
    return float(prompt.t_ps) - flight_time_ps(prompt.r, vertex, c_cm_per_ns)


def _with_lifetime(candidate: EventCandidate, prompt: Hit, c_cm_per_ns: float) -> EventCandidate:
    t_prompt = corrected_prompt_time(prompt, candidate.annihilation_point, c_cm_per_ns)
    meta = dict(candidate.meta)
    meta["prompt_time_ps"] = t_prompt
    return replace(
        candidate,
        hits=list(candidate.hits),
        lifetime_ps=float(candidate.annihilation_time_ps) - t_prompt,
        meta=meta,
    )


def _is_solved(candidate: EventCandidate) -> bool:
    return candidate.annihilation_point is not None and candidate.annihilation_time_ps is not None


def pair_window(
    candidates: Sequence[EventCandidate],
    band: Tuple[float, float] = (1.8, 2.2),
    c_cm_per_ns: float = C_CM_PER_NS,
) -> Optional[EventCandidate]:
    """
    Pair the Prompt and ThreeGamma candidates of one window.

    Proceeds only for exactly one Prompt candidate, exactly one solved
    ThreeGamma candidate, and exactly one hit of the Prompt candidate with
    band[0] < quality < band[1]. Returns the ThreeGamma candidate carrying
    lifetime_ps, else None.
    """
    prompts = [c for c in candidates if c.event_type is EventType.PROMPT]
    triples = [c for c in candidates if c.event_type is EventType.THREE_GAMMA]
    if len(prompts) != 1 or len(triples) != 1:
        return None

    lo, hi = band
    clean = [h for h in prompts[0].hits if lo < h.quality < hi]
    if len(clean) != 1:
        return None

    anh = triples[0]
    if not _is_solved(anh):
        return None
    return _with_lifetime(anh, clean[0], c_cm_per_ns)


def lifetime_from_own_prompt(
    candidate: EventCandidate,
    c_cm_per_ns: float = C_CM_PER_NS,
) -> Optional[EventCandidate]:
    """
    Lifetime of a solved 4-hit ThreeGamma candidate from the prompt hit it
    carries itself; None for 3-hit or unsolved candidates.
    """
    if candidate.event_type is not EventType.THREE_GAMMA or not _is_solved(candidate):
        return None
    prompts = candidate.prompt_hits()
    if len(candidate.hits) != 4 or len(prompts) != 1:
        return None
    return _with_lifetime(candidate, prompts[0], c_cm_per_ns)
