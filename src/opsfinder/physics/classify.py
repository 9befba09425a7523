"""
Hit classification by time-over-threshold.

Quality tag convention carried on every hit downstream:

    q < 0          rejected / ambiguous
    0 <= q < 0.5   annihilation photon candidate
    0.5 <= q < 1   prompt (deexcitation) photon candidate

A low-confidence annihilation hit (too few fired thresholds on one side)
is tagged 0.1, which stays inside the annihilation band.
"""
from __future__ import annotations
from dataclasses import replace
from enum import Enum

from opsfinder.config.schemas import CutsCfg
from .hits import Hit

QUALITY_REJECTED = -1.0
QUALITY_ANNIHILATION = 0.3
QUALITY_PROMPT = 0.7
QUALITY_LOW_CONFIDENCE = 0.1


class HitClass(str, Enum):
    REJECTED = "rejected"
    ANNIHILATION = "annihilation"
    PROMPT = "prompt"


def classify(hit: Hit, cuts: CutsCfg) -> HitClass:
    tot = hit.tot_ns
    # first match wins: a TOT inside both bands is an annihilation candidate
    if cuts.tot_annih_low < tot < cuts.tot_annih_high:
        return HitClass.ANNIHILATION
    if cuts.tot_prompt_low < tot < cuts.tot_prompt_high:
        return HitClass.PROMPT
    return HitClass.REJECTED


def is_low_confidence(hit: Hit, cuts: CutsCfg) -> bool:
    side_a, side_b = hit.thresholds
    need = cuts.low_confidence_min_thresholds
    return side_a < need or side_b < need


def tag_hit(hit: Hit, cuts: CutsCfg) -> Hit:
    """
    Return a copy of `hit` with its quality tag and low-confidence flag set.
    """
    cls = classify(hit, cuts)
    low = is_low_confidence(hit, cuts)
    if cls is HitClass.ANNIHILATION:
        q = QUALITY_LOW_CONFIDENCE if low else QUALITY_ANNIHILATION
    elif cls is HitClass.PROMPT:
        q = QUALITY_PROMPT
    else:
        q = QUALITY_REJECTED
    return replace(hit, quality=q, low_confidence=low)


def is_accepted(hit: Hit) -> bool:
    """Clustering filter for tagged hits."""
    return hit.quality >= 0.0
