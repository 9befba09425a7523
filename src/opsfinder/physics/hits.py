from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple
import numpy as np

@dataclass(frozen=True, slots=True)
class DetectorElement:
    """
    Scintillator slot identity: (layer, slot).

    theta_deg is the azimuth of the slot in the barrel; it is geometry,
    not identity, so it takes no part in equality or hashing.
    """
    layer: int
    slot: int
    theta_deg: float = field(default=0.0, compare=False)


@dataclass(frozen=True, slots=True, eq=False)
class Hit:
    """
    Single photon interaction in the detector (physics layer).

    t_ps: hit time [ps]
    tot_ns: time-over-threshold, the deposited-energy proxy [ns]
    r: position [cm]
    element: detector element that registered the hit
    quality: classification tag, see physics.classify (-1 until tagged)
    low_confidence: fewer fired thresholds than required on either side
    thresholds: fired leading-edge thresholds on side A and side B
    extras: arbitrary per-hit fields preserved from input (MC truth, raw columns...)
    """
    t_ps: float
    tot_ns: float
    r: np.ndarray  # shape (3,), dtype float
    element: DetectorElement
    quality: float = -1.0
    low_confidence: bool = False
    thresholds: Tuple[int, int] = (4, 4)

    # Preserve raw/source-specific fields for later filtering without polluting the core schema
    extras: Dict[str, Any] = field(default_factory=dict)
