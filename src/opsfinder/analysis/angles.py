# src/opsfinder/analysis/angles.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from opsfinder.physics.events import CandidateContractError
from opsfinder.physics.hits import Hit
from opsfinder.physics.kinematics import opening_angle_deg


@dataclass(frozen=True)
class AngleSignature:
    """
    Sorted relative angles of a photon triple and the two derived observables.

    angles_deg: (a0, a1, a2) with a0 <= a1 <= a2
    sum_two_smallest: a0 + a1
    diff_two_smallest: a1 - a0
    """
    angles_deg: Tuple[float, float, float]
    sum_two_smallest: float
    diff_two_smallest: float

    @classmethod
    def from_angles(cls, angles: Sequence[float]) -> "AngleSignature":
        a0, a1, a2 = sorted(float(a) for a in angles)
        return cls(angles_deg=(a0, a1, a2), sum_two_smallest=a0 + a1, diff_two_smallest=a1 - a0)

    def passes(self, angle_sum_cut_deg: float) -> bool:
        return self.sum_two_smallest > angle_sum_cut_deg


class DegenerateVertexError(ValueError):
    """A solved vertex coincides with one of the hit positions."""


def _require_triple(hits: Sequence[Hit]) -> None:
    if len(hits) != 3:
        raise CandidateContractError(f"angle analysis needs exactly 3 hits, got {len(hits)}")


def opening_angles(hits: Sequence[Hit], vertex: np.ndarray) -> Tuple[float, float, float]:
    """
    Pairwise opening angles [deg] between the directions vertex -> hit,
    in pair order (0,1), (1,2), (0,2).
    Raises DegenerateVertexError when the vertex sits on a hit position.
    """
    _require_triple(hits)
    v = np.asarray(vertex, dtype=float)
    d = [np.asarray(h.r, dtype=float) - v for h in hits]
    for i, di in enumerate(d):
        if not np.any(di):
            raise DegenerateVertexError(f"vertex {v.tolist()} lies on hit {i}")
    return (
        opening_angle_deg(d[0], d[1]),
        opening_angle_deg(d[1], d[2]),
        opening_angle_deg(d[0], d[2]),
    )


def opening_angle_signature(hits: Sequence[Hit], vertex: np.ndarray) -> AngleSignature:
    """
    Kinematic signature of a solved triple. For a vertex inside the triangle
    spanned by three coplanar hits the three angles sum to 360 deg.
    """
    return AngleSignature.from_angles(opening_angles(hits, vertex))


def azimuthal_signature(hits: Sequence[Hit]) -> AngleSignature:
    """
    Vertex-free signature from the detector-element azimuths: the three
    gaps between sorted slot angles around the barrel (they sum to 360).
    """
    _require_triple(hits)
    th = sorted(float(h.element.theta_deg) % 360.0 for h in hits)
    t12 = th[1] - th[0]
    t23 = th[2] - th[1]
    t31 = 360.0 - t12 - t23
    return AngleSignature.from_angles((t12, t23, t31))
