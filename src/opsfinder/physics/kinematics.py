# src/opsfinder/physics/kinematics.py
from __future__ import annotations
import numpy as np

# cm/ns
C_CM_PER_NS = 29.9792458
PS_PER_NS = 1000.0


def _unit(v: np.ndarray) -> np.ndarray:
    n = np.linalg.norm(v)
    if n == 0:
        raise ValueError("Zero-length vector")
    return v / n


def azimuthal_separation_deg(theta1_deg: float, theta2_deg: float) -> float:
    """
    Absolute difference of two azimuths wrapped into [0, 180].
    """
    d = abs(theta1_deg - theta2_deg) % 360.0
    if d > 180.0:
        d = 360.0 - d
    return d


def distance_cm(r1: np.ndarray, r2: np.ndarray) -> float:
    return float(np.linalg.norm(np.asarray(r1, dtype=float) - np.asarray(r2, dtype=float)))


def tof_residual_ns(
    r1_cm: np.ndarray, t1_ps: float,
    r2_cm: np.ndarray, t2_ps: float,
    c_cm_per_ns: float = C_CM_PER_NS,
) -> float:
    """
    dvt = |t1 - t2| - |r1 - r2| / c  [ns].

    Near zero when the second hit is reachable from the first at the speed
    of light (one photon scattering between detectors); negative for
    photons emitted together from a point between the hits.
    """
    dt_ns = abs(t1_ps - t2_ps) / PS_PER_NS
    return dt_ns - distance_cm(r1_cm, r2_cm) / c_cm_per_ns


def flight_time_ps(r1_cm: np.ndarray, r2_cm: np.ndarray, c_cm_per_ns: float = C_CM_PER_NS) -> float:
    """Light travel time between two points [ps]."""
    return PS_PER_NS * distance_cm(r1_cm, r2_cm) / c_cm_per_ns


def opening_angle_deg(a: np.ndarray, b: np.ndarray) -> float:
    """Angle between two direction vectors [deg]."""
    ua = _unit(np.asarray(a, dtype=float))
    ub = _unit(np.asarray(b, dtype=float))
    # guard numerical drift
    cos_ab = np.clip(float(ua @ ub), -1.0, 1.0)
    return float(np.degrees(np.arccos(cos_ab)))
