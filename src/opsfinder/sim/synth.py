from __future__ import annotations
import numpy as np
from dataclasses import dataclass
from typing import Iterator, List, Optional
from ..physics.hits import DetectorElement, Hit
from ..physics.kinematics import C_CM_PER_NS, PS_PER_NS
from ..physics.solver import SolverResult


@dataclass
class BarrelGeometry:
    """Single-layer cylindrical barrel of equal slots."""
    radius_cm: float = 42.5
    n_slots: int = 48
    layer: int = 1
    half_length_cm: float = 25.0

    @property
    def slot_width_deg(self) -> float:
        return 360.0 / self.n_slots

    def element_for(self, r: np.ndarray) -> DetectorElement:
        phi = float(np.degrees(np.arctan2(r[1], r[0]))) % 360.0
        slot = int(phi // self.slot_width_deg) % self.n_slots
        theta = (slot + 0.5) * self.slot_width_deg
        return DetectorElement(layer=self.layer, slot=slot + 1, theta_deg=theta)

    def exit_point(self, origin: np.ndarray, direction: np.ndarray) -> tuple[np.ndarray, float]:
        """
        First intersection of a ray with the barrel surface (ray must start inside).
        Returns (point, path length [cm]).
        """
        o = np.asarray(origin, dtype=float)
        u = np.asarray(direction, dtype=float)
        u = u / np.linalg.norm(u)
        a = u[0] ** 2 + u[1] ** 2
        if a == 0:
            raise ValueError("Ray parallel to the barrel axis never reaches the barrel")
        b = 2.0 * (o[0] * u[0] + o[1] * u[1])
        c = o[0] ** 2 + o[1] ** 2 - self.radius_cm ** 2
        s = (-b + np.sqrt(b * b - 4.0 * a * c)) / (2.0 * a)
        return o + s * u, float(s)


def _coplanar_gaps_deg(rng: np.random.Generator, min_gap: float = 100.0) -> tuple[float, float, float]:
    # three in-plane emission angles summing to 360 deg, each below 180
    while True:
        g1, g2 = rng.uniform(min_gap, 180.0, size=2)
        g3 = 360.0 - g1 - g2
        if min_gap < g3 < 180.0:
            return float(g1), float(g2), float(g3)


def _hit(geom: BarrelGeometry, r: np.ndarray, t_ps: float, tot_ns: float, extras: dict) -> Hit:
    return Hit(
        t_ps=float(t_ps),
        tot_ns=float(tot_ns),
        r=np.asarray(r, dtype=float),
        element=geom.element_for(r),
        thresholds=(4, 4),
        extras=extras,
    )


def synth_decay_hits(
    decay_id: int,
    vertex: np.ndarray,
    t_decay_ps: float,
    geom: BarrelGeometry,
    rng: np.random.Generator,
    *,
    lifetime_ps: Optional[float] = None,
    tot_annih: tuple[float, float] = (16.0, 24.0),
    tot_prompt: tuple[float, float] = (2.0, 8.0),
) -> List[Hit]:
    """
    Hits of one o-Ps -> 3 gamma decay in the transverse plane of `vertex`,
    plus a prompt photon emitted lifetime_ps earlier when given.

    Annihilation hits carry MC truth in extras: decay_id, true_vertex,
    true_time_ps.
    """
    v = np.asarray(vertex, dtype=float)
    phi0 = rng.uniform(0.0, 360.0)
    g1, g2, _ = _coplanar_gaps_deg(rng)
    hits: List[Hit] = []
    for phi in (phi0, phi0 + g1, phi0 + g1 + g2):
        u = np.array([np.cos(np.radians(phi)), np.sin(np.radians(phi)), 0.0])
        r, s = geom.exit_point(v, u)
        t = t_decay_ps + PS_PER_NS * s / C_CM_PER_NS
        hits.append(_hit(geom, r, t, rng.uniform(*tot_annih), {
            "decay_id": decay_id, "true_vertex": v.copy(), "true_time_ps": float(t_decay_ps),
        }))

    if lifetime_ps is not None:
        # isotropic in azimuth, transverse to keep the hit on the barrel
        phi = rng.uniform(0.0, 360.0)
        u = np.array([np.cos(np.radians(phi)), np.sin(np.radians(phi)), 0.0])
        r, s = geom.exit_point(v, u)
        t_form = t_decay_ps - lifetime_ps
        t = t_form + PS_PER_NS * s / C_CM_PER_NS
        hits.append(_hit(geom, r, t, rng.uniform(*tot_prompt), {
            "decay_id": decay_id, "prompt": True, "true_lifetime_ps": float(lifetime_ps),
        }))
    return hits


def synth_windows(
    n_windows: int,
    decays_per_window: int = 2,
    *,
    window_length_ps: float = 100_000.0,
    mean_lifetime_ps: float = 2_000.0,
    prompt_fraction: float = 1.0,
    noise_hits_per_window: int = 0,
    geom: BarrelGeometry | None = None,
    rng: np.random.Generator | None = None,
) -> Iterator[List[Hit]]:
    """
    Yield time-sorted hit lists, one per window, of well separated decays
    with optional uniformly distributed noise hits (TOT across 0..40 ns).
    """
    rng = rng or np.random.default_rng()
    geom = geom or BarrelGeometry()
    decay_id = 0
    for w in range(n_windows):
        t0 = w * window_length_ps
        hits: List[Hit] = []
        spacing = window_length_ps / (decays_per_window + 1)
        for k in range(decays_per_window):
            vertex = np.array([rng.uniform(-5, 5), rng.uniform(-5, 5), rng.uniform(-10, 10)])
            t_decay = t0 + (k + 1) * spacing
            lifetime = None
            if rng.uniform() < prompt_fraction:
                lifetime = float(rng.exponential(mean_lifetime_ps))
            hits.extend(synth_decay_hits(decay_id, vertex, t_decay, geom, rng, lifetime_ps=lifetime))
            decay_id += 1
        for _ in range(noise_hits_per_window):
            phi = np.radians(rng.uniform(0.0, 360.0))
            r = np.array([geom.radius_cm * np.cos(phi), geom.radius_cm * np.sin(phi),
                          rng.uniform(-geom.half_length_cm, geom.half_length_cm)])
            hits.append(_hit(geom, r, t0 + rng.uniform(0.0, window_length_ps), rng.uniform(0.0, 40.0), {}))
        hits.sort(key=lambda h: h.t_ps)
        yield hits


def truth_solver(h0: Hit, h1: Hit, h2: Hit) -> SolverResult:
    """
    Monte-Carlo truth "solver": returns the generated vertex and decay time
    when all three hits come from the same simulated decay, error_code=1
    otherwise.
    """
    ids = {h.extras.get("decay_id") for h in (h0, h1, h2)}
    if len(ids) != 1 or None in ids or "true_vertex" not in h0.extras:
        return SolverResult(vertex=np.zeros(3), time_ps=0.0, error_code=1)
    return SolverResult(
        vertex=np.asarray(h0.extras["true_vertex"], dtype=float),
        time_ps=float(h0.extras["true_time_ps"]),
        error_code=0,
    )
