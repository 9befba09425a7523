"""
opsfinder.io.adapters

Readers that turn external hit sources into per-window, time-sorted lists
of physics-layer hits (opsfinder.physics.hits.Hit) for the candidate
finder.

Design goals
------------
- Keep I/O concerns isolated from classification and selection.
- Normalize units on ingest:
  * distances -> cm
  * times     -> ps
  * TOT       -> ns
- Be tolerant to column-name variants (see io.canonicalize).
- Remain side-effect free: yield Python objects; HDF5 output is handled downstream.

Entry points
------------
- class TableAdapter: hit tables (CSV/Parquet/HDF5), one row per hit.
- class SynthAdapter: simulated o-Ps -> 3 gamma windows (sim.synth).
- function make_adapter(cfg): factory from the [io.adapter] TOML section.

Config (example)
----------------
[io]
input_path = "data/run42_hits.parquet"

[io.adapter]
type = "table"                # "table" | "synth"
time_units = "ps"             # "ps" | "ns"
unit_pos_is_mm = false
window_length_ps = 0          # > 0: derive window index from hit time
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Literal, Optional

import numpy as np
import pandas as pd

from opsfinder.physics.hits import DetectorElement, Hit
from opsfinder.io.canonicalize import canonicalize_frame
from opsfinder.sim.synth import BarrelGeometry, synth_windows

_CM_PER_MM = 0.1


@dataclass
class HitWindow:
    """One readout window: its index and its hits sorted by t_ps."""
    index: int
    hits: List[Hit]


# ---------------------------------------------------------------------------
# Base adapter API
# ---------------------------------------------------------------------------

class BaseAdapter:
    """
    Abstract adapter interface.

    Yields HitWindow objects in window order, hits normalized to cm/ps/ns.
    """

    def iter_windows(self, path: str) -> Iterator[HitWindow]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Table adapter
# ---------------------------------------------------------------------------

class TableAdapter(BaseAdapter):
    """
    Read row-per-hit tables.

    Supported inputs: CSV (.csv), Parquet (.parquet/.pq), HDF (.h5/.hdf5).

    Canonical columns (see io.canonicalize for accepted variants):
      window, t_ps, tot_ns, x_cm, y_cm, z_cm, layer, slot, theta_deg, thr_a, thr_b

    Rows without a window column are windowed by `window_length_ps` when it
    is positive, else treated as a single window. A missing theta_deg is
    taken from the hit azimuth atan2(y, x).
    """

    def __init__(
        self,
        time_units: Literal["ps", "ns"] = "ps",
        unit_pos_is_mm: bool = False,
        window_length_ps: float = 0.0,
        hdf_key: Optional[str] = None,
    ) -> None:
        self.time_scale = 1000.0 if time_units == "ns" else 1.0
        self.unit_pos_is_mm = unit_pos_is_mm
        self.window_length_ps = float(window_length_ps)
        self.hdf_key = hdf_key

    def _read_table(self, path: str) -> pd.DataFrame:
        p = Path(path)
        suffix = p.suffix.lower()
        if suffix in {".csv"}:
            return pd.read_csv(p)
        if suffix in {".parquet", ".pq"}:
            return pd.read_parquet(p)
        if suffix in {".h5", ".hdf5"}:
            return pd.read_hdf(p, key=self.hdf_key)
        raise ValueError(f"Unrecognized hit table: {p.name} (expected .csv/.parquet/.h5)")

    def frame_to_windows(self, df: pd.DataFrame, *, has_window: Optional[bool] = None) -> Iterator[HitWindow]:
        """Convert a raw hit table to HitWindow objects (used by iter_windows and tests)."""
        if has_window is None:
            has_window = any(c in df.columns for c in ("window", "time_window", "tw"))
        t = canonicalize_frame(df)
        t["t"] = t["t"].astype(float) * self.time_scale
        if self.unit_pos_is_mm:
            for col in ("x_cm", "y_cm", "z_cm"):
                t[col] = t[col].astype(float) * _CM_PER_MM
        if not has_window and self.window_length_ps > 0:
            t["window"] = np.floor(t["t"] / self.window_length_ps).astype(np.int64)

        theta = t["theta_deg"].to_numpy(dtype=float)
        missing = np.isnan(theta)
        if missing.any():
            az = np.degrees(np.arctan2(t["y_cm"].to_numpy(dtype=float), t["x_cm"].to_numpy(dtype=float))) % 360.0
            theta = np.where(missing, az, theta)
        t["theta_deg"] = theta

        for w, grp in t.groupby("window", sort=True):
            grp = grp.sort_values("t", kind="stable")
            hits = [
                Hit(
                    t_ps=float(row.t),
                    tot_ns=float(row.tot_ns),
                    r=np.array([row.x_cm, row.y_cm, row.z_cm], dtype=float),
                    element=DetectorElement(layer=int(row.layer), slot=int(row.slot), theta_deg=float(row.theta_deg)),
                    thresholds=(int(row.thr_a), int(row.thr_b)),
                )
                for row in grp.itertuples(index=False)
            ]
            yield HitWindow(index=int(w), hits=hits)

    def iter_windows(self, path: str) -> Iterator[HitWindow]:
        yield from self.frame_to_windows(self._read_table(path))


# ---------------------------------------------------------------------------
# Synthetic adapter
# ---------------------------------------------------------------------------

class SynthAdapter(BaseAdapter):
    """
    Simulated windows; `path` is ignored. Hits carry MC truth usable by
    opsfinder.sim.synth:truth_solver.
    """

    def __init__(
        self,
        n_windows: int = 10,
        decays_per_window: int = 2,
        mean_lifetime_ps: float = 2000.0,
        prompt_fraction: float = 1.0,
        noise_hits_per_window: int = 0,
        seed: Optional[int] = None,
        radius_cm: float = 42.5,
        n_slots: int = 48,
    ) -> None:
        self.n_windows = n_windows
        self.decays_per_window = decays_per_window
        self.mean_lifetime_ps = mean_lifetime_ps
        self.prompt_fraction = prompt_fraction
        self.noise_hits_per_window = noise_hits_per_window
        self.seed = seed
        self.geom = BarrelGeometry(radius_cm=radius_cm, n_slots=n_slots)

    def iter_windows(self, path: str) -> Iterator[HitWindow]:
        rng = np.random.default_rng(self.seed)
        gen = synth_windows(
            self.n_windows,
            self.decays_per_window,
            mean_lifetime_ps=self.mean_lifetime_ps,
            prompt_fraction=self.prompt_fraction,
            noise_hits_per_window=self.noise_hits_per_window,
            geom=self.geom,
            rng=rng,
        )
        for w, hits in enumerate(gen):
            yield HitWindow(index=w, hits=hits)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def make_adapter(cfg: Dict) -> BaseAdapter:
    """
    Create an adapter from a config dict (from TOML/CLI).

    Expected keys under [io.adapter]:
      type: "table" | "synth"
      time_units: "ps" | "ns"            (table)
      unit_pos_is_mm: bool               (table)
      window_length_ps: float            (table)
      hdf_key: str                       (table, HDF5 input)
      n_windows, decays_per_window, mean_lifetime_ps, prompt_fraction,
      noise_hits_per_window, seed        (synth)
    """
    typ = (cfg.get("type") or "table").lower()

    if typ == "table":
        return TableAdapter(
            time_units=cfg.get("time_units", "ps"),
            unit_pos_is_mm=bool(cfg.get("unit_pos_is_mm", False)),
            window_length_ps=float(cfg.get("window_length_ps", 0.0)),
            hdf_key=cfg.get("hdf_key"),
        )

    if typ == "synth":
        return SynthAdapter(
            n_windows=int(cfg.get("n_windows", 10)),
            decays_per_window=int(cfg.get("decays_per_window", 2)),
            mean_lifetime_ps=float(cfg.get("mean_lifetime_ps", 2000.0)),
            prompt_fraction=float(cfg.get("prompt_fraction", 1.0)),
            noise_hits_per_window=int(cfg.get("noise_hits_per_window", 0)),
            seed=cfg.get("seed"),
            radius_cm=float(cfg.get("radius_cm", 42.5)),
            n_slots=int(cfg.get("n_slots", 48)),
        )

    raise ValueError(f"Unknown adapter type: {typ}")
