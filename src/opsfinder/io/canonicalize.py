# src/opsfinder/io/canonicalize.py
from __future__ import annotations
from typing import Iterable, Mapping

import pandas as pd

_CANON_COLUMNS = {
    # canonical_key: tuple of fallback source keys
    "window": ("window", "time_window", "tw"),
    "t": ("t_ps", "t", "time", "time_ps"),
    "tot_ns": ("tot_ns", "tot", "TOT", "energy"),
    "x_cm": ("x_cm", "x", "pos_x"),
    "y_cm": ("y_cm", "y", "pos_y"),
    "z_cm": ("z_cm", "z", "pos_z"),
    # Detector element identity
    "layer": ("layer", "layer_id"),
    "slot": ("slot", "slot_id", "scin", "scin_id", "strip"),
    "theta_deg": ("theta_deg", "theta", "slot_theta"),
    # fired leading-edge thresholds per side
    "thr_a": ("thr_a", "nthr_a", "thresholds_a"),
    "thr_b": ("thr_b", "nthr_b", "thresholds_b"),
}

REQUIRED = ("t", "tot_ns", "x_cm", "y_cm", "z_cm", "slot")


def _first(cols: Iterable[str], names: Iterable[str]):
    cols = set(cols)
    for k in names:
        if k in cols:
            return k
    return None


def canonical_column_map(columns: Iterable[str]) -> Mapping[str, str]:
    """
    Map canonical names to the source column that provides them.
    Raises ValueError when a required column has no match.
    """
    columns = list(columns)
    out = {}
    for canon, names in _CANON_COLUMNS.items():
        src = _first(columns, names)
        if src is not None:
            out[canon] = src
    missing = [k for k in REQUIRED if k not in out]
    if missing:
        raise ValueError(f"Hit table is missing required columns for {missing}; got {columns}")
    return out


def canonicalize_frame(df: pd.DataFrame) -> pd.DataFrame:
    """
    Return a frame with canonical column names; missing optional columns are
    filled conservatively (layer 1, window 0, 4 thresholds per side, theta NaN).
    """
    cmap = canonical_column_map(df.columns)
    out = pd.DataFrame({canon: df[src].to_numpy() for canon, src in cmap.items()})
    if "window" not in out:
        out["window"] = 0
    if "layer" not in out:
        out["layer"] = 1
    if "theta_deg" not in out:
        out["theta_deg"] = float("nan")
    for side in ("thr_a", "thr_b"):
        if side not in out:
            out[side] = 4
    return out
