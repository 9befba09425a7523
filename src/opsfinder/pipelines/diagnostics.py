# src/opsfinder/pipelines/diagnostics.py
from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Dict, Iterable

import numpy as np

TOT_MULTIPLICITIES = ("1hits", "2hits", "3plus_hits", "any_hits")


@dataclass
class PipelineStats:
    """
    Per-stage accept/reject tallies, threaded through process_window().

    One instance per sequential run; parallel shards keep their own and
    are combined with merge().
    """
    windows: int = 0
    hits_in: int = 0
    hits_rejected: int = 0
    hits_low_confidence: int = 0
    clusters: int = 0
    prompt_candidates: int = 0
    after_theta: int = 0
    after_dvt: int = 0
    with_same_element_hits: int = 0
    before_angle_cut: int = 0
    selected: int = 0
    z_rejected: int = 0
    solver_failures: int = 0
    solved: int = 0
    paired: int = 0
    contract_violations: int = 0
    windows_dropped: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)

    def inc(self, reason: str) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + 1

    def merge(self, other: "PipelineStats") -> "PipelineStats":
        for f in fields(self):
            if f.name == "reasons":
                continue
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        for k, v in other.reasons.items():
            self.reasons[k] = self.reasons.get(k, 0) + v
        return self

    def counters(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "reasons"}

    def report_lines(self) -> list[str]:
        return [
            f"[Counters] Refined clusters:               {self.clusters}",
            f"[Counters] Clusters after dTheta cut:      {self.after_theta}",
            f"[Counters] Clusters after t-d/c cut:       {self.after_dvt}",
            f"[Counters] Clusters with same-element hits: {self.with_same_element_hits}",
            f"[Counters] Candidates before angle cut:    {self.before_angle_cut}",
            f"[Counters] Candidates after angle cut:     {self.selected}",
            f"[Counters] Solved candidates:              {self.solved}",
            f"[Counters] Paired candidates (lifetime):   {self.paired}",
        ]


@dataclass
class Histogram1D:
    edges: np.ndarray
    counts: np.ndarray = None  # type: ignore[assignment]
    title: str = ""

    def __post_init__(self):
        self.edges = np.asarray(self.edges, dtype=float)
        if self.counts is None:
            self.counts = np.zeros(len(self.edges) - 1, dtype=np.int64)

    @classmethod
    def uniform(cls, nbins: int, lo: float, hi: float, title: str = "") -> "Histogram1D":
        return cls(edges=np.linspace(lo, hi, nbins + 1), title=title)

    def fill(self, values: Iterable[float] | float) -> None:
        v = np.atleast_1d(np.asarray(values, dtype=float))
        if v.size == 0:
            return
        c, _ = np.histogram(v, bins=self.edges)
        self.counts += c


@dataclass
class Histogram2D:
    xedges: np.ndarray
    yedges: np.ndarray
    counts: np.ndarray = None  # type: ignore[assignment]
    title: str = ""

    def __post_init__(self):
        self.xedges = np.asarray(self.xedges, dtype=float)
        self.yedges = np.asarray(self.yedges, dtype=float)
        if self.counts is None:
            # (ny, nx) so the array renders with x along columns
            self.counts = np.zeros((len(self.yedges) - 1, len(self.xedges) - 1), dtype=np.int64)

    @classmethod
    def uniform(cls, nx: int, xlo: float, xhi: float, ny: int, ylo: float, yhi: float,
                title: str = "") -> "Histogram2D":
        return cls(xedges=np.linspace(xlo, xhi, nx + 1), yedges=np.linspace(ylo, yhi, ny + 1), title=title)

    def fill(self, x: float, y: float) -> None:
        c, _, _ = np.histogram2d([y], [x], bins=[self.yedges, self.xedges])
        self.counts += c.astype(np.int64)


def make_histogram_book() -> Dict[str, Histogram1D | Histogram2D]:
    """
    Diagnostic histograms filled by the pipeline. Keys double as HDF5
    group names under /diagnostics.
    """
    book: Dict[str, Histogram1D | Histogram2D] = {
        "hits_per_cluster": Histogram1D.uniform(20, 0.5, 20.5, "Number of hits in cluster"),
        "tot_selected": Histogram1D.uniform(1000, 0.0, 100.0, "TOT of hits in selected candidates;TOT [ns]"),
        "annih_hits_per_cluster": Histogram1D.uniform(10, -0.5, 9.5, "Annihilation candidate hits in cluster"),
        "prompt_hits_per_cluster": Histogram1D.uniform(10, -0.5, 9.5, "Prompt candidate hits in cluster"),
        "prompt_hits_per_3annih_cluster": Histogram1D.uniform(
            10, -0.5, 9.5, "Prompt candidate hits in clusters with 3 annihilation candidates",
        ),
        "prompt_hits_per_candidate": Histogram1D.uniform(10, -0.5, 9.5, "Prompt candidate hits after all cuts"),
        "annih_vs_prompt": Histogram2D.uniform(
            10, -0.5, 9.5, 10, -0.5, 9.5,
            "Prompt vs annihilation candidate hits per cluster;annihilation;prompt",
        ),
        "theta_diffs": Histogram1D.uniform(181, -0.5, 180.5, "Azimuthal separation of annihilation pairs;dtheta [deg]"),
        "dvt": Histogram1D.uniform(200, -5.0, 5.0, "Smallest |t - d/c| residual per cluster;t-d/c [ns]"),
        "same_element_tots": Histogram2D.uniform(
            100, 0.0, 100.0, 100, 0.0, 100.0, "TOTs of hit pairs in the same element;TOT 1 [ns];TOT 2 [ns]",
        ),
        "close_element_tots": Histogram2D.uniform(
            100, 0.0, 100.0, 100, 0.0, 100.0, "TOTs of hit pairs in neighbouring elements;TOT 1 [ns];TOT 2 [ns]",
        ),
        "angles": Histogram2D.uniform(
            360, -0.5, 359.5, 360, -0.5, 359.5,
            "3-hit angles;smallest + second smallest [deg];second smallest - smallest [deg]",
        ),
        "angles_passed": Histogram2D.uniform(
            360, -0.5, 359.5, 360, -0.5, 359.5,
            "3-hit angles, selected;smallest + second smallest [deg];second smallest - smallest [deg]",
        ),
        "opening_angles": Histogram2D.uniform(
            360, -0.5, 359.5, 360, -0.5, 359.5,
            "Opening angles at vertex;smallest + second smallest [deg];second smallest - smallest [deg]",
        ),
        "lifetime": Histogram1D.uniform(400, -20.05, 19.95, "Time between deexcitation and annihilation;dt [ns]"),
        "decay_point_xy": Histogram2D.uniform(100, -50.0, 50.0, 100, -50.0, 50.0, "Decay point;X [cm];Y [cm]"),
        "decay_point_xz": Histogram2D.uniform(100, -50.0, 50.0, 100, -50.0, 50.0, "Decay point;Z [cm];X [cm]"),
    }
    # TOT spectra split by cluster multiplicity, before (nocut) and after the veto
    for suffix in ("_nocut", ""):
        for mult in TOT_MULTIPLICITIES:
            book[f"tot_{mult}{suffix}"] = Histogram1D.uniform(1000, 0.0, 100.0, f"TOT, {mult} clusters;TOT [ns]")
    for step in ("clustered", "vetoed", "selected"):
        book[f"low_confidence_{step}"] = Histogram1D.uniform(
            6, -0.5, 5.5, f"Low-confidence hits per cluster ({step})",
        )
    return book


def tot_multiplicity_key(n_hits: int) -> str:
    if n_hits >= 3:
        return "3plus_hits"
    return f"{n_hits}hits"


def fill_tot_by_multiplicity(book: Dict[str, Histogram1D | Histogram2D], tots: Iterable[float], suffix: str = "") -> None:
    """Fill tot_any_hits<suffix> and the spectrum matching the cluster size."""
    tots = list(tots)
    if not tots:
        return
    book[f"tot_any_hits{suffix}"].fill(tots)
    book[f"tot_{tot_multiplicity_key(len(tots))}{suffix}"].fill(tots)
