from __future__ import annotations
from typing import Any, Dict, Mapping, Sequence
import h5py
import numpy as np
from datetime import datetime, timezone
from opsfinder.config.schemas import Config
from opsfinder.config.load import snapshot_config_toml
from opsfinder.physics.events import EventCandidate, EventType
from opsfinder.pipelines.diagnostics import Histogram1D, Histogram2D, PipelineStats

FORMAT_VERSION = "1.0"

_EVENT_TYPE_CODES = {EventType.UNKNOWN: 0, EventType.PROMPT: 1, EventType.THREE_GAMMA: 2}


def write_init(path: str, cfg_path: str, cfg: Config) -> h5py.File:
    f = h5py.File(path, "w")
    # Root attrs
    f.attrs["format_version"] = FORMAT_VERSION
    f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
    f.attrs["software"] = "opsfinder 0.1.0"
    f.attrs["config_text"] = snapshot_config_toml(cfg_path)

    # /meta
    meta = f.create_group("meta")
    for name, value in cfg.cuts.model_dump().items():
        meta.attrs[f"cuts.{name}"] = value
    meta.attrs["pipeline.until"] = cfg.pipeline.until
    meta.attrs["pairing.mode"] = cfg.pairing.mode
    meta.attrs["pairing.prompt_quality_band"] = np.asarray(cfg.pairing.prompt_quality_band, dtype=float)
    meta.attrs["selection.angle_sum_cut_enabled"] = cfg.selection.angle_sum_cut_enabled
    return f


def _replace_or_create(grp: h5py.Group, name: str, data: np.ndarray) -> None:
    if name in grp:
        del grp[name]
    grp.create_dataset(name, data=data, compression="gzip")


def write_candidates(
    f: h5py.File,
    candidates: Sequence[EventCandidate],
    *,
    group: str = "/candidates",
) -> None:
    """
    Store accepted candidates with variable hit multiplicity.

    Layout:

    /candidates/hits/event_ptr     (N+1,)  int64    CSR pointers into the flat hit columns
    /candidates/hits/t_ps          (M,)    float64
    /candidates/hits/tot_ns        (M,)    float32
    /candidates/hits/pos_cm        (M, 3)  float32
    /candidates/hits/layer, slot   (M,)    int32
    /candidates/hits/quality       (M,)    float32
    /candidates/hits/low_confidence (M,)   uint8

    /candidates/window             (N,)    int64
    /candidates/event_type         (N,)    uint8    0=unknown, 1=prompt, 2=3g
    /candidates/vertex_cm          (N, 3)  float32  NaN when unsolved
    /candidates/annihilation_time_ps (N,)  float64  NaN when unsolved
    /candidates/lifetime_ps        (N,)    float64  NaN when unpaired
    /candidates/angle_sum_deg      (N,)    float32  sum of two smallest angles, NaN if absent
    /candidates/angle_diff_deg     (N,)    float32
    """
    if group.endswith("/"):
        group = group[:-1]
    g_ev = f.require_group(group)
    g_hits = f.require_group(f"{group}/hits")

    n = len(candidates)
    ptr = np.zeros(n + 1, dtype=np.int64)
    for i, c in enumerate(candidates):
        ptr[i + 1] = ptr[i] + len(c.hits)
    m = int(ptr[-1])

    t = np.empty(m, dtype=np.float64)
    tot = np.empty(m, dtype=np.float32)
    pos = np.empty((m, 3), dtype=np.float32)
    layer = np.empty(m, dtype=np.int32)
    slot = np.empty(m, dtype=np.int32)
    quality = np.empty(m, dtype=np.float32)
    low = np.empty(m, dtype=np.uint8)

    window = np.full(n, -1, dtype=np.int64)
    etype = np.zeros(n, dtype=np.uint8)
    vertex = np.full((n, 3), np.nan, dtype=np.float32)
    t_anh = np.full(n, np.nan, dtype=np.float64)
    lifetime = np.full(n, np.nan, dtype=np.float64)
    a_sum = np.full(n, np.nan, dtype=np.float32)
    a_diff = np.full(n, np.nan, dtype=np.float32)

    w = 0
    for i, c in enumerate(candidates):
        window[i] = c.window
        etype[i] = _EVENT_TYPE_CODES[c.event_type]
        if c.annihilation_point is not None:
            vertex[i] = np.asarray(c.annihilation_point, dtype=float).reshape(3)
        if c.annihilation_time_ps is not None:
            t_anh[i] = c.annihilation_time_ps
        if c.lifetime_ps is not None:
            lifetime[i] = c.lifetime_ps
        if c.angles is not None:
            a_sum[i] = c.angles.sum_two_smallest
            a_diff[i] = c.angles.diff_two_smallest
        for h in c.hits:
            t[w] = h.t_ps
            tot[w] = h.tot_ns
            pos[w] = np.asarray(h.r, dtype=float).reshape(3)
            layer[w] = h.element.layer
            slot[w] = h.element.slot
            quality[w] = h.quality
            low[w] = 1 if h.low_confidence else 0
            w += 1

    if "event_ptr" in g_hits:
        del g_hits["event_ptr"]
    g_hits.create_dataset("event_ptr", data=ptr, dtype="i8")
    for name, arr in (("t_ps", t), ("tot_ns", tot), ("pos_cm", pos), ("layer", layer),
                      ("slot", slot), ("quality", quality), ("low_confidence", low)):
        _replace_or_create(g_hits, name, arr)

    for name, arr in (("window", window), ("event_type", etype), ("vertex_cm", vertex),
                      ("annihilation_time_ps", t_anh), ("lifetime_ps", lifetime),
                      ("angle_sum_deg", a_sum), ("angle_diff_deg", a_diff)):
        _replace_or_create(g_ev, name, arr)


def write_stats(f: h5py.File, stats: PipelineStats) -> None:
    grp = f.require_group("stats")
    for name, value in stats.counters().items():
        grp.attrs[name] = int(value)
    reasons = grp.require_group("reasons")
    for name, value in stats.reasons.items():
        reasons.attrs[name] = int(value)


def write_histograms(f: h5py.File, book: Mapping[str, Histogram1D | Histogram2D]) -> None:
    """
    /diagnostics/<name>/counts plus edges (1D) or xedges/yedges (2D);
    the title is kept as an attribute of the group.
    """
    root = f.require_group("diagnostics")
    for name, h in book.items():
        grp = root.require_group(name)
        grp.attrs["title"] = h.title
        _replace_or_create(grp, "counts", h.counts)
        if isinstance(h, Histogram2D):
            _replace_or_create(grp, "xedges", h.xedges)
            _replace_or_create(grp, "yedges", h.yedges)
        else:
            _replace_or_create(grp, "edges", h.edges)


def read_candidates(path: str, group: str = "/candidates") -> Dict[str, Any]:
    """
    Load the candidate tables back as numpy arrays keyed by dataset name
    (hit columns under "hits/<name>").
    """
    out: Dict[str, Any] = {}
    with h5py.File(str(path), "r") as f:
        if group not in f:
            raise KeyError(f"{group} not found in {path}")
        g = f[group]
        for name, obj in g.items():
            if isinstance(obj, h5py.Dataset):
                out[name] = obj[...]
        for name, obj in g["hits"].items():
            out[f"hits/{name}"] = obj[...]
    return out
