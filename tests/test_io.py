import h5py
import numpy as np
import pandas as pd
import pytest

from opsfinder.analysis.angles import AngleSignature
from opsfinder.io.adapters import SynthAdapter, TableAdapter, make_adapter
from opsfinder.io.canonicalize import canonical_column_map
from opsfinder.io.store import read_candidates, write_candidates, write_histograms, write_stats
from opsfinder.physics.events import EventCandidate, EventType
from opsfinder.pipelines.diagnostics import Histogram1D, Histogram2D, PipelineStats

from conftest import make_hit


def _hit_frame():
    return pd.DataFrame({
        "tw": [1, 0, 0, 1],
        "time": [3.0, 2.0, 1.0, 0.5],
        "tot": [20.0, 5.0, 20.0, 18.0],
        "x": [0.0, 42.5, -42.5, 0.0],
        "y": [42.5, 0.0, 0.0, -42.5],
        "z": [1.0, 2.0, 3.0, 4.0],
        "scin": [13, 1, 25, 37],
    })


def test_table_adapter_groups_sorts_and_converts():
    windows = list(TableAdapter(time_units="ns").frame_to_windows(_hit_frame()))
    assert [w.index for w in windows] == [0, 1]
    w0, w1 = windows
    assert [h.t_ps for h in w0.hits] == [1000.0, 2000.0]
    assert [h.t_ps for h in w1.hits] == [500.0, 3000.0]
    assert w0.hits[0].element.slot == 25
    # azimuth filled from position when no theta column is present
    assert w0.hits[0].element.theta_deg == pytest.approx(180.0)
    assert w1.hits[0].element.theta_deg == pytest.approx(270.0)
    assert w0.hits[0].thresholds == (4, 4)
    assert w0.hits[0].quality == -1.0


def test_table_adapter_windows_by_time():
    df = _hit_frame().drop(columns=["tw"])
    windows = list(TableAdapter(window_length_ps=2.0, unit_pos_is_mm=True).frame_to_windows(df))
    assert [w.index for w in windows] == [0, 1]
    assert [len(w.hits) for w in windows] == [2, 2]
    assert windows[0].hits[0].r[0] == pytest.approx(0.0)
    assert windows[0].hits[0].r[1] == pytest.approx(-4.25)


def test_table_adapter_reads_csv(tmp_path):
    p = tmp_path / "hits.csv"
    _hit_frame().to_csv(p, index=False)
    adapter = make_adapter({"type": "table", "time_units": "ns"})
    assert isinstance(adapter, TableAdapter)
    assert sum(len(w.hits) for w in adapter.iter_windows(str(p))) == 4


def test_missing_required_column():
    with pytest.raises(ValueError):
        canonical_column_map(["t", "tot", "x", "y", "z"])


def test_unknown_adapter_type():
    with pytest.raises(ValueError):
        make_adapter({"type": "root"})


def test_synth_adapter_is_seeded():
    cfg = {"type": "synth", "n_windows": 3, "decays_per_window": 2, "seed": 5}
    a = [[h.t_ps for h in w.hits] for w in make_adapter(cfg).iter_windows("")]
    b = [[h.t_ps for h in w.hits] for w in make_adapter(cfg).iter_windows("")]
    assert a == b
    assert len(a) == 3
    # 3 annihilation photons + 1 prompt per decay
    assert all(len(w) == 8 for w in a)
    assert all(t == sorted(t) for t in a)


def test_candidates_roundtrip(tmp_path):
    tg = EventCandidate(
        hits=[make_hit(t, theta=th, quality=0.3) for t, th in ((0, 0), (10, 120), (20, 240))],
        event_type=EventType.THREE_GAMMA,
        window=4,
        annihilation_point=np.array([1.0, 2.0, 3.0]),
        annihilation_time_ps=15.0,
        lifetime_ps=2000.0,
        angles=AngleSignature.from_angles([120.0, 120.0, 120.0]),
    )
    pr = EventCandidate(hits=[make_hit(50, 5.0, quality=0.7)], event_type=EventType.PROMPT, window=4)

    path = tmp_path / "cands.h5"
    with h5py.File(path, "w") as f:
        write_candidates(f, [tg, pr])
    out = read_candidates(str(path))

    assert out["hits/event_ptr"].tolist() == [0, 3, 4]
    assert out["event_type"].tolist() == [2, 1]
    assert out["window"].tolist() == [4, 4]
    assert out["lifetime_ps"][0] == 2000.0 and np.isnan(out["lifetime_ps"][1])
    assert out["vertex_cm"][0].tolist() == [1.0, 2.0, 3.0]
    assert np.isnan(out["vertex_cm"][1]).all()
    assert out["angle_sum_deg"][0] == pytest.approx(240.0)
    assert out["hits/t_ps"].tolist() == [0.0, 10.0, 20.0, 50.0]


def test_stats_and_histograms_written(tmp_path):
    stats = PipelineStats(windows=3, selected=2)
    stats.inc("veto_theta")
    h1 = Histogram1D.uniform(4, 0.0, 4.0, "x;a [ns]")
    h1.fill([0.5, 0.7, 3.2])
    h2 = Histogram2D.uniform(2, 0.0, 2.0, 3, 0.0, 3.0)
    h2.fill(1.5, 0.5)

    path = tmp_path / "diag.h5"
    with h5py.File(path, "w") as f:
        write_stats(f, stats)
        write_histograms(f, {"a": h1, "b": h2})
    with h5py.File(path, "r") as f:
        assert f["stats"].attrs["windows"] == 3
        assert f["stats/reasons"].attrs["veto_theta"] == 1
        assert f["diagnostics/a/counts"][...].tolist() == [2, 0, 0, 1]
        assert f["diagnostics/a"].attrs["title"] == "x;a [ns]"
        # rows are y bins
        assert f["diagnostics/b/counts"][...].tolist() == [[0, 1], [0, 0], [0, 0]]
