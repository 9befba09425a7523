from pathlib import Path

import h5py
import numpy as np
import pytest
from pydantic import ValidationError

from opsfinder.config.load import load_config
from opsfinder.config.schemas import Config
from opsfinder.io.store import read_candidates
from opsfinder.pipelines.core import run_pipeline
from opsfinder.sim.synth import BarrelGeometry, synth_decay_hits, truth_solver
from opsfinder.vis.hdf import save_histogram_png

EXAMPLES = Path(__file__).resolve().parents[1] / "examples"

CUTS = {
    "tot_annih_low": 15.0,
    "tot_annih_high": 25.0,
    "tot_prompt_low": 0.0,
    "tot_prompt_high": 10.0,
    "cluster_time_window_ps": 5000.0,
    "angle_sum_cut_deg": 190.0,
}


@pytest.mark.parametrize("name", ["synth_lifetimes.toml", "hit_table.toml"])
def test_example_configs_load(name):
    cfg = load_config(EXAMPLES / name)
    assert cfg.cuts.cluster_time_window_ps == 5000.0
    assert cfg.cuts.same_element_theta_veto_deg == 8.0


def test_missing_cut_fails_validation():
    cuts = dict(CUTS)
    del cuts["angle_sum_cut_deg"]
    with pytest.raises(ValidationError):
        Config(io={"output_path": "x.h5"}, cuts=cuts)


@pytest.mark.parametrize(
    "override",
    [
        {"cluster_time_window_ps": 0.0},
        {"tot_annih_high": 10.0},
        {"dvt_veto_direction": "sideways"},
    ],
)
def test_bad_cuts_fail_validation(override):
    with pytest.raises(ValidationError):
        Config(io={"output_path": "x.h5"}, cuts={**CUTS, **override})


def test_late_stages_need_solver():
    with pytest.raises(ValidationError):
        Config(io={"output_path": "x.h5"}, cuts=CUTS, pipeline={"until": "lifetimes"})
    cfg = Config(
        io={"output_path": "x.h5"}, cuts=CUTS,
        pipeline={"until": "lifetimes"}, solver={"entry": "opsfinder.sim.synth:truth_solver"},
    )
    assert cfg.pairing.prompt_quality_band == (1.8, 2.2)


def test_cuts_are_read_only():
    cfg = Config(io={"output_path": "x.h5"}, cuts=CUTS)
    with pytest.raises(ValidationError):
        cfg.cuts.cluster_time_window_ps = 1.0


def test_truth_solver():
    geom = BarrelGeometry()
    rng = np.random.default_rng(0)
    a = synth_decay_hits(0, np.array([1.0, -2.0, 3.0]), 5000.0, geom, rng)
    b = synth_decay_hits(1, np.zeros(3), 9000.0, geom, rng)
    res = truth_solver(*a)
    assert res.ok
    assert res.vertex.tolist() == [1.0, -2.0, 3.0]
    assert res.time_ps == 5000.0
    assert not truth_solver(a[0], a[1], b[0]).ok


def _write_synth_cfg(tmp_path):
    out = tmp_path / "run.h5"
    text = f"""
[run]
diagnostics_level = 0
progress = false

[io]
output_path = "{out.as_posix()}"

[io.adapter]
type = "synth"
n_windows = 20
decays_per_window = 2
seed = 11

[cuts]
tot_annih_low = 15.0
tot_annih_high = 25.0
tot_prompt_low = 0.0
tot_prompt_high = 10.0
cluster_time_window_ps = 5000.0
angle_sum_cut_deg = 190.0
dvt_veto_direction = "reject_above"

[solver]
entry = "opsfinder.sim.synth:truth_solver"
max_abs_z_cm = 23.0

[pairing]
mode = "in_event"

[pipeline]
until = "lifetimes"
"""
    p = tmp_path / "run.toml"
    p.write_text(text)
    return p


def test_run_pipeline_synth_lifetimes(tmp_path):
    cfg_path = _write_synth_cfg(tmp_path)
    out = run_pipeline(str(cfg_path))
    assert out.exists()

    with h5py.File(out, "r") as f:
        stats = dict(f["stats"].attrs)
        assert "reject_above" in f.attrs["config_text"]
        assert f["meta"].attrs["pipeline.until"] == "lifetimes"
        assert "lifetime" in f["diagnostics"]
    assert stats["windows"] == 20
    assert stats["selected"] > 0
    assert stats["paired"] > 0

    cands = read_candidates(str(out))
    assert len(cands["window"]) == stats["paired"]
    assert (cands["event_type"] == 2).all()
    assert np.isfinite(cands["lifetime_ps"]).all()
    assert (np.diff(cands["hits/event_ptr"]) == 4).all()

    png = save_histogram_png(str(out), dataset="/diagnostics/lifetime/counts")
    assert Path(png).exists()


def test_run_pipeline_overrides(tmp_path):
    cfg_path = _write_synth_cfg(tmp_path)
    out = run_pipeline(str(cfg_path), until="events", max_windows=5)
    with h5py.File(out, "r") as f:
        assert f["stats"].attrs["windows"] == 5
        assert f["meta"].attrs["pipeline.until"] == "events"
    cands = read_candidates(str(out))
    assert np.isnan(cands["lifetime_ps"]).all()
