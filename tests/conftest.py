import numpy as np
import pytest

from opsfinder.config.schemas import CutsCfg
from opsfinder.physics.hits import DetectorElement, Hit

R_BARREL = 42.5


def on_barrel(theta_deg: float, z: float = 0.0) -> np.ndarray:
    th = np.radians(theta_deg)
    return np.array([R_BARREL * np.cos(th), R_BARREL * np.sin(th), z])


def make_hit(t_ps, tot_ns=20.0, *, theta=0.0, slot=None, r=None, quality=-1.0, thresholds=(4, 4), layer=1):
    """Hit on the barrel at azimuth `theta` unless an explicit position is given."""
    if r is None:
        r = on_barrel(theta)
    if slot is None:
        slot = int(theta) + 1
    return Hit(
        t_ps=float(t_ps),
        tot_ns=float(tot_ns),
        r=np.asarray(r, dtype=float),
        element=DetectorElement(layer=layer, slot=slot, theta_deg=float(theta)),
        quality=quality,
        thresholds=thresholds,
    )


@pytest.fixture
def cuts():
    return CutsCfg(
        tot_annih_low=15.0,
        tot_annih_high=25.0,
        tot_prompt_low=0.0,
        tot_prompt_high=10.0,
        cluster_time_window_ps=5000.0,
        angle_sum_cut_deg=190.0,
    )


@pytest.fixture
def light_like_triple():
    """
    Three untagged annihilation-TOT hits 120 deg apart whose neighbours in
    time are almost exactly light-connected (smallest |t - d/c| ~ 0.05 ns).
    """
    return [
        make_hit(0.0, 20.0, theta=0.0),
        make_hit(2405.0, 20.0, theta=120.0),
        make_hit(4810.0, 20.0, theta=240.0),
    ]
