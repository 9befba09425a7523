from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Literal, Optional, Dict, Tuple, Any

class RunCfg(BaseModel):
    """
    Global run controls.
    """

    # Diagnostics
    diagnostics_level: int = 1  # 0=off, 1=minimal, 2=verbose

    # Limits
    max_windows: Optional[int] = None

    # tqdm bar over windows
    progress: bool = True

    @field_validator("diagnostics_level")
    def _diag_range(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError("diagnostics_level must be 0, 1, or 2")
        return v

class IOCfg(BaseModel):
    """
    I/O paths and input adapter description.

    TOML:

    [io]
    input_path  = "..."
    output_path = "..."

    [io.adapter]
    type = "table"                 # "table" | "synth"
    time_units = "ps"
    """

    input_path: str = ""
    output_path: str

    # Adapter-specific sub-config, e.g. [io.adapter]
    adapter: Dict[str, Any] = Field(default_factory=dict)

class CutsCfg(BaseModel):
    """
    Per-run cut values, shared read-only by every window.

    The TOT bands, the clustering window and the angle-sum cut have no
    defaults: a config without them fails validation before any window
    is read.

    TOML:

    [cuts]
    tot_annih_low = 15.0           # ns
    tot_annih_high = 25.0
    tot_prompt_low = 0.0
    tot_prompt_high = 10.0
    cluster_time_window_ps = 5000.0
    angle_sum_cut_deg = 190.0
    """

    model_config = ConfigDict(frozen=True)

    tot_annih_low: float
    tot_annih_high: float
    tot_prompt_low: float
    tot_prompt_high: float
    cluster_time_window_ps: float
    angle_sum_cut_deg: float

    same_element_theta_veto_deg: float = 8.0
    # t - d/c residual [ns] of the most light-like annihilation pair
    dvt_veto_threshold_ns: float = -1.8
    # "accept_above": keep clusters with min_dvt > threshold
    # "reject_above": drop clusters with min_dvt > threshold
    dvt_veto_direction: Literal["accept_above", "reject_above"] = "accept_above"
    # fewer fired thresholds than this on either side -> low-confidence hit
    low_confidence_min_thresholds: int = 2

    @field_validator("cluster_time_window_ps")
    def _positive_window(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("cluster_time_window_ps must be positive")
        return v

    @model_validator(mode="after")
    def _ordered_bands(self) -> "CutsCfg":
        if self.tot_annih_high <= self.tot_annih_low:
            raise ValueError("tot_annih_high must be above tot_annih_low")
        if self.tot_prompt_high <= self.tot_prompt_low:
            raise ValueError("tot_prompt_high must be above tot_prompt_low")
        return self

class SelectionCfg(BaseModel):
    # require sum of two smallest azimuthal angles > cuts.angle_sum_cut_deg
    angle_sum_cut_enabled: bool = False

class SolverCfg(BaseModel):
    """
    Geometric vertex solver hook.

    entry = "package.module:function" with signature solve(h0, h1, h2).
    """

    entry: Optional[str] = None
    # drop candidates with any hit, prompt included, beyond |z| before solving
    max_abs_z_cm: Optional[float] = None

class PairingCfg(BaseModel):
    """
    Lifetime derivation.

    mode = "window"   : one Prompt candidate + one ThreeGamma candidate per window
    mode = "in_event" : prompt hit carried inside a 4-hit ThreeGamma candidate
    """

    mode: Literal["window", "in_event"] = "window"
    prompt_quality_band: Tuple[float, float] = (1.8, 2.2)

    @field_validator("prompt_quality_band")
    def _band_order(cls, v: Tuple[float, float]) -> Tuple[float, float]:
        if v[1] <= v[0]:
            raise ValueError("prompt_quality_band must be (low, high) with high > low")
        return v

class VisCfg(BaseModel):
    export_png_on_write: bool = False
    histogram_dataset: str = "/diagnostics/angles_passed/counts"


class PipelineCfg(BaseModel):
    """
    Controls how far through the pipeline we run.

    until = "clusters" | "events" | "vertices" | "lifetimes"
    """

    until: Literal["clusters", "events", "vertices", "lifetimes"] = "events"


class Config(BaseModel):
    """
    Top-level TOML configuration.
    """

    run: RunCfg = Field(default_factory=RunCfg)
    io: IOCfg
    cuts: CutsCfg
    selection: SelectionCfg = Field(default_factory=SelectionCfg)
    solver: SolverCfg = Field(default_factory=SolverCfg)
    pairing: PairingCfg = Field(default_factory=PairingCfg)
    vis: VisCfg = Field(default_factory=VisCfg)
    pipeline: PipelineCfg = Field(default_factory=PipelineCfg)

    @model_validator(mode="after")
    def _solver_for_late_stages(self) -> "Config":
        if self.pipeline.until in ("vertices", "lifetimes") and not self.solver.entry:
            raise ValueError(
                f"pipeline.until = '{self.pipeline.until}' needs [solver].entry to be set"
            )
        return self
