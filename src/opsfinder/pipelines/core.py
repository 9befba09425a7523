from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Literal, Optional, Sequence
import typer
from tqdm import tqdm

from opsfinder.analysis.angles import DegenerateVertexError, azimuthal_signature, opening_angle_signature
from opsfinder.analysis.lifetime import lifetime_from_own_prompt, pair_window
from opsfinder.config.load import load_config
from opsfinder.config.schemas import CutsCfg, PairingCfg, SelectionCfg, SolverCfg
from opsfinder.filters.clustering import cluster_hits
from opsfinder.filters.selection import (
    count_hit_classes,
    is_prompt_cluster,
    passes_multiplicity,
    select_prompt,
    select_three_gamma,
)
from opsfinder.filters.veto import veto_scatterings
from opsfinder.io.adapters import make_adapter
from opsfinder.io.store import write_init, write_candidates, write_histograms, write_stats
from opsfinder.physics.classify import is_accepted, tag_hit
from opsfinder.physics.events import CandidateContractError, EventCandidate
from opsfinder.physics.hits import Hit
from opsfinder.physics.kinematics import PS_PER_NS
from opsfinder.physics.solver import annihilation_triple, load_solver, solve_candidate, within_z
from opsfinder.pipelines.diagnostics import (
    Histogram1D,
    Histogram2D,
    PipelineStats,
    fill_tot_by_multiplicity,
    make_histogram_book,
)
from opsfinder.vis.hdf import save_histogram_png

Stage = Literal["clusters", "events", "vertices", "lifetimes"]
Book = Dict[str, Histogram1D | Histogram2D]


@dataclass
class WindowResult:
    """
    Output of one window.

    candidates: what the requested stage emits (clusters, ThreeGamma
    candidates, solved candidates or paired candidates)
    prompt_candidates: Prompt-type clusters found in the window
    dropped: the window was abandoned on a contract violation
    """
    index: int
    candidates: List[EventCandidate] = field(default_factory=list)
    prompt_candidates: List[EventCandidate] = field(default_factory=list)
    dropped: bool = False
    error: Optional[str] = None


def _fill(book: Optional[Book], name: str, *args) -> None:
    if book is not None:
        book[name].fill(*args)


def _select_window(
    tagged: Sequence[Hit],
    cuts: CutsCfg,
    selection: SelectionCfg,
    stats: PipelineStats,
    book: Optional[Book],
    window_index: int,
) -> tuple[List[EventCandidate], List[EventCandidate]]:
    """Cluster -> veto -> multiplicity gate. Returns (ThreeGamma, Prompt) candidates."""
    clusters = cluster_hits(tagged, cuts.cluster_time_window_ps, is_accepted, window_index=window_index)
    stats.clusters += len(clusters)

    selected: List[EventCandidate] = []
    prompts: List[EventCandidate] = []
    for cl in clusters:
        counts = count_hit_classes(cl)
        _fill(book, "annih_vs_prompt", counts.n_annih, counts.n_prompt)
        _fill(book, "low_confidence_clustered", cl.n_low_confidence())

        if is_prompt_cluster(cl):
            prompt = select_prompt(cl)
            if prompt is None or len(prompt) < len(cl):
                stats.inc("prompt_same_element")
            if prompt is not None:
                stats.prompt_candidates += 1
                prompts.append(prompt)
            continue

        vr = veto_scatterings(cl, cuts)
        if book is not None:
            book["theta_diffs"].fill(vr.theta_diffs_deg)
            for tots in vr.same_element_tots:
                book["same_element_tots"].fill(*tots)
            for tots in vr.close_element_tots:
                book["close_element_tots"].fill(*tots)
        if not vr.passed_theta:
            stats.inc("veto_theta")
            continue
        stats.after_theta += 1
        _fill(book, "dvt", vr.min_dvt_ns)
        if not vr.passed:
            stats.inc("veto_dvt")
            continue
        stats.after_dvt += 1
        if vr.removed:
            stats.with_same_element_hits += 1
        vetoed = vr.cluster
        vcounts = count_hit_classes(vetoed)
        if book is not None:
            book["low_confidence_vetoed"].fill(vetoed.n_low_confidence())
            book["annih_hits_per_cluster"].fill(vcounts.n_annih)
            book["prompt_hits_per_cluster"].fill(vcounts.n_prompt)
            if vcounts.n_annih == 3:
                book["prompt_hits_per_3annih_cluster"].fill(vcounts.n_prompt)
            fill_tot_by_multiplicity(book, [h.tot_ns for h in vetoed.hits])

        if not passes_multiplicity(vcounts):
            stats.inc("multiplicity")
            continue
        stats.before_angle_cut += 1
        sig = azimuthal_signature(vetoed.annihilation_hits())
        _fill(book, "angles", sig.sum_two_smallest, sig.diff_two_smallest)

        cand = select_three_gamma(vetoed, cuts, angle_cut=selection.angle_sum_cut_enabled)
        if cand is None:
            stats.inc("angle_sum")
            continue
        stats.selected += 1
        _fill(book, "angles_passed", sig.sum_two_smallest, sig.diff_two_smallest)
        _fill(book, "low_confidence_selected", cand.n_low_confidence())
        _fill(book, "tot_selected", [h.tot_ns for h in cand.hits])
        _fill(book, "prompt_hits_per_candidate", len(cand.prompt_hits()))
        selected.append(cand)

    return selected, prompts


def process_window(
    hits: Sequence[Hit],
    cuts: CutsCfg,
    *,
    stats: PipelineStats,
    window_index: int = -1,
    until: Stage = "events",
    selection: SelectionCfg | None = None,
    solver: Optional[Callable] = None,
    solver_cfg: SolverCfg | None = None,
    pairing: PairingCfg | None = None,
    book: Optional[Book] = None,
) -> WindowResult:
    """
    Run one window through classify -> cluster -> veto -> select and, as far
    as `until` asks, solve -> pair.

    `hits` must be sorted by t_ps. Counters go to `stats`, diagnostics to
    `book` when given. A candidate breaking a stage precondition drops the
    whole window (result.dropped) instead of raising.
    """
    selection = selection or SelectionCfg()
    solver_cfg = solver_cfg or SolverCfg()
    pairing = pairing or PairingCfg()
    result = WindowResult(index=window_index)

    if any(b.t_ps < a.t_ps for a, b in zip(hits, hits[1:])):
        raise ValueError(f"window {window_index}: hits are not sorted by t_ps")

    stats.windows += 1
    stats.hits_in += len(hits)
    if book is not None:
        # raw multiplicity and TOT before any classification
        for cl in cluster_hits(hits, cuts.cluster_time_window_ps, window_index=window_index):
            book["hits_per_cluster"].fill(len(cl))
            fill_tot_by_multiplicity(book, [h.tot_ns for h in cl.hits], "_nocut")

    tagged = [tag_hit(h, cuts) for h in hits]
    stats.hits_rejected += sum(1 for h in tagged if not is_accepted(h))
    stats.hits_low_confidence += sum(1 for h in tagged if h.low_confidence)

    if until == "clusters":
        result.candidates = cluster_hits(tagged, cuts.cluster_time_window_ps, is_accepted, window_index=window_index)
        stats.clusters += len(result.candidates)
        return result

    selected, prompts = _select_window(tagged, cuts, selection, stats, book, window_index)
    result.prompt_candidates = prompts
    if until == "events":
        result.candidates = selected
        return result

    if solver is None:
        raise ValueError(f"until='{until}' needs a geometric solver")

    solved: List[EventCandidate] = []
    try:
        for cand in selected:
            triple = annihilation_triple(cand)
            if not within_z(cand.hits, solver_cfg.max_abs_z_cm):
                stats.z_rejected += 1
                continue
            out, res = solve_candidate(cand, solver)
            if out is None:
                stats.solver_failures += 1
                stats.inc(f"solver_error_{res.error_code}")
                continue
            try:
                out.angles = opening_angle_signature(triple, out.annihilation_point)
            except DegenerateVertexError:
                stats.inc("degenerate_vertex")
                continue
            stats.solved += 1
            _fill(book, "opening_angles", out.angles.sum_two_smallest, out.angles.diff_two_smallest)
            _fill(book, "decay_point_xy", float(out.annihilation_point[0]), float(out.annihilation_point[1]))
            _fill(book, "decay_point_xz", float(out.annihilation_point[2]), float(out.annihilation_point[0]))
            solved.append(out)
    except CandidateContractError as exc:
        stats.contract_violations += 1
        stats.windows_dropped += 1
        stats.inc("contract_violation")
        result.dropped = True
        result.error = str(exc)
        return result

    if until == "vertices":
        result.candidates = solved
        return result

    if pairing.mode == "window":
        paired = pair_window(solved + prompts, pairing.prompt_quality_band)
        lifetimes = [paired] if paired is not None else []
    else:
        lifetimes = [c for c in (lifetime_from_own_prompt(s) for s in solved) if c is not None]
    stats.paired += len(lifetimes)
    for c in lifetimes:
        _fill(book, "lifetime", c.lifetime_ps / PS_PER_NS)
    result.candidates = lifetimes
    return result


def run_pipeline(
    cfg_path: str,
    *,
    until: Optional[Stage] = None,
    max_windows: Optional[int] = None,
) -> Path:
    """
    Orchestrate the full pipeline from a TOML config file.

    CLI flags (--until/--max-windows) override the corresponding config
    fields when not None.

    Parameters
    ----------
    cfg_path : str
        Path to TOML configuration file.

    Returns
    -------
    Path to written HDF5 file.
    """
    cfg = load_config(cfg_path)

    # ---- apply CLI overrides on top of TOML ----
    if until is not None:
        cfg.pipeline.until = until
    if max_windows is not None:
        cfg.run.max_windows = max_windows
    # re-run cross-field checks after overrides
    cfg = type(cfg).model_validate(cfg.model_dump())

    diag_level = cfg.run.diagnostics_level
    verbose = diag_level >= 2

    if diag_level >= 1:
        print(f"[run] config = {cfg_path}")
        print(f"[run] until={cfg.pipeline.until} pairing={cfg.pairing.mode} "
              f"angle_cut={cfg.selection.angle_sum_cut_enabled}")
        print(f"[run] input={cfg.io.input_path} -> output={cfg.io.output_path}")

    solver = None
    if cfg.solver.entry:
        solver = load_solver(cfg.solver.entry)
        if diag_level >= 1:
            print(f"[solver] using {cfg.solver.entry}")

    out_path = Path(cfg.io.output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    f = write_init(str(out_path), cfg_path, cfg)

    adapter = make_adapter(cfg.io.adapter)
    stats = PipelineStats()
    book = make_histogram_book()
    accepted: List[EventCandidate] = []

    windows = adapter.iter_windows(str(cfg.io.input_path))
    pbar = tqdm(windows, desc="windows", unit="window", total=cfg.run.max_windows) if cfg.run.progress else None
    for j, window in enumerate(pbar if pbar is not None else windows):
        if cfg.run.max_windows is not None and j >= cfg.run.max_windows:
            if diag_level >= 1:
                print(f"[pipeline] Reached max_windows={cfg.run.max_windows}, stopping.")
            break
        res = process_window(
            window.hits,
            cfg.cuts,
            stats=stats,
            window_index=window.index,
            until=cfg.pipeline.until,
            selection=cfg.selection,
            solver=solver,
            solver_cfg=cfg.solver,
            pairing=cfg.pairing,
            book=book,
        )
        if res.dropped and diag_level >= 1:
            print(f"[pipeline] Dropped window {window.index}: {res.error}")
        if verbose:
            print(f"[pipeline] window {window.index}: {len(window.hits)} hits -> "
                  f"{len(res.candidates)} candidates, {len(res.prompt_candidates)} prompt")
        accepted.extend(res.candidates)
    if pbar is not None:
        pbar.close()

    write_candidates(f, accepted)
    write_stats(f, stats)
    write_histograms(f, book)
    f.close()

    if diag_level >= 1:
        print(f"[pipeline] Processed {stats.windows} windows, {stats.hits_in} hits "
              f"({stats.hits_rejected} rejected, {stats.hits_low_confidence} low-confidence)")
        for line in stats.report_lines():
            print(line)
        print(f"[pipeline] Wrote {len(accepted)} candidates to {out_path}")

    # Optional PNG export
    if cfg.vis.export_png_on_write:
        try:
            out_png = save_histogram_png(str(out_path), dataset=cfg.vis.histogram_dataset)
            if diag_level >= 1:
                print(f"[pipeline] Wrote PNG {out_png} from {cfg.vis.histogram_dataset}")
        except (KeyError, OSError, ValueError) as e:
            if diag_level >= 1:
                print(f"[pipeline] PNG export failed: {e!r}")

    return out_path


# ---------------------------------------------------------------------------
# Unified CLI entry point
# ---------------------------------------------------------------------------

app = typer.Typer(help="o-Ps -> 3 gamma candidate finder (opsfinder.pipelines.core)")


@app.command()
def main(
    cfg_path: str = typer.Argument(
        ...,
        help="Path to TOML config file",
    ),
    until: Optional[str] = typer.Option(
        None,
        "--until",
        help="Override [pipeline].until: clusters | events | vertices | lifetimes",
    ),
    max_windows: Optional[int] = typer.Option(
        None,
        "--max-windows",
        help="Override [run].max_windows (stop after this many windows)",
    ),
):
    """
    Run the candidate finder for a single config.
    """
    if until is not None and until not in ("clusters", "events", "vertices", "lifetimes"):
        raise typer.BadParameter(f"unknown stage {until!r}", param_hint="--until")
    out_path = run_pipeline(cfg_path, until=until, max_windows=max_windows)
    typer.echo(str(out_path))


if __name__ == "__main__":
    app()
