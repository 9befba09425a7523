"""
Seam to the geometric vertex solver.

The solver itself lives outside this package. Any callable

    solve(h0: Hit, h1: Hit, h2: Hit) -> SolverResult | (vertex, time_ps, error_code)

can be plugged in, either directly or through `load_solver("pkg.module:func")`.
error_code == 0 means a physical solution; anything else drops the candidate.
"""
from __future__ import annotations
from dataclasses import dataclass, replace
from importlib import import_module
from typing import Callable, Optional, Protocol, Tuple, Union

import numpy as np

from .events import CandidateContractError, EventCandidate, is_annihilation_quality
from .hits import Hit


@dataclass(frozen=True)
class SolverResult:
    vertex: np.ndarray  # (3,) cm
    time_ps: float
    error_code: int = 0

    @property
    def ok(self) -> bool:
        return self.error_code == 0


class GeometricSolver(Protocol):
    def __call__(self, h0: Hit, h1: Hit, h2: Hit) -> Union[SolverResult, Tuple[np.ndarray, float, int]]:
        ...


def _as_result(out) -> SolverResult:
    if isinstance(out, SolverResult):
        return out
    vertex, t, code = out
    return SolverResult(vertex=np.asarray(vertex, dtype=float), time_ps=float(t), error_code=int(code))


def annihilation_triple(candidate: EventCandidate) -> Tuple[Hit, Hit, Hit]:
    """
    The three annihilation hits of an accepted candidate, with the optional
    prompt hit stripped.

    Raises CandidateContractError unless the candidate holds 3 or 4 hits of
    which exactly 3 are annihilation-tagged.
    """
    n = len(candidate.hits)
    if n not in (3, 4):
        raise CandidateContractError(f"candidate with {n} hits reached the solver (expected 3 or 4)")
    triple = [h for h in candidate.hits if is_annihilation_quality(h.quality)]
    if len(triple) != 3:
        raise CandidateContractError(
            f"candidate has {len(triple)} annihilation hits after prompt removal (expected 3)"
        )
    return triple[0], triple[1], triple[2]


def within_z(hits, max_abs_z_cm: Optional[float]) -> bool:
    if max_abs_z_cm is None:
        return True
    return all(abs(float(h.r[2])) <= max_abs_z_cm for h in hits)


def solve_candidate(candidate: EventCandidate, solver: GeometricSolver) -> Tuple[Optional[EventCandidate], SolverResult]:
    """
    Run the solver on a candidate's annihilation triple.

    Returns (solved copy, result); the copy is None when error_code != 0.
    """
    h0, h1, h2 = annihilation_triple(candidate)
    result = _as_result(solver(h0, h1, h2))
    if not result.ok:
        return None, result
    solved = replace(
        candidate,
        hits=list(candidate.hits),
        annihilation_point=np.asarray(result.vertex, dtype=float),
        annihilation_time_ps=float(result.time_ps),
        meta=dict(candidate.meta),
    )
    return solved, result


def load_solver(entry: str) -> Callable[..., object]:
    """
    Resolve "package.module:function" to a callable.
    """
    mod_name, sep, attr = entry.partition(":")
    if not sep or not mod_name or not attr:
        raise ValueError(f"Solver entry must look like 'package.module:function', got {entry!r}")
    module = import_module(mod_name)
    try:
        fn = getattr(module, attr)
    except AttributeError as exc:
        raise ValueError(f"Module {mod_name!r} has no attribute {attr!r}") from exc
    if not callable(fn):
        raise ValueError(f"Solver entry {entry!r} is not callable")
    return fn
