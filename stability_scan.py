#!/usr/bin/env python3
"""
Comparative timestep stability of the four finite-difference schemes.

For every ``nt`` in ``range(nt_min, nt_max + 1, nt_incr)`` and every scheme,
the solver is run and the field sampled at ``probe_index`` at the final time.
The mean of the four samples at the finest timestep tested is taken as the
converged reference.

Stability bound of a scheme
---------------------------
Samples are ordered by decreasing ``dt``. The last sample above
``reference + tolerance`` and the last sample below ``reference - tolerance``
are located (a sample on which the solver diverged lies on both sides). The
bound is the ``dt`` of the sample right after the later of the two, i.e. where
violations stop appearing. No violation at all gives an unconstrained bound
(``inf``); a violation at the finest ``dt`` leaves no stable sample and gives
``0``, as does an empty series.

This is a trailing-edge estimate over the tested range only. It does not
establish that every ``dt`` below the bound is stable, nor anything about
timesteps that were not tested.
"""

from __future__ import annotations

import logging
import math
import threading
import warnings
from concurrent.futures import Executor
from dataclasses import dataclass
from functools import partial
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from harness_errors import NoStableMethodFound, NumericalInstabilityError, OutOfRange
from heat_solver import BoundaryCondition, GridParameters, HeatSolver, Method
from sweep_dispatch import run_sweep

logger = logging.getLogger(__name__)

FALLBACK_METHOD = Method.CRANK_NICOLSON

NO_STABLE_METHOD_MESSAGE = (
    "No method stayed within tolerance over the tested timesteps; "
    "consider a wider tolerance or a finer timestep range."
)


@dataclass(frozen=True)
class StabilitySample:
    method: Method
    nt: int
    dt: float
    value: Optional[float]

    @property
    def diverged(self) -> bool:
        return self.value is None


@dataclass(frozen=True)
class MethodBound:
    method: Method
    max_stable_dt: float
    last_upper_violation_dt: Optional[float]
    last_lower_violation_dt: Optional[float]

    @property
    def unconstrained(self) -> bool:
        return math.isinf(self.max_stable_dt)


@dataclass(frozen=True, eq=False)
class StabilityResult:
    best_method: Method
    max_stable_dt: float
    per_method_bounds: Dict[Method, float]
    bounds: Dict[Method, MethodBound]
    reference: Optional[float]
    tolerance: float
    dts: Tuple[float, ...]
    samples: Dict[Method, Tuple[StabilitySample, ...]]
    warning: Optional[str] = None
    cancelled: bool = False


def timestep_counts(nt_min: int, nt_max: int, nt_incr: int) -> List[int]:
    return list(range(nt_min, nt_max + 1, nt_incr))


def _validate(tmax, nt_min, nt_max, nt_incr, thickness, nx, probe_index, tolerance) -> None:
    if not tmax > 0:
        raise OutOfRange(f"tmax must be > 0, got {tmax}")
    if not thickness > 0:
        raise OutOfRange(f"thickness must be > 0, got {thickness}")
    if nt_min < 2:
        raise OutOfRange(f"nt_min must be >= 2 so that dt is defined, got {nt_min}")
    if nt_max < nt_min:
        raise OutOfRange(f"nt_max ({nt_max}) must be >= nt_min ({nt_min})")
    if nt_incr < 1:
        raise OutOfRange(f"nt_incr must be >= 1, got {nt_incr}")
    if nx < 2:
        raise OutOfRange(f"nx must be >= 2, got {nx}")
    if not 0 <= probe_index < nx:
        raise OutOfRange(
            f"probe_index {probe_index} is not a spatial index of a grid with nx={nx}"
        )
    if not tolerance >= 0:
        raise OutOfRange(f"tolerance must be >= 0, got {tolerance}")


def sample_node(
    solver: HeatSolver,
    method: Method,
    boundary: BoundaryCondition,
    probe_index: int,
    tmax: float,
    thickness: float,
    nx: int,
    nt: int,
) -> Optional[float]:
    grid = GridParameters(tmax=tmax, nt=nt, nx=nx, thickness=thickness)
    try:
        temperature = solver.solve(grid, method, boundary)
    except NumericalInstabilityError as exc:
        logger.warning("%s diverged at nt=%d: %s", method.value, nt, exc)
        return None
    value = temperature.probe(probe_index)
    return value if math.isfinite(value) else None


def reference_value(samples: Dict[Method, Sequence[StabilitySample]]) -> Optional[float]:
    """Mean of the non-diverged samples at the finest tested timestep."""
    finest = [s[-1].value for s in samples.values() if s and not s[-1].diverged]
    if not finest:
        return None
    return float(np.mean(finest))


def trailing_edge_bound(
    method: Method,
    samples: Sequence[StabilitySample],
    reference: Optional[float],
    tolerance: float,
) -> MethodBound:
    if not samples:
        return MethodBound(method, 0.0, None, None)
    last_upper: Optional[int] = None
    last_lower: Optional[int] = None
    for k, sample in enumerate(samples):
        if sample.diverged or reference is None:
            last_upper = last_lower = k
            continue
        if sample.value > reference + tolerance:
            last_upper = k
        if sample.value < reference - tolerance:
            last_lower = k

    def stable_after(index: Optional[int]) -> float:
        if index is None:
            return math.inf
        if index + 1 < len(samples):
            return samples[index + 1].dt
        return 0.0

    return MethodBound(
        method=method,
        max_stable_dt=min(stable_after(last_upper), stable_after(last_lower)),
        last_upper_violation_dt=None if last_upper is None else samples[last_upper].dt,
        last_lower_violation_dt=None if last_lower is None else samples[last_lower].dt,
    )


def select_best_method(bounds: Dict[Method, MethodBound]) -> Tuple[Optional[Method], float]:
    """Largest bound wins; on ties the later method in declaration order wins."""
    best: Optional[Method] = None
    best_dt = 0.0
    for method in Method:
        bound = bounds[method].max_stable_dt
        if bound > 0 and bound >= best_dt:
            best, best_dt = method, bound
    return best, best_dt


def analyze_samples(
    samples: Dict[Method, Sequence[StabilitySample]],
    tolerance: float,
    coarsest_dt: float,
    *,
    cancelled: bool = False,
) -> StabilityResult:
    reference = reference_value(samples)
    bounds = {
        method: trailing_edge_bound(method, samples.get(method, ()), reference, tolerance)
        for method in Method
    }
    best, best_dt = select_best_method(bounds)
    warning = None
    if best is None:
        warnings.warn(NO_STABLE_METHOD_MESSAGE, NoStableMethodFound, stacklevel=3)
        logger.warning(NO_STABLE_METHOD_MESSAGE)
        warning = NO_STABLE_METHOD_MESSAGE
        best, best_dt = FALLBACK_METHOD, coarsest_dt

    first = next((s for s in samples.values() if s), ())
    return StabilityResult(
        best_method=best,
        max_stable_dt=best_dt,
        per_method_bounds={m: b.max_stable_dt for m, b in bounds.items()},
        bounds=bounds,
        reference=reference,
        tolerance=tolerance,
        dts=tuple(s.dt for s in first),
        samples={m: tuple(samples.get(m, ())) for m in Method},
        warning=warning,
        cancelled=cancelled,
    )


def scan_stability(
    tmax: float,
    nt_min: int,
    nt_max: int,
    nt_incr: int,
    thickness: float,
    nx: int,
    probe_index: int,
    tolerance: float,
    boundary: BoundaryCondition,
    *,
    solver: HeatSolver,
    executor: Optional[Executor] = None,
    cancel_event: Optional[threading.Event] = None,
    show_progress: bool = False,
) -> StabilityResult:
    """
    Find the largest timestep each scheme tolerates and the best scheme.

    ``probe_index`` is a 0-based spatial index and is validated against ``nx``
    before any solve. When no scheme has a positive bound, Crank-Nicolson is
    returned with the coarsest tested ``dt`` and a ``NoStableMethodFound``
    warning is issued.
    """
    _validate(tmax, nt_min, nt_max, nt_incr, thickness, nx, probe_index, tolerance)
    counts = timestep_counts(nt_min, nt_max, nt_incr)
    dts = [tmax / (nt - 1) for nt in counts]

    items = []
    for k, nt in enumerate(counts):
        for method in Method:
            task = partial(sample_node, solver, method, boundary, probe_index, tmax, thickness, nx, nt)
            items.append(((method, k), task))

    outcome = run_sweep(
        items,
        executor=executor,
        cancel_event=cancel_event,
        show_progress=show_progress,
        desc="Stability scan",
    )

    complete_columns = [
        k for k in range(len(counts)) if all((m, k) in outcome.results for m in Method)
    ]
    samples: Dict[Method, Tuple[StabilitySample, ...]] = {
        method: tuple(
            StabilitySample(method=method, nt=counts[k], dt=dts[k], value=outcome.results[(method, k)])
            for k in complete_columns
        )
        for method in Method
    }

    result = analyze_samples(samples, tolerance, dts[0], cancelled=outcome.cancelled)
    logger.info(
        "Best method: %s, maximum stable timestep: %.4g s, tolerance: +/-%.4g, reference: %s",
        result.best_method.value, result.max_stable_dt, tolerance,
        "n/a" if result.reference is None else f"{result.reference:.4f}",
    )
    return result
