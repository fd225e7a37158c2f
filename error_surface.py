#!/usr/bin/env python3
"""
Error surface over temporal/spatial grid resolution.

For a scenario with a known measured target, the solver is run on a square
family of grids and every cell of the surface holds ``|metric - target|``.
The surface side is ``resolution + 50``: a single knob drives both axes and the
offset of 50 keeps the coarsest grids out of the trivially small range. Both
are heuristics inherited from the measurement campaign, not properties of the
model; the axes cannot be controlled independently here.

Cell ``(i, j)`` (0-based) uses ``nt = i + 2`` time points and ``nx = j + 2``
space points. Raw differences above 150 are capped at 100 so that a single
diverging grid does not stretch the colour scale, and a grid on which the
solver signals instability is recorded as 100 as well. The surface is always
fully populated.
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import Executor
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional, Tuple, Union

import numpy as np

from harness_errors import NumericalInstabilityError, OutOfRange
from heat_solver import (
    BoundaryCondition,
    GridParameters,
    HeatSolver,
    Method,
    TemperatureField,
    resolve_metric,
)
from risk_colors import RiskClassification, map_risk
from scenarios import BoundaryDataProvider, UnitSystem, from_kelvin, lookup_scenario
from sweep_dispatch import run_sweep

logger = logging.getLogger(__name__)

SURFACE_OFFSET = 50
SATURATION_THRESHOLD = 150.0
SATURATED_ERROR = 100.0
FAILURE_SENTINEL = 100.0

DEFAULT_TMAX = 4000.0
DEFAULT_THICKNESS = 0.05

Metric = Callable[[TemperatureField], float]


@dataclass(frozen=True)
class SurfaceSummary:
    min_error: float
    max_error: float
    mean_error: float
    low_risk_count: int
    total_cells: int
    stability_ratio: float
    optimal_nt: int
    optimal_nx: int
    optimal_error: float


@dataclass(frozen=True, eq=False)
class ErrorSurfaceResult:
    scenario_id: str
    method: Method
    unit: UnitSystem
    target: float
    errors: np.ndarray
    risk: RiskClassification
    summary: SurfaceSummary
    computed: np.ndarray
    failed_cells: int
    cancelled: bool = False

    @property
    def shape(self) -> Tuple[int, int]:
        return tuple(self.errors.shape)


def surface_dimension(resolution: int) -> int:
    if isinstance(resolution, bool) or int(resolution) != resolution or resolution < 0:
        raise OutOfRange(f"resolution must be an integer >= 0, got {resolution!r}")
    return int(resolution) + SURFACE_OFFSET


def cell_grid(i: int, j: int) -> Tuple[int, int]:
    """``(nt, nx)`` used for 0-based cell ``(i, j)``."""
    return i + 2, j + 2


def saturate(diff: float) -> float:
    return SATURATED_ERROR if diff > SATURATION_THRESHOLD else diff


def score_cell(
    solver: HeatSolver,
    method: Method,
    boundary: BoundaryCondition,
    target: float,
    metric: Metric,
    tmax: float,
    thickness: float,
    nt: int,
    nx: int,
) -> Tuple[float, bool]:
    """Return ``(error, failed)`` for one grid."""
    grid = GridParameters(tmax=tmax, nt=nt, nx=nx, thickness=thickness)
    try:
        temperature = solver.solve(grid, method, boundary)
    except NumericalInstabilityError as exc:
        logger.warning("Numerical instability at nt=%d, nx=%d: %s", nt, nx, exc)
        return FAILURE_SENTINEL, True
    diff = abs(float(metric(temperature)) - target)
    if not math.isfinite(diff):
        logger.warning("Non-finite metric at nt=%d, nx=%d", nt, nx)
        return FAILURE_SENTINEL, True
    return saturate(diff), False


def summarize_surface(errors: np.ndarray) -> SurfaceSummary:
    # argmin returns the first occurrence in row-major order.
    flat_idx = int(np.argmin(errors))
    i, j = np.unravel_index(flat_idx, errors.shape)
    opt_nt, opt_nx = cell_grid(int(i), int(j))
    low = int(np.count_nonzero(errors < 1.0))
    total = int(errors.size)
    return SurfaceSummary(
        min_error=float(np.min(errors)),
        max_error=float(np.max(errors)),
        mean_error=float(np.mean(errors)),
        low_risk_count=low,
        total_cells=total,
        stability_ratio=100.0 * low / total,
        optimal_nt=opt_nt,
        optimal_nx=opt_nx,
        optimal_error=float(errors[i, j]),
    )


def map_error_surface(
    scenario_id: str,
    resolution: int,
    method: Union[str, Method],
    unit: Union[str, UnitSystem],
    *,
    solver: HeatSolver,
    provider: BoundaryDataProvider,
    tmax: float = DEFAULT_TMAX,
    thickness: float = DEFAULT_THICKNESS,
    metric: Union[str, Metric] = "final-profile",
    executor: Optional[Executor] = None,
    cancel_event: Optional[threading.Event] = None,
    show_progress: bool = False,
) -> ErrorSurfaceResult:
    """
    Sweep ``(resolution + 50)**2`` grids and score each against the scenario target.

    Raises ``UnknownScenario`` / ``UnknownUnitSystem`` / ``OutOfRange`` before
    any solver call. Solver instability never aborts the sweep.
    """
    scenario = lookup_scenario(scenario_id)
    unit = UnitSystem.parse(unit)
    method = Method.parse(method)
    dim = surface_dimension(resolution)
    metric_fn = metric if callable(metric) else resolve_metric(metric)
    # Validates tmax and thickness once, before the sweep.
    GridParameters(tmax=tmax, nt=2, nx=2, thickness=thickness)

    target = float(from_kelvin(scenario.kelvin, unit))
    boundary = provider.fetch(scenario_id, unit)

    logger.info(
        "Error surface for %s (%s): method=%s, grid %d x %d = %d solves, target=%.4f %s",
        scenario_id, scenario.description, method.value, dim, dim, dim * dim, target, unit.value,
    )

    items = []
    for i in range(dim):
        for j in range(dim):
            nt, nx = cell_grid(i, j)
            task = partial(score_cell, solver, method, boundary, target, metric_fn, tmax, thickness, nt, nx)
            items.append(((i, j), task))

    outcome = run_sweep(
        items,
        executor=executor,
        cancel_event=cancel_event,
        show_progress=show_progress,
        desc=f"Error surface ({method.value})",
    )

    errors = np.full((dim, dim), FAILURE_SENTINEL, dtype=np.float64)
    computed = np.zeros((dim, dim), dtype=bool)
    failed = 0
    for (i, j), (value, cell_failed) in outcome.results.items():
        errors[i, j] = value
        computed[i, j] = True
        failed += int(cell_failed)

    risk = map_risk(errors)
    summary = summarize_surface(errors)
    logger.info(
        "Error surface done: min=%.4f max=%.4f mean=%.4f, optimum nt=%d nx=%d (%.4f), "
        "stability ratio %.1f%% (%d/%d), %d failed cells",
        summary.min_error, summary.max_error, summary.mean_error,
        summary.optimal_nt, summary.optimal_nx, summary.optimal_error,
        summary.stability_ratio, summary.low_risk_count, summary.total_cells, failed,
    )

    return ErrorSurfaceResult(
        scenario_id=scenario_id,
        method=method,
        unit=unit,
        target=target,
        errors=errors,
        risk=risk,
        summary=summary,
        computed=computed,
        failed_cells=failed,
        cancelled=outcome.cancelled,
    )
