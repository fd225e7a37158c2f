#!/usr/bin/env python3
"""
Secant-method calibration of the slab thickness.

Finds the thickness for which the peak temperature of the final-time profile
matches a target, using Crank-Nicolson for every solve. Starting from the
seeds 0.05 m and 0.15 m the update is

    h_{n+1} = h_n - err_n * (h_n - h_{n-1}) / (err_n - err_{n-1})

with ``err = achieved - target``. Iteration stops once ``|err| <= tolerance``
or the iteration budget is spent; the latter is reported through
``converged=False``, not an exception. A non-finite reading from the solver
raises ``NumericalInstabilityError``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from harness_errors import NumericalInstabilityError, OutOfRange, StalledConvergence
from heat_solver import (
    BoundaryCondition,
    GridParameters,
    HeatSolver,
    Method,
    peak_final_profile,
)

logger = logging.getLogger(__name__)

CALIBRATION_METHOD = Method.CRANK_NICOLSON
DEFAULT_SEEDS = (0.05, 0.15)
DEFAULT_TOLERANCE = 0.001


@dataclass(frozen=True)
class SecantIterate:
    thickness: float
    achieved_temperature: float
    signed_error: float


@dataclass(frozen=True)
class CalibrationResult:
    thickness: float
    achieved_temperature: float
    iterates: Tuple[SecantIterate, ...]
    converged: bool
    iterations: int
    target_temperature: float

    @property
    def final_error(self) -> float:
        return self.iterates[-1].signed_error

    @property
    def best_iterate(self) -> SecantIterate:
        return min(self.iterates, key=lambda it: abs(it.signed_error))


def secant_step(previous: SecantIterate, current: SecantIterate, stall_tolerance: float) -> float:
    denominator = current.signed_error - previous.signed_error
    if abs(denominator) <= stall_tolerance:
        raise StalledConvergence(
            f"Secant step undefined: thicknesses {previous.thickness:.6g} m and "
            f"{current.thickness:.6g} m give the same error {current.signed_error:.6g}"
        )
    proposal = current.thickness - current.signed_error * (
        (current.thickness - previous.thickness) / denominator
    )
    if not math.isfinite(proposal) or proposal <= 0:
        raise OutOfRange(f"Secant step left the physical range: thickness={proposal!r}")
    return proposal


def calibrate_thickness(
    tmax: float,
    nt: int,
    nx: int,
    boundary: BoundaryCondition,
    target_temperature: float,
    max_iterations: int,
    *,
    solver: HeatSolver,
    tolerance: float = DEFAULT_TOLERANCE,
    seeds: Sequence[float] = DEFAULT_SEEDS,
    stall_tolerance: float = 1e-12,
) -> CalibrationResult:
    if max_iterations < 0:
        raise OutOfRange(f"max_iterations must be >= 0, got {max_iterations}")
    if not tolerance > 0:
        raise OutOfRange(f"tolerance must be > 0, got {tolerance}")
    if len(seeds) != 2:
        raise OutOfRange("The secant method needs exactly two seed thicknesses.")
    if not math.isfinite(target_temperature):
        raise OutOfRange(f"target_temperature must be finite, got {target_temperature}")

    def evaluate(thickness: float) -> SecantIterate:
        grid = GridParameters(tmax=tmax, nt=nt, nx=nx, thickness=thickness)
        achieved = peak_final_profile(solver.solve(grid, CALIBRATION_METHOD, boundary))
        if not math.isfinite(achieved):
            raise NumericalInstabilityError(
                f"Non-finite peak temperature {achieved!r} at thickness {thickness:.6g} m"
            )
        return SecantIterate(
            thickness=float(thickness),
            achieved_temperature=achieved,
            signed_error=achieved - target_temperature,
        )

    iterates: List[SecantIterate] = [evaluate(seeds[0]), evaluate(seeds[1])]
    count = 0
    while abs(iterates[-1].signed_error) > tolerance and count < max_iterations:
        count += 1
        proposal = secant_step(iterates[-2], iterates[-1], stall_tolerance)
        iterates.append(evaluate(proposal))
        logger.debug(
            "iteration %d: thickness=%.6f m, achieved=%.4f, error=%.6f",
            count, iterates[-1].thickness, iterates[-1].achieved_temperature,
            iterates[-1].signed_error,
        )

    last = iterates[-1]
    converged = abs(last.signed_error) <= tolerance
    if converged:
        logger.info(
            "Convergence achieved in %d iterations: thickness %.4f m, target %.2f, "
            "achieved %.2f, error %.6f",
            count, last.thickness, target_temperature, last.achieved_temperature,
            abs(last.signed_error),
        )
    else:
        logger.warning(
            "Maximum iterations (%d) reached without convergence: error %.6f (tolerance %g)",
            max_iterations, abs(last.signed_error), tolerance,
        )

    return CalibrationResult(
        thickness=last.thickness,
        achieved_temperature=last.achieved_temperature,
        iterates=tuple(iterates),
        converged=converged,
        iterations=count,
        target_temperature=float(target_temperature),
    )
