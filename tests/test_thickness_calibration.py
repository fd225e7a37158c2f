from __future__ import annotations

import pytest

from harness_errors import NumericalInstabilityError, OutOfRange, StalledConvergence
from heat_solver import FiniteDifferenceSolver, GridParameters, Method, peak_final_profile
from thickness_calibration import calibrate_thickness


def _run(solver, boundary, target, max_iterations=20, **kwargs):
    return calibrate_thickness(4000.0, 100, 50, boundary, target, max_iterations, solver=solver, **kwargs)


def test_linear_response_converges_in_one_step(uniform_solver, ramp_boundary):
    solver = uniform_solver(lambda grid, method: 2000.0 * grid.thickness + 300.0)
    result = _run(solver, ramp_boundary, 500.0)
    assert result.converged
    assert result.iterations == 1
    assert result.thickness == pytest.approx(0.1)
    assert result.achieved_temperature == pytest.approx(500.0)
    assert [it.thickness for it in result.iterates[:2]] == [0.05, 0.15]
    assert result.iterates[0].signed_error == pytest.approx(-100.0)


def test_every_solve_uses_crank_nicolson(uniform_solver, ramp_boundary):
    solver = uniform_solver(lambda grid, method: 2000.0 * grid.thickness + 300.0)
    _run(solver, ramp_boundary, 500.0)
    assert {method for _, _, _, method in solver.calls} == {Method.CRANK_NICOLSON}
    assert {(nt, nx) for nt, nx, _, _ in solver.calls} == {(100, 50)}


def test_flat_response_stalls(uniform_solver, ramp_boundary):
    solver = uniform_solver(lambda grid, method: 400.0)
    with pytest.raises(StalledConvergence):
        _run(solver, ramp_boundary, 500.0)


def test_iteration_budget_reports_non_convergence(uniform_solver, ramp_boundary):
    solver = uniform_solver(lambda grid, method: 1000.0 * grid.thickness**2)
    result = _run(solver, ramp_boundary, 5.0, max_iterations=1)
    assert not result.converged
    assert result.iterations == 1
    assert len(result.iterates) == 3
    assert result.thickness == pytest.approx(0.0625)
    assert abs(result.final_error) > 0.001


def test_zero_iterations_evaluates_the_seeds_only(uniform_solver, ramp_boundary):
    solver = uniform_solver(lambda grid, method: 2000.0 * grid.thickness + 300.0)
    result = _run(solver, ramp_boundary, 500.0, max_iterations=0)
    assert not result.converged
    assert result.iterations == 0
    assert len(solver.calls) == 2
    assert result.thickness == 0.15
    assert result.best_iterate.thickness in (0.05, 0.15)


def test_step_to_negative_thickness_is_rejected(uniform_solver, ramp_boundary):
    solver = uniform_solver(lambda grid, method: -1000.0 * grid.thickness + 300.0)
    with pytest.raises(OutOfRange):
        _run(solver, ramp_boundary, 400.0)


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(max_iterations=-1),
        dict(tolerance=0.0),
        dict(seeds=(0.05,)),
        dict(target=float("nan")),
    ],
)
def test_invalid_arguments(uniform_solver, ramp_boundary, kwargs):
    solver = uniform_solver(lambda grid, method: 400.0)
    target = kwargs.pop("target", 500.0)
    max_iterations = kwargs.pop("max_iterations", 20)
    with pytest.raises(OutOfRange):
        _run(solver, ramp_boundary, target, max_iterations=max_iterations, **kwargs)
    assert solver.calls == []


def test_recovers_thickness_with_reference_solver(ramp_boundary):
    solver = FiniteDifferenceSolver()
    grid = GridParameters(tmax=4000.0, nt=200, nx=20, thickness=0.05)
    target = peak_final_profile(solver.solve(grid, Method.CRANK_NICOLSON, ramp_boundary))
    result = calibrate_thickness(
        4000.0, 200, 20, ramp_boundary, target, 20, solver=solver, seeds=(0.04, 0.06)
    )
    assert result.converged
    assert result.thickness == pytest.approx(0.05, abs=1e-3)
    assert abs(result.final_error) <= 0.001


def test_non_finite_reading_is_reported_as_instability(uniform_solver, ramp_boundary):
    solver = uniform_solver(
        lambda grid, method: float("nan") if grid.thickness > 0.1 else 2000.0 * grid.thickness + 300.0
    )
    with pytest.raises(NumericalInstabilityError):
        _run(solver, ramp_boundary, 500.0)
