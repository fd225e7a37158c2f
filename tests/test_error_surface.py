from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from error_surface import (
    FAILURE_SENTINEL,
    cell_grid,
    map_error_surface,
    saturate,
    surface_dimension,
)
from harness_errors import NumericalInstabilityError, OutOfRange, UnknownScenario, UnknownUnitSystem
from heat_solver import FiniteDifferenceSolver, Method
from risk_colors import HIGH_RISK
from scenarios import TabulatedBoundaryProvider

M_L_KELVIN = 421.7735


class RecordingProvider:
    def __init__(self):
        self.inner = TabulatedBoundaryProvider.from_mapping(
            {
                "m_l": {"times": [0, 2000, 4000], "values": [293.15, 480.0, 520.0]},
                "m_r": {"times": [0, 4000], "values": [293.15, 530.0]},
            }
        )
        self.calls = []

    def fetch(self, scenario_id, unit):
        self.calls.append((scenario_id, unit))
        return self.inner.fetch(scenario_id, unit)


@pytest.fixture
def provider():
    return RecordingProvider()


def test_dimension_and_cell_mapping():
    assert surface_dimension(0) == 50
    assert surface_dimension(20) == 70
    assert cell_grid(0, 0) == (2, 2)
    assert cell_grid(3, 7) == (5, 9)
    for bad in (-1, 2.5, True):
        with pytest.raises(OutOfRange):
            surface_dimension(bad)


def test_saturation():
    assert saturate(200.0) == 100.0
    assert saturate(150.0) == 150.0
    assert saturate(120.0) == 120.0


def test_surface_shape_and_target(uniform_solver, provider):
    solver = uniform_solver(lambda grid, method: M_L_KELVIN + 0.5)
    result = map_error_surface("m_l", 20, "crank-nicolson", "kelvin", solver=solver, provider=provider)
    assert result.shape == (70, 70)
    assert result.target == pytest.approx(M_L_KELVIN)
    assert len(solver.calls) == 70 * 70
    assert np.allclose(result.errors, 0.5)
    assert result.computed.all()
    assert result.summary.low_risk_count == 4900
    assert result.summary.stability_ratio == pytest.approx(100.0)
    # Every cell ties; the first one in row-major order wins.
    assert (result.summary.optimal_nt, result.summary.optimal_nx) == (2, 2)


def test_cells_use_the_expected_grids(uniform_solver, provider):
    solver = uniform_solver(lambda grid, method: M_L_KELVIN)
    map_error_surface("m_l", 0, Method.FORWARD, "kelvin", solver=solver, provider=provider)
    grids = {(nt, nx) for nt, nx, _, _ in solver.calls}
    assert grids == {(i + 2, j + 2) for i in range(50) for j in range(50)}
    assert {method for _, _, _, method in solver.calls} == {Method.FORWARD}


def test_optimum_location(uniform_solver, provider):
    solver = uniform_solver(lambda grid, method: M_L_KELVIN + abs(grid.nt - 10) + abs(grid.nx - 7))
    result = map_error_surface("m_l", 0, "crank-nicolson", "kelvin", solver=solver, provider=provider)
    assert (result.summary.optimal_nt, result.summary.optimal_nx) == (10, 7)
    assert result.summary.optimal_error == 0.0
    assert result.summary.min_error == 0.0


def test_large_differences_are_capped(uniform_solver, provider):
    solver = uniform_solver(lambda grid, method: M_L_KELVIN + (200.0 if grid.nt == 2 else 120.0))
    result = map_error_surface("m_l", 0, "crank-nicolson", "kelvin", solver=solver, provider=provider)
    assert np.all(result.errors[0, :] == 100.0)
    assert np.allclose(result.errors[1:, :], 120.0)
    assert np.all(result.risk.labels == HIGH_RISK)
    assert result.failed_cells == 0


def test_failing_solver_fills_surface_with_sentinel(provider):
    class Diverging:
        def solve(self, grid, method, boundary):
            raise NumericalInstabilityError("blew up")

    result = map_error_surface("m_l", 0, "forward", "kelvin", solver=Diverging(), provider=provider)
    assert result.shape == (50, 50)
    assert not np.isnan(result.errors).any()
    assert np.all(result.errors == FAILURE_SENTINEL)
    assert result.failed_cells == 2500
    assert result.computed.all()


def test_other_solver_errors_propagate(provider):
    class Broken:
        def solve(self, grid, method, boundary):
            raise RuntimeError("bug")

    with pytest.raises(RuntimeError):
        map_error_surface("m_l", 0, "forward", "kelvin", solver=Broken(), provider=provider)


def test_unknown_scenario_fails_before_any_work(uniform_solver, provider):
    solver = uniform_solver(lambda grid, method: 0.0)
    with pytest.raises(UnknownScenario):
        map_error_surface("nope", 20, "forward", "kelvin", solver=solver, provider=provider)
    assert solver.calls == []
    assert provider.calls == []


@pytest.mark.parametrize(
    "args, error",
    [
        (("m_l", 0, "forward", "rankine"), UnknownUnitSystem),
        (("m_l", -1, "forward", "kelvin"), OutOfRange),
        (("m_l", 0, "leapfrog", "kelvin"), OutOfRange),
    ],
)
def test_invalid_arguments_fail_before_any_work(uniform_solver, provider, args, error):
    solver = uniform_solver(lambda grid, method: 0.0)
    with pytest.raises(error):
        map_error_surface(*args, solver=solver, provider=provider)
    assert solver.calls == []
    assert provider.calls == []


def test_celsius_target_and_boundary(uniform_solver, provider):
    solver = uniform_solver(lambda grid, method: 148.6235)
    result = map_error_surface("m_l", 0, "crank-nicolson", "celsius", solver=solver, provider=provider)
    assert result.target == pytest.approx(M_L_KELVIN - 273.15)
    assert np.allclose(result.errors, 0.0, atol=1e-9)
    assert provider.calls[0][0] == "m_l"


def test_executor_matches_sequential(uniform_solver, provider):
    def fn(grid, method):
        return M_L_KELVIN + (grid.nt * 3 + grid.nx) % 11

    sequential = map_error_surface("m_l", 0, "forward", "kelvin", solver=uniform_solver(fn), provider=provider)
    with ThreadPoolExecutor(max_workers=4) as pool:
        threaded = map_error_surface(
            "m_l", 0, "forward", "kelvin", solver=uniform_solver(fn), provider=provider, executor=pool
        )
    assert np.array_equal(sequential.errors, threaded.errors)
    assert sequential.summary == threaded.summary


def test_cancel_before_start(uniform_solver, provider):
    event = threading.Event()
    event.set()
    solver = uniform_solver(lambda grid, method: M_L_KELVIN)
    result = map_error_surface(
        "m_l", 0, "forward", "kelvin", solver=solver, provider=provider, cancel_event=event
    )
    assert result.cancelled
    assert solver.calls == []
    assert not result.computed.any()
    assert np.all(result.errors == FAILURE_SENTINEL)


def test_cancel_mid_sweep(uniform_solver, provider):
    event = threading.Event()

    def stop_after_ten(count):
        if count == 10:
            event.set()

    solver = uniform_solver(lambda grid, method: M_L_KELVIN, on_call=stop_after_ten)
    result = map_error_surface(
        "m_l", 0, "forward", "kelvin", solver=solver, provider=provider, cancel_event=event
    )
    assert result.cancelled
    assert int(result.computed.sum()) == 10
    assert np.all(result.errors[0, :10] == 0.0)
    assert np.all(result.errors[~result.computed] == FAILURE_SENTINEL)


def test_front_history_metric(uniform_solver, provider):
    solver = uniform_solver(lambda grid, method: M_L_KELVIN + 2.0)
    result = map_error_surface(
        "m_l", 0, "forward", "kelvin", solver=solver, provider=provider, metric="front-history"
    )
    assert np.allclose(result.errors, 2.0)


def test_progress_is_logged(uniform_solver, provider, caplog):
    solver = uniform_solver(lambda grid, method: M_L_KELVIN)
    with caplog.at_level(logging.INFO):
        map_error_surface("m_l", 0, "forward", "kelvin", solver=solver, provider=provider)
    assert "100.0% complete (2500/2500)" in caplog.text
    assert "Error surface done" in caplog.text


def test_reference_solver_surface(provider):
    result = map_error_surface(
        "m_l", 0, "backward-difference", "kelvin", solver=FiniteDifferenceSolver(), provider=provider
    )
    assert result.shape == (50, 50)
    assert np.all(np.isfinite(result.errors))
    assert result.errors.max() <= 150.0
    assert result.failed_cells == 0


def test_forward_scheme_surface_records_divergence(provider):
    result = map_error_surface(
        "m_l", 0, "forward", "kelvin", solver=FiniteDifferenceSolver(), provider=provider
    )
    assert result.failed_cells > 0
    assert not np.isnan(result.errors).any()
    assert result.summary.max_error >= FAILURE_SENTINEL
    assert result.risk.count(HIGH_RISK) >= result.failed_cells
