"""Pytest session setup: repository root on ``sys.path``, clean harness loggers."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from heat_solver import BoundaryCondition, TemperatureField  # noqa: E402
from logging_config import HARNESS_LOGGERS  # noqa: E402


class UniformFieldSolver:
    """Returns a uniform field whose value is ``fn(grid, method)``; records every call."""

    def __init__(self, fn, on_call=None):
        self.fn = fn
        self.on_call = on_call
        self.calls = []

    def solve(self, grid, method, boundary):
        self.calls.append((grid.nt, grid.nx, grid.thickness, method))
        if self.on_call is not None:
            self.on_call(len(self.calls))
        value = self.fn(grid, method)
        return TemperatureField(
            x=np.linspace(0.0, grid.thickness, grid.nx),
            t=np.linspace(0.0, grid.tmax, grid.nt),
            values=np.full((grid.nx, grid.nt), value, dtype=float),
        )


@pytest.fixture(autouse=True)
def _reset_harness_loggers():
    yield
    # setup_logging (called by the CLI) stops propagation, which hides records from caplog.
    for name in HARNESS_LOGGERS:
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)


@pytest.fixture
def uniform_solver():
    return UniformFieldSolver


@pytest.fixture
def ramp_boundary():
    return BoundaryCondition(times=[0.0, 2000.0, 4000.0], values=[293.15, 480.0, 520.0])
