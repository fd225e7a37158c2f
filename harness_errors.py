#!/usr/bin/env python3
"""
Error taxonomy shared by the sweeps, the calibrator and the CLI.

Pre-flight errors (``UnknownScenario``, ``UnknownUnitSystem``, ``OutOfRange``)
are raised before any solver work. ``NumericalInstabilityError`` is raised by
solvers and absorbed per work item inside sweeps. ``NoStableMethodFound`` is a
warning category and is never raised.
"""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for every typed failure of the harness."""


class UnknownScenario(HarnessError, KeyError):
    def __init__(self, scenario_id: str):
        super().__init__(scenario_id)
        self.scenario_id = scenario_id

    def __str__(self) -> str:
        return f"Unknown scenario {self.scenario_id!r}"


class UnknownUnitSystem(HarnessError, ValueError):
    pass


class OutOfRange(HarnessError, ValueError):
    pass


class NumericalInstabilityError(HarnessError, ArithmeticError):
    pass


class StalledConvergence(HarnessError, RuntimeError):
    pass


class NoStableMethodFound(UserWarning):
    pass
