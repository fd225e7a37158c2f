#!/usr/bin/env python3
"""
One-dimensional transient heat conduction.

This module defines the grid and boundary types shared by the harness, the
``HeatSolver`` protocol the sweeps and the calibrator are written against, and
``FiniteDifferenceSolver``, a small reference implementation of that protocol.

Field layout
------------
A ``TemperatureField`` stores ``values`` with shape ``(nx, nt)``:

- axis 0 is the spatial position, index 0 being the heated face and index
  ``nx - 1`` the insulated back face;
- axis 1 is time, column ``-1`` being the final time.

``final_profile()`` is therefore the temperature across the slab at the end of
the run, and ``history(i)`` the temperature of node ``i`` over time.

Reference solver
----------------
Solves ``u_t = alpha * u_xx`` on ``[0, thickness]``. The boundary data
(linearly interpolated in time) is the gas temperature seen by the heated face
through a film coefficient, or, with ``heat_transfer_coefficient=None``, the
face temperature itself. The back face is insulated. Both faces use ghost
nodes. Four schemes are available: forward (FTCS), backward-difference
(implicit Euler), DuFort-Frankel and Crank-Nicolson. It makes no
claim of physical fidelity beyond that.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Union

import numpy as np
from scipy.sparse import diags, identity
from scipy.sparse.linalg import factorized

from harness_errors import NumericalInstabilityError, OutOfRange

logger = logging.getLogger(__name__)


class Method(enum.Enum):
    """Finite-difference schemes, declared in tie-break priority order."""

    FORWARD = "forward"
    BACKWARD_DIFFERENCE = "backward-difference"
    DUFORT_FRANKEL = "dufort-frankel"
    CRANK_NICOLSON = "crank-nicolson"

    @classmethod
    def parse(cls, value: Union[str, "Method"]) -> "Method":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for method in cls:
            if method.value == key:
                return method
        choices = ", ".join(m.value for m in cls)
        raise OutOfRange(f"Unknown method {value!r}; expected one of: {choices}")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class GridParameters:
    """
    Grid of one solver invocation.

    ``nt`` and ``nx`` count grid points including both ends, hence
    ``dt = tmax / (nt - 1)`` and ``dx = thickness / (nx - 1)``.
    """

    tmax: float
    nt: int
    nx: int
    thickness: float

    def __post_init__(self):
        if not self.tmax > 0:
            raise OutOfRange(f"tmax must be > 0, got {self.tmax}")
        if int(self.nt) != self.nt or self.nt < 2:
            raise OutOfRange(f"nt must be an integer >= 2, got {self.nt}")
        if int(self.nx) != self.nx or self.nx < 2:
            raise OutOfRange(f"nx must be an integer >= 2, got {self.nx}")
        if not self.thickness > 0:
            raise OutOfRange(f"thickness must be > 0, got {self.thickness}")

    @property
    def dt(self) -> float:
        return self.tmax / (self.nt - 1)

    @property
    def dx(self) -> float:
        return self.thickness / (self.nx - 1)


@dataclass(frozen=True, eq=False)
class BoundaryCondition:
    """Time series driving the heated face, ``times[0] == 0``."""

    times: np.ndarray
    values: np.ndarray

    def __post_init__(self):
        times = np.asarray(self.times, dtype=np.float64).ravel()
        values = np.asarray(self.values, dtype=np.float64).ravel()
        if times.size == 0:
            raise ValueError("Boundary data must contain at least one point.")
        if times.shape != values.shape:
            raise ValueError(
                f"Boundary times and values differ in length ({times.size} != {values.size})."
            )
        if not (np.all(np.isfinite(times)) and np.all(np.isfinite(values))):
            raise ValueError("Boundary data must be finite.")
        if times[0] != 0.0:
            raise ValueError(f"Boundary times must start at 0, got {times[0]}")
        if np.any(np.diff(times) <= 0):
            raise ValueError("Boundary times must be strictly increasing.")
        # Using object.__setattr__ because the class is frozen
        object.__setattr__(self, "times", times)
        object.__setattr__(self, "values", values)

    def at(self, t: np.ndarray) -> np.ndarray:
        return np.interp(t, self.times, self.values)

    def map_values(self, fn: Callable[[np.ndarray], np.ndarray]) -> "BoundaryCondition":
        return BoundaryCondition(times=self.times.copy(), values=fn(self.values.copy()))

    def __len__(self) -> int:
        return int(self.times.size)


@dataclass(frozen=True, eq=False)
class TemperatureField:
    x: np.ndarray
    t: np.ndarray
    values: np.ndarray

    def final_profile(self) -> np.ndarray:
        return self.values[:, -1]

    def history(self, position: int) -> np.ndarray:
        return self.values[position, :]

    def probe(self, position: int) -> float:
        return float(self.values[position, -1])


class HeatSolver(Protocol):
    """
    Anything that turns a grid, a scheme and boundary data into a field.

    Implementations signal divergence by raising ``NumericalInstabilityError``;
    the sweeps rely on that type to tell a failed cell from a programming error.
    """

    def solve(
        self,
        grid: GridParameters,
        method: Method,
        boundary: BoundaryCondition,
    ) -> TemperatureField:
        ...


@dataclass(frozen=True)
class SolverOptions:
    """
    Attributes:
    - diffusivity (float): Thermal diffusivity alpha in m^2/s.
    - conductivity (float): Thermal conductivity k in W/(m K).
    - heat_transfer_coefficient (float, optional): Film coefficient h in
      W/(m^2 K) between the boundary-data temperature and the heated face.
      ``None`` prescribes the face temperature directly.
    - initial_temperature (float, optional): Uniform initial temperature; the
      first boundary value when omitted.
    - divergence_factor (float): A step whose magnitude exceeds this factor times
      the largest boundary/initial magnitude (at least 1) counts as divergence.
    """

    diffusivity: float = 5.0e-7
    conductivity: float = 1.0
    heat_transfer_coefficient: Optional[float] = 25.0
    initial_temperature: Optional[float] = None
    divergence_factor: float = 1.0e3

    def __post_init__(self):
        if not self.diffusivity > 0:
            raise OutOfRange(f"diffusivity must be > 0, got {self.diffusivity}")
        if not self.conductivity > 0:
            raise OutOfRange(f"conductivity must be > 0, got {self.conductivity}")
        if self.heat_transfer_coefficient is not None and not self.heat_transfer_coefficient >= 0:
            raise OutOfRange(
                f"heat_transfer_coefficient must be >= 0, got {self.heat_transfer_coefficient}"
            )
        if not self.divergence_factor > 1:
            raise OutOfRange(f"divergence_factor must be > 1, got {self.divergence_factor}")

    @property
    def film_ratio(self) -> Optional[float]:
        if self.heat_transfer_coefficient is None:
            return None
        return self.heat_transfer_coefficient / self.conductivity


@dataclass(frozen=True)
class SlabOperator:
    """
    Second-difference operator on the unknown nodes ``start..nx-1``.

    The back face is insulated: its ghost node mirrors ``u[nx-2]``. The heated
    face either is a known node (``start == 1``) whose value enters node 1
    through ``coupling``, or is itself unknown (``start == 0``) with a film
    condition ``-k u_x = h (T_gas - u)`` eliminated through a ghost node.
    """

    lap: Any
    start: int
    face_weight: float

    def coupling(self, face_value: float) -> np.ndarray:
        vec = np.zeros(self.lap.shape[0])
        vec[0] = self.face_weight * face_value
        return vec


def slab_operator(nx: int, dx: float, film_ratio: Optional[float] = None) -> SlabOperator:
    if film_ratio is None:
        m, start = nx - 1, 1
        # With a single unknown the back-face ghost node also mirrors the heated face.
        weight = 1.0 if m > 1 else 2.0
    else:
        m, start = nx, 0
        weight = 2.0 * dx * film_ratio

    main_diag = np.full(m, -2.0)
    if m == 1:
        return SlabOperator(diags([main_diag], [0], shape=(1, 1), format="csc"), start, weight)

    upper_diag = np.ones(m - 1)
    lower_diag = np.ones(m - 1)
    lower_diag[-1] = 2.0
    if start == 0:
        main_diag[0] -= weight
        upper_diag[0] = 2.0
    lap = diags([main_diag, upper_diag, lower_diag], [0, 1, -1], format="csc")
    return SlabOperator(lap, start, weight)


def _check_step(u: np.ndarray, step: int, limit: float, method: Method) -> None:
    if not np.all(np.isfinite(u)) or float(np.max(np.abs(u))) > limit:
        raise NumericalInstabilityError(
            f"{method.value} solution diverged at time step {step}"
        )


def _march_forward(values, g, r, op, limit):
    s = op.start
    for n in range(values.shape[1] - 1):
        u = values[s:, n]
        values[s:, n + 1] = u + r * (op.lap @ u + op.coupling(g[n]))
        _check_step(values[s:, n + 1], n + 1, limit, Method.FORWARD)


def _march_backward(values, g, r, op, limit):
    s = op.start
    eye = identity(op.lap.shape[0], format="csc")
    solve = factorized((eye - r * op.lap).tocsc())
    for n in range(values.shape[1] - 1):
        values[s:, n + 1] = solve(values[s:, n] + r * op.coupling(g[n + 1]))
        _check_step(values[s:, n + 1], n + 1, limit, Method.BACKWARD_DIFFERENCE)


def _march_crank_nicolson(values, g, r, op, limit):
    s = op.start
    eye = identity(op.lap.shape[0], format="csc")
    solve = factorized((eye - 0.5 * r * op.lap).tocsc())
    explicit = (eye + 0.5 * r * op.lap).tocsr()
    for n in range(values.shape[1] - 1):
        b = explicit @ values[s:, n] + 0.5 * r * op.coupling(g[n] + g[n + 1])
        values[s:, n + 1] = solve(b)
        _check_step(values[s:, n + 1], n + 1, limit, Method.CRANK_NICOLSON)


def _march_dufort_frankel(values, g, r, op, limit):
    s = op.start
    eye = identity(op.lap.shape[0], format="csc")
    # Three-level scheme: the first step comes from implicit Euler.
    first = factorized((eye - r * op.lap).tocsc())
    values[s:, 1] = first(values[s:, 0] + r * op.coupling(g[1]))
    _check_step(values[s:, 1], 1, limit, Method.DUFORT_FRANKEL)

    neighbours = (op.lap + 2.0 * eye).tocsr()
    for n in range(1, values.shape[1] - 1):
        total = neighbours @ values[s:, n] + op.coupling(g[n])
        values[s:, n + 1] = ((1.0 - 2.0 * r) * values[s:, n - 1] + 2.0 * r * total) / (1.0 + 2.0 * r)
        _check_step(values[s:, n + 1], n + 1, limit, Method.DUFORT_FRANKEL)


_MARCHERS = {
    Method.FORWARD: _march_forward,
    Method.BACKWARD_DIFFERENCE: _march_backward,
    Method.DUFORT_FRANKEL: _march_dufort_frankel,
    Method.CRANK_NICOLSON: _march_crank_nicolson,
}


@dataclass(frozen=True)
class FiniteDifferenceSolver:
    options: SolverOptions = field(default_factory=SolverOptions)

    def solve(
        self,
        grid: GridParameters,
        method: Method,
        boundary: BoundaryCondition,
    ) -> TemperatureField:
        method = Method.parse(method)
        opts = self.options

        x = np.linspace(0.0, grid.thickness, grid.nx, dtype=np.float64)
        t = np.linspace(0.0, grid.tmax, grid.nt, dtype=np.float64)
        g = boundary.at(t)
        r = opts.diffusivity * grid.dt / grid.dx**2
        op = slab_operator(grid.nx, grid.dx, opts.film_ratio)

        u0 = boundary.values[0] if opts.initial_temperature is None else opts.initial_temperature
        values = np.empty((grid.nx, grid.nt), dtype=np.float64)
        values[:, 0] = u0
        if op.start == 1:
            values[0, :] = g

        scale = max(1.0, float(np.max(np.abs(boundary.values))), abs(float(u0)))
        limit = opts.divergence_factor * scale

        logger.debug(
            "solve %s: nt=%d nx=%d dt=%.4g dx=%.4g r=%.4g",
            method.value, grid.nt, grid.nx, grid.dt, grid.dx, r,
        )
        with np.errstate(over="ignore", invalid="ignore"):
            _MARCHERS[method](values, g, r, op, limit)

        return TemperatureField(x=x, t=t, values=values)


def peak_final_profile(temperature: TemperatureField) -> float:
    """Maximum temperature across the slab at the final time."""
    return float(np.max(temperature.final_profile()))


def peak_front_history(temperature: TemperatureField) -> float:
    """Maximum temperature reached by the heated-face node over the run."""
    return float(np.max(temperature.history(0)))


FIELD_METRICS: Dict[str, Callable[[TemperatureField], float]] = {
    "final-profile": peak_final_profile,
    "front-history": peak_front_history,
}


def resolve_metric(name: str) -> Callable[[TemperatureField], float]:
    try:
        return FIELD_METRICS[name]
    except KeyError:
        choices = ", ".join(FIELD_METRICS)
        raise OutOfRange(f"Unknown field metric {name!r}; expected one of: {choices}") from None
