#!/usr/bin/env python3
"""
Scenario targets, unit systems and boundary data.

Every scenario names a thermocouple measurement point on the tested article.
Its target value is stored in Kelvin and converted on demand; lookups of
unknown identifiers raise ``UnknownScenario`` before anything else happens.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Protocol, Union

import numpy as np

from harness_errors import UnknownScenario, UnknownUnitSystem
from heat_solver import BoundaryCondition

KELVIN_OFFSET = 273.15


class UnitSystem(enum.Enum):
    KELVIN = "kelvin"
    CELSIUS = "celsius"
    FAHRENHEIT = "fahrenheit"

    @classmethod
    def parse(cls, value: Union[str, "UnitSystem"]) -> "UnitSystem":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        key = _UNIT_ALIASES.get(key, key)
        for unit in cls:
            if unit.value == key:
                return unit
        raise UnknownUnitSystem(f"Unknown unit system {value!r}")

    def __str__(self) -> str:
        return self.value


# Legacy spellings found in the measurement logs.
_UNIT_ALIASES = {
    "k": "kelvin",
    "c": "celsius",
    "celcius": "celsius",
    "f": "fahrenheit",
    "farenheight": "fahrenheit",
}


def from_kelvin(value, unit: Union[str, UnitSystem]):
    """Convert a Kelvin scalar or array to ``unit``."""
    unit = UnitSystem.parse(unit)
    if unit is UnitSystem.CELSIUS:
        return value - KELVIN_OFFSET
    if unit is UnitSystem.FAHRENHEIT:
        return (value - KELVIN_OFFSET) * (9.0 / 5.0) + 32.0
    return value


@dataclass(frozen=True)
class ScenarioTarget:
    scenario_id: str
    kelvin: float
    description: str


SCENARIO_TARGETS: Dict[str, ScenarioTarget] = {
    t.scenario_id: t
    for t in (
        ScenarioTarget("m_r", 434.1425, "Right section measurement point"),
        ScenarioTarget("m_l", 421.7735, "Left section measurement point"),
        ScenarioTarget("m_b", 411.1631, "Bottom section measurement point"),
        ScenarioTarget("f_m", 415.9252, "Front middle measurement point"),
        ScenarioTarget("b_r_t", 430.0766, "Back right top measurement point"),
        ScenarioTarget("b_r_s", 437.7832, "Back right side measurement point"),
        ScenarioTarget("b_r_f", 439.9135, "Back right front measurement point"),
        ScenarioTarget("b_m", 401.4381, "Back middle measurement point"),
    )
}


def lookup_scenario(scenario_id: str) -> ScenarioTarget:
    try:
        return SCENARIO_TARGETS[scenario_id]
    except KeyError:
        raise UnknownScenario(scenario_id) from None


def target_kelvin(scenario_id: str) -> float:
    return lookup_scenario(scenario_id).kelvin


def target_in(scenario_id: str, unit: Union[str, UnitSystem]) -> float:
    return float(from_kelvin(target_kelvin(scenario_id), unit))


def list_scenarios() -> List[ScenarioTarget]:
    return list(SCENARIO_TARGETS.values())


class BoundaryDataProvider(Protocol):
    def fetch(self, scenario_id: str, unit: Union[str, UnitSystem]) -> BoundaryCondition:
        ...


class TabulatedBoundaryProvider:
    """
    Boundary data held in memory as Kelvin tables keyed by scenario.

    Values are converted to the requested unit on every ``fetch``; the stored
    tables are never modified.
    """

    def __init__(self, tables_kelvin: Mapping[str, BoundaryCondition]):
        self._tables: Dict[str, BoundaryCondition] = dict(tables_kelvin)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "TabulatedBoundaryProvider":
        """
        Build from a mapping shaped like the ``boundary_tables`` YAML section::

            m_l:
              times: [0, 600, 1200]
              values: [293.15, 480.0, 520.0]
        """
        if not isinstance(raw, Mapping):
            raise TypeError("Boundary tables must be a mapping of scenario -> table.")
        tables: Dict[str, BoundaryCondition] = {}
        for scenario_id, table in raw.items():
            if not isinstance(table, Mapping) or "times" not in table or "values" not in table:
                raise ValueError(
                    f"Boundary table for {scenario_id!r} needs 'times' and 'values' entries."
                )
            tables[str(scenario_id)] = BoundaryCondition(
                times=np.asarray(table["times"], dtype=np.float64),
                values=np.asarray(table["values"], dtype=np.float64),
            )
        return cls(tables)

    def scenarios(self) -> List[str]:
        return sorted(self._tables)

    def fetch(self, scenario_id: str, unit: Union[str, UnitSystem]) -> BoundaryCondition:
        unit = UnitSystem.parse(unit)
        try:
            table = self._tables[scenario_id]
        except KeyError:
            raise UnknownScenario(scenario_id) from None
        return table.map_values(lambda v: from_kelvin(v, unit))
