#!/usr/bin/env python3
"""
heat-harness: numerical experiments around a 1D transient heat-conduction solver.

Subcommands:
- surface:    error surface over grid resolution against a scenario target
- calibrate:  secant-method search for the thickness reaching a target temperature
- stability:  largest tolerated timestep of each finite-difference scheme
- scenarios:  list the registered scenario targets

Defaults can be loaded from a YAML config (``--config``); command-line flags
override them. Boundary data for the scenarios lives in the same file under
``boundary_tables`` (see ``config.example.yaml``).
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

import questionary
import yaml
from tabulate import tabulate

from error_surface import (
    DEFAULT_THICKNESS,
    DEFAULT_TMAX,
    ErrorSurfaceResult,
    map_error_surface,
    surface_dimension,
)
from harness_errors import HarnessError
from heat_solver import FIELD_METRICS, FiniteDifferenceSolver, Method, SolverOptions
from logging_config import setup_logging
from risk_colors import HIGH_RISK, LOW_RISK, MEDIUM_RISK, RISK_LABELS
from scenarios import TabulatedBoundaryProvider, UnitSystem, list_scenarios, lookup_scenario, target_in
from stability_scan import StabilityResult, scan_stability
from thickness_calibration import CalibrationResult, calibrate_thickness

logger = logging.getLogger("harness")

METHOD_CHOICES = [m.value for m in Method]
UNIT_CHOICES = [u.value for u in UnitSystem]
COMMAND_SECTIONS = ("surface", "calibrate", "stability")


def _flatten_yaml_mapping(data: Any) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TypeError("YAML config must be a mapping (dict-like) at the top level.")
    out: dict[str, Any] = {}
    for key, value in data.items():
        if not isinstance(key, str):
            raise TypeError("YAML config keys must be strings.")
        if isinstance(value, dict):
            out.update(_flatten_yaml_mapping(value))
        else:
            out[key] = value
    return out


def load_config(path: str) -> Tuple[dict[str, Any], dict[str, dict[str, Any]], dict[str, Any]]:
    """Return ``(shared option defaults, per-subcommand sections, boundary tables)`` from a YAML file."""
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise TypeError("YAML config must be a mapping (dict-like) at the top level.")
    tables = raw.pop("boundary_tables", None) or {}
    sections = {cmd: _flatten_yaml_mapping(raw.pop(cmd, None)) for cmd in COMMAND_SECTIONS}
    return _flatten_yaml_mapping(raw), sections, tables


def _common_parser(suppress_defaults: bool = False) -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False, allow_abbrev=False)
    common.add_argument(
        "--config",
        type=str,
        default="",
        help="Load defaults and boundary tables from YAML (CLI overrides)",
    )
    common.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    common.add_argument(
        "--confirm",
        choices=["yes", "no"],
        default="yes",
        help="Skip the confirmation prompt before long sweeps if set to yes (default: yes)",
    )
    common.add_argument(
        "--verbose",
        choices=["yes", "no"],
        default="no",
        help="Log progress and per-step details (default: no)",
    )
    common.add_argument("--log_file", type=str, default="", help="Also write the log to this file")
    common.add_argument(
        "--diffusivity",
        type=float,
        default=SolverOptions.diffusivity,
        help=f"Thermal diffusivity in m^2/s (default: {SolverOptions.diffusivity})",
    )
    common.add_argument(
        "--conductivity",
        type=float,
        default=SolverOptions.conductivity,
        help=f"Thermal conductivity in W/(m K) (default: {SolverOptions.conductivity})",
    )
    common.add_argument(
        "--heat_transfer_coefficient",
        type=float,
        default=SolverOptions.heat_transfer_coefficient,
        help="Film coefficient of the heated face in W/(m^2 K) "
        f"(default: {SolverOptions.heat_transfer_coefficient})",
    )
    common.add_argument(
        "--face",
        choices=["convective", "fixed"],
        default="convective",
        help="Heated face driven through the film coefficient, or held at the boundary "
        "temperature (default: convective)",
    )
    common.add_argument(
        "--initial_temperature",
        type=float,
        default=None,
        help="Uniform initial temperature (default: first boundary value)",
    )
    common.add_argument("--scenario", type=str, default="m_l", help="Scenario identifier (default: m_l)")
    common.add_argument(
        "--unit",
        type=str,
        default="kelvin",
        help=f"Unit system, one of {', '.join(UNIT_CHOICES)} (default: kelvin)",
    )
    if suppress_defaults:
        for action in common._actions:  # pylint: disable=protected-access
            action.default = argparse.SUPPRESS
    return common


def _build_parser() -> Tuple[argparse.ArgumentParser, Dict[str, argparse.ArgumentParser]]:
    examples = """Examples:
  # Error surface for the left section, 70 x 70 grids
  heat-harness surface --config config.example.yaml --scenario m_l --resolution 20

  # Same sweep on four worker threads, JSON output
  heat-harness surface --config config.example.yaml --scenario m_l --workers 4 --format json

  # Thickness reaching 150 C at the end of the run
  heat-harness calibrate --config config.example.yaml --unit celsius --target 150

  # Largest stable timestep of each scheme, sampling node 24
  heat-harness stability --config config.example.yaml --nt_min 10 --nt_max 200 --nt_incr 10 --tol 0.5
"""
    parser = argparse.ArgumentParser(
        description=__doc__,
        epilog=examples,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=[_common_parser()],
        allow_abbrev=False,
    )
    sub = parser.add_subparsers(dest="cmd", required=True)
    # Shared flags are also accepted after the subcommand. Their copies there
    # default to SUPPRESS so that values given before the subcommand survive.
    common = _common_parser(suppress_defaults=True)

    surface = sub.add_parser("surface", parents=[common], help="Error surface over grid resolution")
    surface.add_argument("--resolution", type=int, default=20, help="Surface side is resolution + 50 (default: 20)")
    surface.add_argument("--method", choices=METHOD_CHOICES, default="crank-nicolson")
    surface.add_argument("--tmax", type=float, default=DEFAULT_TMAX, help=f"Simulated time in s (default: {DEFAULT_TMAX})")
    surface.add_argument("--thickness", type=float, default=DEFAULT_THICKNESS, help=f"Slab thickness in m (default: {DEFAULT_THICKNESS})")
    surface.add_argument("--metric", choices=list(FIELD_METRICS), default="final-profile")
    surface.add_argument("--workers", type=int, default=0, help="Worker threads (default: 0, sequential)")

    calibrate = sub.add_parser("calibrate", parents=[common], help="Secant search for the slab thickness")
    calibrate.add_argument("--tmax", type=float, default=DEFAULT_TMAX)
    calibrate.add_argument("--nt", type=int, default=100)
    calibrate.add_argument("--nx", type=int, default=50)
    calibrate.add_argument(
        "--target",
        type=float,
        default=None,
        help="Target peak temperature at the final time (default: the scenario target)",
    )
    calibrate.add_argument("--max_iterations", type=int, default=20)

    stability = sub.add_parser("stability", parents=[common], help="Timestep stability of the four schemes")
    stability.add_argument("--tmax", type=float, default=DEFAULT_TMAX)
    stability.add_argument("--nt_min", type=int, default=10)
    stability.add_argument("--nt_max", type=int, default=200)
    stability.add_argument("--nt_incr", type=int, default=10)
    stability.add_argument("--thickness", type=float, default=DEFAULT_THICKNESS)
    stability.add_argument("--nx", type=int, default=50)
    stability.add_argument(
        "--probe_index",
        type=int,
        default=24,
        help="0-based spatial node sampled at the final time (default: 24)",
    )
    stability.add_argument("--tol", type=float, default=0.5, help="Tolerance band around the reference")
    stability.add_argument("--workers", type=int, default=0, help="Worker threads (default: 0, sequential)")

    sub.add_parser("scenarios", parents=[common], help="List the registered scenario targets")
    return parser, {"surface": surface, "calibrate": calibrate, "stability": stability}


def _dests(parser: argparse.ArgumentParser) -> set[str]:
    return {a.dest for a in parser._actions if getattr(a, "dest", None)}  # pylint: disable=protected-access


def _apply_config_defaults(parser: argparse.ArgumentParser, cfg: dict[str, Any]) -> None:
    if not cfg:
        return
    by_dest = {a.dest: a for a in parser._actions if getattr(a, "dest", None)}  # pylint: disable=protected-access
    defaults: dict[str, Any] = {}
    for key, value in cfg.items():
        action = by_dest.get(key)
        if action is None or value is None:
            continue
        if action.type is not None:
            try:
                defaults[key] = action.type(value)  # pylint: disable=not-callable
            except (TypeError, ValueError):
                defaults[key] = action.type(str(value))  # pylint: disable=not-callable
        else:
            defaults[key] = value
    parser.set_defaults(**defaults)


def parse_args(argv: List[str]) -> Tuple[argparse.Namespace, dict[str, Any]]:
    """
    Parse ``argv`` with defaults taken from ``--config``.

    Shared options in the config (any section other than a subcommand's) are
    applied to the top-level parser. A section named after a subcommand only
    sets that subcommand's own options and takes precedence over top-level
    keys of the same name.
    """
    pre = argparse.ArgumentParser(add_help=False, allow_abbrev=False)
    pre.add_argument("--config", type=str, default="")
    pre_args, _ = pre.parse_known_args(argv)

    parser, subparsers = _build_parser()
    tables: dict[str, Any] = {}
    if pre_args.config:
        shared, sections, tables = load_config(pre_args.config)
        shared_dests = _dests(parser)
        _apply_config_defaults(parser, {k: v for k, v in shared.items() if k in shared_dests})
        for cmd, subparser in subparsers.items():
            own = _dests(subparser) - shared_dests
            _apply_config_defaults(subparser, {k: v for k, v in shared.items() if k in own})
            section = sections.get(cmd, {})
            misplaced = sorted(set(section) - own)
            if misplaced:
                raise HarnessError(
                    f"Config section '{cmd}' sets options it does not own: {', '.join(misplaced)}. "
                    "Shared options belong in the 'solver' or 'scenario' sections."
                )
            _apply_config_defaults(subparser, section)

    try:
        import argcomplete  # type: ignore
    except ModuleNotFoundError:
        argcomplete = None
    if argcomplete is not None:
        argcomplete.autocomplete(parser)

    return parser.parse_args(argv), tables


@contextmanager
def _maybe_executor(workers: int) -> Iterator[Optional[ThreadPoolExecutor]]:
    if workers and workers > 0:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            yield pool
    else:
        yield None


def _provider(tables: dict[str, Any]) -> TabulatedBoundaryProvider:
    if not tables:
        raise HarnessError(
            "No boundary tables configured; pass --config with a 'boundary_tables' section."
        )
    return TabulatedBoundaryProvider.from_mapping(tables)


def _confirmed(args: argparse.Namespace, question: str) -> bool:
    return args.confirm == "yes" or bool(questionary.confirm(question).ask())


def _jsonable_float(value: Optional[float]) -> Any:
    if value is None:
        return None
    if math.isinf(value):
        return "inf"
    return float(value)


def surface_report(result: ErrorSurfaceResult) -> Dict[str, Any]:
    s = result.summary
    return {
        "scenario": result.scenario_id,
        "method": result.method.value,
        "unit": result.unit.value,
        "target": result.target,
        "shape": list(result.shape),
        "min_error": s.min_error,
        "max_error": s.max_error,
        "mean_error": s.mean_error,
        "optimal_nt": s.optimal_nt,
        "optimal_nx": s.optimal_nx,
        "optimal_error": s.optimal_error,
        "low_risk_count": s.low_risk_count,
        "total_cells": s.total_cells,
        "stability_ratio": s.stability_ratio,
        "risk_counts": {RISK_LABELS[k]: result.risk.count(k) for k in (LOW_RISK, MEDIUM_RISK, HIGH_RISK)},
        "failed_cells": result.failed_cells,
        "cancelled": result.cancelled,
    }


def calibration_report(result: CalibrationResult) -> Dict[str, Any]:
    return {
        "thickness": result.thickness,
        "achieved_temperature": result.achieved_temperature,
        "target_temperature": result.target_temperature,
        "final_error": result.final_error,
        "converged": result.converged,
        "iterations": result.iterations,
        "iterates": [
            {
                "thickness": it.thickness,
                "achieved_temperature": it.achieved_temperature,
                "signed_error": it.signed_error,
            }
            for it in result.iterates
        ],
    }


def stability_report(result: StabilityResult) -> Dict[str, Any]:
    return {
        "best_method": result.best_method.value,
        "max_stable_dt": _jsonable_float(result.max_stable_dt),
        "per_method_bounds": {
            m.value: _jsonable_float(dt) for m, dt in result.per_method_bounds.items()
        },
        "reference": result.reference,
        "tolerance": result.tolerance,
        "dts": list(result.dts),
        "warning": result.warning,
        "cancelled": result.cancelled,
    }


def _print_surface(report: Dict[str, Any]) -> None:
    print("\n--- Error Surface Analysis Results ---")
    rows = [
        ["Scenario", report["scenario"]],
        ["Method", report["method"]],
        ["Target", f"{report['target']:.4f} ({report['unit']})"],
        ["Grid dimensions", f"{report['shape'][0]} x {report['shape'][1]}"],
        ["Minimum error", f"{report['min_error']:.4f}"],
        ["Maximum error", f"{report['max_error']:.4f}"],
        ["Mean error", f"{report['mean_error']:.4f}"],
        ["Optimal parameters", f"nt={report['optimal_nt']}, nx={report['optimal_nx']} (error {report['optimal_error']:.4f})"],
        ["Stability ratio", f"{report['stability_ratio']:.1f}% ({report['low_risk_count']}/{report['total_cells']} points with error < 1)"],
        ["Failed cells", report["failed_cells"]],
    ]
    print(tabulate(rows, tablefmt="grid"))
    counts = [[label, n] for label, n in report["risk_counts"].items()]
    print(tabulate(counts, headers=["Risk", "Cells"], tablefmt="grid"))


def _print_calibration(report: Dict[str, Any]) -> None:
    rows = [
        [k, f"{it['thickness']:.6f}", f"{it['achieved_temperature']:.4f}", f"{it['signed_error']:.6f}"]
        for k, it in enumerate(report["iterates"])
    ]
    print(tabulate(rows, headers=["#", "Thickness (m)", "Achieved", "Error"], tablefmt="grid"))
    if report["converged"]:
        print(f"\nConvergence achieved in {report['iterations']} iterations")
        print(f"Final thickness: {report['thickness']:.4f} m")
        print(
            f"Target temperature: {report['target_temperature']:.2f}, "
            f"Achieved: {report['achieved_temperature']:.2f}"
        )
    else:
        print(f"\nMaximum iterations reached without convergence after {report['iterations']} iterations")
    print(f"Final error: {abs(report['final_error']):.6f}")


def _print_stability(report: Dict[str, Any]) -> None:
    print("\n=== TIMESTEP OPTIMIZATION RESULTS ===")
    rows = [[m, dt] for m, dt in report["per_method_bounds"].items()]
    print(tabulate(rows, headers=["Method", "Max stable dt (s)"], tablefmt="grid"))
    print(f"Best Method: {report['best_method']}")
    print(f"Maximum Stable Timestep: {report['max_stable_dt']} seconds")
    print(f"Tolerance: +/-{report['tolerance']:.4f}")
    if report["reference"] is not None:
        print(f"Convergence Reference: {report['reference']:.4f}")
    if report["warning"]:
        print(f"Warning: {report['warning']}")


def _emit(args: argparse.Namespace, report: Dict[str, Any], printer) -> None:
    if args.format == "json":
        print(json.dumps(report, indent=2, sort_keys=True))
    else:
        printer(report)


def _solver(args: argparse.Namespace) -> FiniteDifferenceSolver:
    options = SolverOptions(
        diffusivity=args.diffusivity,
        conductivity=args.conductivity,
        heat_transfer_coefficient=None if args.face == "fixed" else args.heat_transfer_coefficient,
        initial_temperature=args.initial_temperature,
    )
    logger.info("Solver options: %s", options)
    return FiniteDifferenceSolver(options)


def run(args: argparse.Namespace, tables: dict[str, Any]) -> int:
    if args.cmd == "scenarios":
        rows = [
            [s.scenario_id, s.kelvin, target_in(s.scenario_id, args.unit), s.description]
            for s in list_scenarios()
        ]
        if args.format == "json":
            print(json.dumps([dict(zip(["scenario", "kelvin", "target", "description"], r)) for r in rows], indent=2))
        else:
            print(tabulate(rows, headers=["Scenario", "Target (K)", f"Target ({args.unit})", "Description"], tablefmt="grid"))
        return 0

    provider = _provider(tables)
    solver = _solver(args)

    if args.cmd == "surface":
        # Report a bad scenario or unit before asking to start the sweep.
        lookup_scenario(args.scenario)
        UnitSystem.parse(args.unit)
        dim = surface_dimension(args.resolution)
        if not _confirmed(args, f"Run {dim * dim} solver calls for a {dim} x {dim} error surface?"):
            print("Exiting.")
            return 1
        with _maybe_executor(args.workers) as executor:
            result = map_error_surface(
                args.scenario,
                args.resolution,
                args.method,
                args.unit,
                solver=solver,
                provider=provider,
                tmax=args.tmax,
                thickness=args.thickness,
                metric=args.metric,
                executor=executor,
                show_progress=args.format == "text",
            )
        _emit(args, surface_report(result), _print_surface)
        return 0

    boundary = provider.fetch(args.scenario, args.unit)

    if args.cmd == "calibrate":
        target = args.target if args.target is not None else target_in(args.scenario, args.unit)
        result = calibrate_thickness(
            args.tmax,
            args.nt,
            args.nx,
            boundary,
            target,
            args.max_iterations,
            solver=solver,
        )
        _emit(args, calibration_report(result), _print_calibration)
        return 0 if result.converged else 3

    if args.cmd == "stability":
        with _maybe_executor(args.workers) as executor:
            result = scan_stability(
                args.tmax,
                args.nt_min,
                args.nt_max,
                args.nt_incr,
                args.thickness,
                args.nx,
                args.probe_index,
                args.tol,
                boundary,
                solver=solver,
                executor=executor,
                show_progress=args.format == "text",
            )
        _emit(args, stability_report(result), _print_stability)
        return 0

    raise RuntimeError(f"Internal error: unhandled command {args.cmd!r}")


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args, tables = parse_args(sys.argv[1:] if argv is None else argv)
    except HarnessError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    level = logging.INFO if args.verbose == "yes" else logging.WARNING
    # Keep stdout clean for machine-readable output.
    stream = sys.stderr if args.format == "json" else sys.stdout
    setup_logging(level=level, log_file=args.log_file or None, stream=stream)
    try:
        return run(args, tables)
    except HarnessError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
