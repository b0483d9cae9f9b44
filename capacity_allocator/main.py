from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import EntityNotFound, InvalidPeriod, PeriodNotFound, StorageUnavailable
from .io_utils import ensure_directory, load_config, write_csv
from .optimizer import AllocationOptimizer, OptimizationResult, ProjectShortfall
from .rollup import people_frame, projects_frame
from .service import CapacityService, OptimizationFailed
from .stores import DirectoryStore

COMMANDS = ("optimize", "overview", "person", "project")


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Capacity allocation batch tool (portfolio directory in, CSV/markdown out)."
    )
    parser.add_argument("command", choices=COMMANDS, help="Command to run")
    parser.add_argument(
        "--project-dir",
        required=True,
        help="Portfolio directory containing input/ (and receiving output/)",
    )
    parser.add_argument("--period", type=int, required=True, help="Planning period id")
    parser.add_argument("--person", type=int, help="Person id (for the 'person' command)")
    parser.add_argument("--project", type=int, help="Project id (for the 'project' command)")
    parser.add_argument(
        "--outdir",
        default=None,
        help="Output directory for generated files (default: <project-dir>/output)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and print results without writing calculations or output files",
    )
    parser.add_argument("--log-level", help="Override config.logging_level")
    args = parser.parse_args(argv)
    if args.command == "person" and args.person is None:
        parser.error("--person is required for the 'person' command")
    if args.command == "project" and args.project is None:
        parser.error("--project is required for the 'project' command")
    return args


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _format_shortfall(item: ProjectShortfall) -> str:
    return (
        f"{item.project_id} {item.project_name} [{item.priority.label}]: "
        f"{item.achieved_effective_hours:.1f}h of {item.required_hours:.1f}h, "
        f"short {item.shortfall:.1f}h ({item.shortfall_percentage:.1f}%)"
    )


def _print_result(result: OptimizationResult) -> None:
    print(f"Calculated {len(result.calculations)} assignments.")
    for calc in result.calculations:
        print(
            f"- assignment {calc.assignment_id}: {calc.allocation_percentage * 100:.1f}% "
            f"({calc.effective_hours:.1f}h effective)"
        )
    if result.infeasible_projects:
        print("\nUnder-staffed projects:")
        for item in result.infeasible_projects:
            print(f"- {_format_shortfall(item)}")
    else:
        print("\nUnder-staffed projects: none")
    for warning in result.warnings:
        print(f"WARNING: {warning}")


def _write_infeasible_markdown(result: OptimizationResult, outdir: Path) -> Path:
    path = outdir / "infeasible_projects.md"
    lines: List[str] = ["# Under-staffed Projects", ""]
    if not result.infeasible_projects:
        lines.append("All projects are fully staffed.")
    else:
        for item in result.infeasible_projects:
            lines.append(f"- **{item.project_id} – {item.project_name}**")
            lines.append(f"  - Priority: {item.priority.label}")
            lines.append(f"  - Required: {item.required_hours:.2f} h")
            lines.append(f"  - Achieved: {item.achieved_effective_hours:.2f} h")
            lines.append(f"  - Shortfall: {item.shortfall:.2f} h ({item.shortfall_percentage:.1f}%)")
            lines.append("")
    if result.warnings:
        lines.append("## Warnings")
        lines.append("")
        lines.extend(f"- {warning}" for warning in result.warnings)
    path.write_text("\n".join(lines).strip() + "\n")
    return path


def _run_optimize(service: CapacityService, args: argparse.Namespace, outdir: Path) -> int:
    if args.dry_run:
        try:
            result = AllocationOptimizer(service.config).optimize(service.store.snapshot(args.period))
        except (PeriodNotFound, InvalidPeriod) as exc:
            print(str(exc), file=sys.stderr)
            return 1
        _print_result(result)
        return 0
    outcome = service.run_optimization(args.period)
    if isinstance(outcome, OptimizationFailed):
        print(outcome.message, file=sys.stderr)
        return 1
    _print_result(outcome.result)
    overview = service.get_capacity_overview(args.period)
    ensure_directory(outdir)
    written = [
        _write_infeasible_markdown(outcome.result, outdir),
        outdir / "people_capacity.csv",
        outdir / "project_staffing.csv",
    ]
    write_csv(people_frame(overview), written[1])
    write_csv(projects_frame(overview), written[2])
    print(f"\nCalculations committed at {outcome.calculated_at.isoformat()}")
    for path in written:
        print(f"Wrote {path}")
    return 0


def _run_overview(service: CapacityService, args: argparse.Namespace, outdir: Path) -> int:
    overview = service.get_capacity_overview(args.period)
    people = people_frame(overview)
    projects = projects_frame(overview)
    print(
        f"People: {overview.total_people} ({overview.over_committed_people} over-committed, "
        f"{overview.near_capacity_people} near capacity)"
    )
    print(f"Projects: {overview.total_projects} ({overview.under_staffed_projects} under-staffed)")
    stamp = overview.last_calculated_at.isoformat() if overview.last_calculated_at else "never"
    print(f"Last calculated: {stamp}\n")
    print(people.to_string(index=False) if not people.empty else "No people.")
    print()
    print(projects.to_string(index=False) if not projects.empty else "No project requirements.")
    if not args.dry_run:
        write_csv(people, outdir / "people_capacity.csv")
        write_csv(projects, outdir / "project_staffing.csv")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    project_dir = Path(args.project_dir).resolve()
    if not project_dir.is_dir():
        print(f"project directory not found: {project_dir}", file=sys.stderr)
        return 2
    try:
        cfg = load_config(project_dir / "input" / "config.json")
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    _configure_logging(args.log_level or cfg.logging_level)
    outdir = Path(args.outdir) if args.outdir else project_dir / "output"
    try:
        service = CapacityService(DirectoryStore(project_dir), cfg)
        if args.command == "optimize":
            return _run_optimize(service, args, outdir)
        if args.command == "overview":
            return _run_overview(service, args, outdir)
        if args.command == "person":
            payload = asdict(service.get_person_capacity(args.person, args.period))
        else:
            staffing = service.get_project_staffing(args.project, args.period)
            payload = asdict(staffing)
            payload["priority"] = staffing.priority.label
        print(json.dumps(payload, indent=2, default=str))
        return 0
    except (StorageUnavailable, ValueError, EntityNotFound) as exc:
        print(str(exc), file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
