#!/usr/bin/env python3
"""
Geometry Impact Analysis
Estimate memory, bandwidth and occupancy overhead of the per-point geometry
structure for a set of atmospheric model configurations, and turn kernel
timings into an overhead report.

Usage:
    python geometry_impact.py                                   # Preset configurations
    python geometry_impact.py --footprint "3D extruded" --output results/analysis.md
    python geometry_impact.py --config configs.json --export results.json
    python geometry_impact.py --timings examples/benchmark_timings.json
    python geometry_impact.py --interactive
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from typing import Optional

import questionary
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from geometry_estimator import (
    CONFIG_PRESETS,
    DEFAULT_FOOTPRINT,
    FOOTPRINT_PRESETS,
    RECOMMENDATIONS,
    BenchmarkInput,
    EstimatorError,
    RunSettings,
    classify_overhead,
    compare_footprints,
    compute_overheads,
    estimate_all,
    estimate_occupancy,
    format_mb,
    format_percent,
    format_points,
    format_us,
    load_configurations,
    load_timings,
)
from markdown_report import (
    ReportError,
    build_analysis_report,
    build_benchmark_report,
    footprint_items,
    key_overhead,
    occupancy_rows,
    occupancy_verdict,
    summary_findings,
)

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = "results/analysis_geometry_impact.md"
DEFAULT_BENCHMARK_OUTPUT = "results/benchmark_geometry_impact.md"

IMPACT_COLORS = {
    "Significant": "red",
    "Moderate": "yellow",
    "Reasonable": "green",
    "Minimal": "green",
}


def setup_logging(log_level: str = "INFO", console: Optional[Console] = None) -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)
    handler = RichHandler(console=console or Console(stderr=True), show_path=False)
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler], force=True)


# ═══════════════════════════════════════════════════════════════════
# DISPLAY (Rich or plain)
# ═══════════════════════════════════════════════════════════════════
def display_analysis_rich(settings: RunSettings, results: list, occupancy, console: Console):
    console.print()
    console.print(Panel(
        f"[bold green]Geometry Impact Analysis[/]\n"
        f"[dim]{len(settings.configs)} configuration(s) | "
        f"geometry footprint {settings.bytes_per_point:g} bytes/point[/]",
        border_style="green",
    ))

    cfg_table = Table(box=box.ROUNDED, title="Configuration Details")
    cfg_table.add_column("Config", style="cyan")
    cfg_table.add_column("Horizontal pts", justify="right")
    cfg_table.add_column("Levels", justify="right")
    cfg_table.add_column("Total pts", justify="right", style="bold")
    cfg_table.add_column("Vars", justify="right")
    cfg_table.add_column("Description", style="dim")
    for cfg in settings.configs:
        cfg_table.add_row(
            cfg.name, format_points(cfg.horizontal_points), str(cfg.v_levels),
            format_points(cfg.total_points), str(cfg.n_state_vars), cfg.description,
        )
    console.print(cfg_table)

    mem_table = Table(box=box.ROUNDED, title="Memory Footprint Analysis")
    mem_table.add_column("Config", style="cyan")
    for header in ("Geometry", "State", "Aux", "Temp/RHS"):
        mem_table.add_column(header, justify="right")
    mem_table.add_column("Total", justify="right", style="bold")
    mem_table.add_column("Geometry Share", justify="right", style="yellow")
    for r in results:
        mem_table.add_row(
            r.config_name, format_mb(r.geometry_mb), format_mb(r.state_mb), format_mb(r.aux_mb),
            format_mb(r.temp_mb), format_mb(r.total_mb), format_percent(r.geometry_share_percent),
        )
    console.print(mem_table)

    bw_table = Table(box=box.ROUNDED, title="Bandwidth and Computational Impact")
    bw_table.add_column("Config", style="cyan")
    bw_table.add_column("Compute Intensity", justify="right")
    bw_table.add_column("Bandwidth Impact")
    for r in results:
        color = IMPACT_COLORS[r.bandwidth_impact]
        bw_table.add_row(r.config_name, f"{r.bandwidth_multiplier:.2f}x", f"[{color}]{r.bandwidth_impact}[/]")
    console.print(bw_table)

    occ_table = Table(box=box.SIMPLE_HEAVY, show_header=False, padding=(0, 2))
    occ_table.add_column(style="bold")
    occ_table.add_column(justify="right")
    for key, value in occupancy_rows(occupancy):
        occ_table.add_row(key, value)
    border = "yellow" if occupancy.occupancy_loss > 0 else "green"
    console.print(Panel(occ_table, title="[bold]Register and Occupancy Impact[/]", border_style=border))
    console.print(f"[{border}]{occupancy_verdict(occupancy)}[/]")

    rec_text = "\n".join(
        f"[bold]{i}. {title}[/]\n   [dim]{detail}[/]" for i, (title, detail) in enumerate(RECOMMENDATIONS, 1)
    )
    console.print(Panel(rec_text, title="[bold]Optimization Recommendations[/]", border_style="blue"))
    console.print(Panel(
        "\n".join(f"- {line}" for line in summary_findings(results, occupancy)),
        title="[bold]Summary[/]",
        border_style="green",
    ))
    console.print()


def display_analysis_plain(settings: RunSettings, results: list, occupancy):
    print("\n" + "=" * 70)
    print("  GEOMETRY IMPACT ANALYSIS")
    print(f"  Geometry footprint: {settings.bytes_per_point:g} bytes/point")
    print("=" * 70)

    print("\n  --- Configuration Details ---")
    for cfg in settings.configs:
        print(f"\n  {cfg.name}:")
        print(f"    Description:       {cfg.description}")
        print(f"    Cubed sphere:      {format_points(cfg.horizontal_points)} horizontal points "
              f"({cfg.h_elements} elements x {cfg.h_quads_per_elem}^2)")
        print(f"    Vertical:          {cfg.v_levels} levels")
        print(f"    Total grid points: {format_points(cfg.total_points)}")
        print(f"    State variables:   {cfg.n_state_vars}")

    print("\n  --- Memory Footprint Analysis ---")
    for r in results:
        print(f"\n  {r.config_name}:")
        print(f"    Geometry:              {format_mb(r.geometry_mb)}")
        print(f"    State variables:       {format_mb(r.state_mb)}")
        print(f"    Auxiliary fields:      {format_mb(r.aux_mb)}")
        print(f"    Temporary/RHS storage: {format_mb(r.temp_mb)}")
        print("    " + "-" * 40)
        print(f"    Total GPU memory:      {format_mb(r.total_mb)}")
        print(f"    Geometry share:        {format_percent(r.geometry_share_percent)}")

    print("\n  --- Bandwidth and Computational Impact ---")
    print(f"  {'Config':<28} {'Intensity':>10}  Impact")
    for r in results:
        print(f"  {r.config_name:<28} {r.bandwidth_multiplier:>9.2f}x  {r.bandwidth_impact}")

    print("\n  --- Register and Occupancy Impact ---")
    for key, value in occupancy_rows(occupancy):
        print(f"  {key:<30} {value}")
    print(f"  {occupancy_verdict(occupancy)}")

    print("\n  --- Optimization Recommendations ---")
    for i, (title, detail) in enumerate(RECOMMENDATIONS, 1):
        print(f"\n  {i}. {title}")
        print(f"     {detail}")

    print("\n  --- Summary ---")
    for line in summary_findings(results, occupancy):
        print(f"  - {line}")
    print()


def display_benchmark_rich(rows: list, bench: BenchmarkInput, comparisons: Optional[list], console: Console):
    table = Table(box=box.ROUNDED, title="Execution Time (lower is better)")
    table.add_column("Operation", style="cyan")
    table.add_column("Time", justify="right", style="bold")
    table.add_column("vs Baseline", justify="right")
    for row in rows:
        style = "dim" if row.is_baseline else ""
        color = IMPACT_COLORS[classify_overhead(row.overhead_percent)]
        table.add_row(
            row.operation_name, format_us(row.elapsed_us),
            f"[{color}]{format_percent(row.overhead_percent, signed=True)}[/]", style=style,
        )
    console.print(table)

    if comparisons:
        console.print(Panel(
            "\n".join(footprint_items(comparisons, bench.reference_structure)),
            title="[bold]Memory Footprint Comparison[/]",
            border_style="blue",
        ))

    overhead = key_overhead(rows, bench.key_operation)
    if overhead is not None:
        verdict = classify_overhead(overhead)
        console.print(f"[bold {IMPACT_COLORS[verdict]}]{verdict} overhead: {format_percent(overhead)}[/]")


def display_benchmark_plain(rows: list, bench: BenchmarkInput, comparisons: Optional[list]):
    print("\n  --- Execution Time (us, lower is better) ---")
    for row in rows:
        print(f"  {row.operation_name:<30} {row.elapsed_us:>10.2f} us  "
              f"({format_percent(row.overhead_percent, signed=True)} vs baseline)")

    if comparisons:
        print("\n  --- Memory Footprint Comparison ---")
        for line in footprint_items(comparisons, bench.reference_structure):
            print(f"  {line}")

    overhead = key_overhead(rows, bench.key_operation)
    if overhead is not None:
        print(f"\n  {classify_overhead(overhead)} overhead: {format_percent(overhead)}")
    print()


# ═══════════════════════════════════════════════════════════════════
# RUNNERS
# ═══════════════════════════════════════════════════════════════════
def results_to_dict(settings: RunSettings, results: list, occupancy) -> dict:
    return {
        "bytes_per_point": settings.bytes_per_point,
        "configurations": [
            {
                "name": r.config_name,
                "total_points": r.total_points,
                "memory_mb": {
                    "geometry": round(r.geometry_mb, 2),
                    "state": round(r.state_mb, 2),
                    "aux": round(r.aux_mb, 2),
                    "temp": round(r.temp_mb, 2),
                    "total": round(r.total_mb, 2),
                },
                "geometry_share_percent": round(r.geometry_share_percent, 2),
                "bandwidth_multiplier": round(r.bandwidth_multiplier, 3),
                "bandwidth_impact": r.bandwidth_impact,
            }
            for r in results
        ],
        "occupancy": {
            "base_registers": occupancy.base_registers,
            "overhead_registers": occupancy.overhead_registers,
            "occupancy_without_percent": occupancy.occupancy_without,
            "occupancy_with_percent": occupancy.occupancy_with,
        },
    }


def export_results(data: dict, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    logger.info("Results exported to %s", path)


def run_analysis(
    settings: RunSettings,
    output: Optional[str] = DEFAULT_OUTPUT,
    export_path: Optional[str] = None,
    console: Optional[Console] = None,
):
    constants = settings.constants
    results = estimate_all(settings.configs, settings.bytes_per_point, constants)
    occupancy = estimate_occupancy(constants.base_registers, constants.overhead_registers, constants)

    if console:
        display_analysis_rich(settings, results, occupancy, console)
    else:
        display_analysis_plain(settings, results, occupancy)

    if output:
        doc = build_analysis_report(settings.configs, results, occupancy, settings.bytes_per_point, constants)
        doc.write(output)

    if export_path:
        export_results(results_to_dict(settings, results, occupancy), export_path)

    return results, occupancy


def run_benchmark_report(
    bench: BenchmarkInput,
    output: Optional[str] = DEFAULT_BENCHMARK_OUTPUT,
    console: Optional[Console] = None,
):
    rows = compute_overheads(bench.timings, bench.baseline)
    comparisons = None
    if bench.structures:
        reference = bench.reference_structure or bench.structures[0].name
        bench = replace(bench, reference_structure=reference)
        comparisons = compare_footprints(bench.structures, reference)

    if console:
        display_benchmark_rich(rows, bench, comparisons, console)
    else:
        display_benchmark_plain(rows, bench, comparisons)

    if output:
        doc = build_benchmark_report(rows, bench.key_operation, comparisons, bench.reference_structure or "")
        doc.write(output)
    return rows


# ═══════════════════════════════════════════════════════════════════
# INTERACTIVE MENU
# ═══════════════════════════════════════════════════════════════════
def interactive_menu() -> RunSettings:
    names = [cfg.name for cfg in CONFIG_PRESETS]
    selected = questionary.checkbox("Select configurations:", choices=names).ask()
    if not selected:
        sys.exit(0)

    footprint = questionary.select(
        "Geometry footprint:", choices=list(FOOTPRINT_PRESETS) + ["Custom"], default=DEFAULT_FOOTPRINT,
    ).ask()
    if footprint is None:
        sys.exit(0)
    if footprint == "Custom":
        raw = questionary.text(
            "Bytes per grid point:",
            validate=lambda s: s.replace(".", "", 1).isdigit() and float(s) > 0,
        ).ask()
        if raw is None:
            sys.exit(0)
        bytes_per_point = float(raw)
    else:
        bytes_per_point = FOOTPRINT_PRESETS[footprint]

    configs = [cfg for cfg in CONFIG_PRESETS if cfg.name in selected]
    return RunSettings(configs=configs, bytes_per_point=bytes_per_point)


# ═══════════════════════════════════════════════════════════════════
# CLI (argparse)
# ═══════════════════════════════════════════════════════════════════
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Geometry Impact Analysis - memory, bandwidth and occupancy overhead of per-point geometry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                          # Analyze the preset configurations
  %(prog)s --footprint "3D extruded"
  %(prog)s --bytes-per-point 180 --output results/lite.md
  %(prog)s --config configs.json --export results.json
  %(prog)s --timings timings.json --baseline baseline_simple
  %(prog)s --list-configs
""",
    )
    parser.add_argument("--config", type=str, help="JSON file with configurations (and optional constants)")
    parser.add_argument("--footprint", type=str, choices=list(FOOTPRINT_PRESETS), help="Geometry footprint preset")
    parser.add_argument("--bytes-per-point", type=float, help="Custom geometry bytes per grid point")
    parser.add_argument("--output", type=str, default=DEFAULT_OUTPUT, help="Markdown report path")
    parser.add_argument("--no-report", action="store_true", help="Do not write the Markdown report")
    parser.add_argument("--export", type=str, help="Export results to JSON file")
    parser.add_argument("--timings", type=str, help="JSON file with benchmark timings to report on")
    parser.add_argument("--baseline", type=str, help="Baseline operation name (default: first timing)")
    parser.add_argument("--benchmark-output", type=str, default=DEFAULT_BENCHMARK_OUTPUT,
                        help="Markdown path for the benchmark report")
    parser.add_argument("--list-configs", action="store_true", help="List preset configurations")
    parser.add_argument("--interactive", action="store_true", help="Pick configurations interactively")
    parser.add_argument("--plain", action="store_true", help="Plain text output instead of rich tables")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")
    return parser


def list_configs(console: Optional[Console] = None):
    if console:
        table = Table(box=box.ROUNDED, title="Preset Configurations")
        table.add_column("Config", style="cyan")
        table.add_column("Elements", justify="right")
        table.add_column("Quad/elem", justify="right")
        table.add_column("Levels", justify="right")
        table.add_column("Vars", justify="right")
        table.add_column("Description", style="dim")
        for cfg in CONFIG_PRESETS:
            table.add_row(cfg.name, str(cfg.h_elements), str(cfg.h_quads_per_elem), str(cfg.v_levels),
                          str(cfg.n_state_vars), cfg.description)
        console.print(table)
    else:
        print(f"\n{'Config':<28} {'Elem':>5} {'Quad':>5} {'Levels':>7} {'Vars':>5} Description")
        print("-" * 90)
        for cfg in CONFIG_PRESETS:
            print(f"{cfg.name:<28} {cfg.h_elements:>5} {cfg.h_quads_per_elem:>5} {cfg.v_levels:>7} "
                  f"{cfg.n_state_vars:>5} {cfg.description}")


def resolve_settings(args) -> RunSettings:
    if args.interactive:
        settings = interactive_menu()
    elif args.config:
        settings = load_configurations(args.config)
    else:
        settings = RunSettings()

    if args.footprint:
        settings = replace(settings, bytes_per_point=FOOTPRINT_PRESETS[args.footprint])
    if args.bytes_per_point is not None:
        settings = replace(settings, bytes_per_point=args.bytes_per_point)
    return settings


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    console = None if args.plain else Console()
    setup_logging(args.log_level)

    if args.list_configs:
        list_configs(console)
        return 0

    try:
        if args.timings:
            bench = load_timings(args.timings)
            if args.baseline:
                bench = replace(bench, baseline=args.baseline)
            run_benchmark_report(bench, output=args.benchmark_output, console=console)
        else:
            run_analysis(
                resolve_settings(args),
                output=None if args.no_report else args.output,
                export_path=args.export,
                console=console,
            )
    except (EstimatorError, ReportError, OSError) as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
