"""
Markdown report document and the builders that render estimation and
benchmark records into it.

A ReportDocument is an append-only list of Markdown fragments. It is written
exactly once; after that it no longer accepts fragments.
"""

import logging
import os
from typing import Optional, Sequence

from geometry_estimator import (
    ACTION_ITEMS,
    DEFAULT_CONSTANTS,
    RECOMMENDATIONS,
    SUMMARY_CONTENTS,
    EstimatorConstants,
    InvalidBenchmark,
    OccupancyEstimate,
    classify_overhead,
    format_mb,
    format_percent,
    format_points,
)

logger = logging.getLogger(__name__)


class ReportError(Exception):
    pass


class InvalidLevel(ReportError):
    pass


class ColumnMismatch(ReportError):
    pass


class DocumentClosed(ReportError):
    pass


class ReportDocument:
    def __init__(self):
        self.sections: list = []
        self.written_to: Optional[str] = None

    @property
    def is_written(self) -> bool:
        return self.written_to is not None

    def text(self) -> str:
        return "".join(self.sections)

    def _append(self, fragment: str) -> None:
        if self.is_written:
            raise DocumentClosed(f"document already written to {self.written_to}")
        self.sections.append(fragment)

    def append_section(self, title: str, level: int = 1) -> None:
        if level not in (1, 2, 3):
            raise InvalidLevel(f"heading level must be 1-3, got {level}")
        self._append(f"{'#' * level} {title}\n\n")

    def append_text(self, text: str) -> None:
        self._append(f"{text}\n\n")

    def append_table(self, headers: Sequence[str], rows: Sequence[Sequence]) -> None:
        headers = [str(h) for h in headers]
        cells = []
        for i, row in enumerate(rows):
            if len(row) != len(headers):
                raise ColumnMismatch(f"row {i} has {len(row)} columns, expected {len(headers)}")
            cells.append([str(c) for c in row])

        widths = [max([len(h)] + [len(r[col]) for r in cells]) for col, h in enumerate(headers)]

        def line(values):
            return "| " + " | ".join(v.ljust(w) for v, w in zip(values, widths)) + " |\n"

        separator = "|" + "|".join("-" * (w + 2) for w in widths) + "|\n"
        self._append(line(headers) + separator + "".join(line(r) for r in cells) + "\n")

    def append_bullet_list(self, items: Sequence[str]) -> None:
        self._append("".join(f"- {item}\n" for item in items) + "\n")

    def append_numbered_list(self, items: Sequence[str]) -> None:
        self._append("".join(f"{i}. {item}\n" for i, item in enumerate(items, 1)) + "\n")

    def write(self, path: str, create_dirs: bool = True) -> str:
        if self.is_written:
            raise DocumentClosed(f"document already written to {self.written_to}")

        parent = os.path.dirname(os.path.abspath(path))
        if create_dirs:
            os.makedirs(parent, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            f.write(self.text())

        self.written_to = path
        logger.info("Markdown report written to %s", path)
        return path


# ═══════════════════════════════════════════════════════════════════
# REPORT BUILDERS
# ═══════════════════════════════════════════════════════════════════
MEMORY_HEADERS = ["Config", "Geometry MB", "State MB", "Aux MB", "Temp MB", "Total MB", "Geometry Share"]
BANDWIDTH_HEADERS = ["Config", "Compute Intensity", "Bandwidth Impact"]
BENCHMARK_HEADERS = ["Operation", "Time (μs)", "Overhead vs Baseline"]


def memory_rows(results: list) -> list:
    return [
        [
            r.config_name,
            f"{r.geometry_mb:.2f}",
            f"{r.state_mb:.2f}",
            f"{r.aux_mb:.2f}",
            f"{r.temp_mb:.2f}",
            f"{r.total_mb:.2f}",
            format_percent(r.geometry_share_percent),
        ]
        for r in results
    ]


def bandwidth_rows(results: list) -> list:
    return [[r.config_name, f"{r.bandwidth_multiplier:.2f}x", r.bandwidth_impact] for r in results]


def occupancy_rows(occupancy: OccupancyEstimate) -> list:
    rows = [
        ["Base registers per thread", str(occupancy.base_registers)],
        ["Geometry access overhead", f"{occupancy.overhead_registers} registers"],
        ["Total with geometry", f"{occupancy.total_registers} registers"],
        ["Occupancy without geometry", f"~{occupancy.occupancy_without}%"],
        ["Occupancy with geometry", f"~{occupancy.occupancy_with}%"],
    ]
    if occupancy.occupancy_loss > 0:
        rows.append(["Potential occupancy loss", f"~{occupancy.occupancy_loss}%"])
    return rows


def occupancy_verdict(occupancy: OccupancyEstimate) -> str:
    if occupancy.occupancy_loss > 0:
        return "Register pressure may reduce parallelism and throughput."
    return "Register pressure manageable."


def config_details(config) -> list:
    return [
        f"Description: {config.description}",
        f"Cubed sphere: {format_points(config.horizontal_points)} horizontal points "
        f"({config.h_elements} elements x {config.h_quads_per_elem}^2)",
        f"Vertical: {config.v_levels} levels",
        f"Total grid points: {format_points(config.total_points)}",
        f"State variables: {config.n_state_vars}",
    ]


def recommendation_items() -> list:
    return [f"**{title}**: {detail}" for title, detail in RECOMMENDATIONS]


def build_analysis_report(
    configs: list,
    results: list,
    occupancy: OccupancyEstimate,
    bytes_per_point: float,
    constants: EstimatorConstants = DEFAULT_CONSTANTS,
    doc: Optional[ReportDocument] = None,
) -> ReportDocument:
    doc = doc if doc is not None else ReportDocument()

    doc.append_section("Geometry Impact Analysis", 1)
    doc.append_text(
        f"Geometry footprint: {bytes_per_point:g} bytes per grid point. "
        f"State variables stored as {constants.state_bytes_per_var}-byte floats, "
        f"{constants.n_aux_fields} auxiliary fields, temporary storage "
        f"{constants.temp_factor:g}x state."
    )

    doc.append_section("Configuration Details", 2)
    for cfg in configs:
        doc.append_section(cfg.name, 3)
        doc.append_bullet_list(config_details(cfg))

    doc.append_section("Memory Footprint Analysis", 2)
    doc.append_table(MEMORY_HEADERS, memory_rows(results))

    doc.append_section("Bandwidth and Computational Impact", 2)
    doc.append_table(BANDWIDTH_HEADERS, bandwidth_rows(results))

    doc.append_section("Register and Occupancy Impact", 2)
    doc.append_table(["Metric", "Value"], occupancy_rows(occupancy))
    doc.append_text(occupancy_verdict(occupancy))

    doc.append_section("Optimization Recommendations", 2)
    doc.append_numbered_list(recommendation_items())

    doc.append_section("Summary", 2)
    doc.append_text(f"The geometry structure carries {bytes_per_point:g} bytes per grid point:")
    doc.append_bullet_list(SUMMARY_CONTENTS)
    doc.append_text("Impact across the analyzed configurations:")
    doc.append_bullet_list(summary_findings(results, occupancy))
    doc.append_text("Action items:")
    doc.append_numbered_list(ACTION_ITEMS)
    return doc


def summary_findings(results: list, occupancy: OccupancyEstimate) -> list:
    if not results:
        return []
    shares = [r.geometry_share_percent for r in results]
    ratios = [r.bandwidth_multiplier for r in results]
    return [
        f"Memory footprint: {format_percent(min(shares))}-{format_percent(max(shares))} of total GPU memory",
        f"Bandwidth overhead: {min(ratios):.2f}-{max(ratios):.2f}x multiplier when accessed in physics kernels",
        f"Register pressure: ~{occupancy.overhead_registers} extra registers per thread",
        f"Occupancy: ~{occupancy.occupancy_without}% -> ~{occupancy.occupancy_with}% "
        f"(loss ~{max(occupancy.occupancy_loss, 0)}%)",
    ]


def benchmark_rows(rows: list) -> list:
    return [
        [
            row.operation_name.replace("_", " "),
            f"{row.elapsed_us:.2f}",
            format_percent(row.overhead_percent),
        ]
        for row in rows
    ]


def footprint_items(comparisons: list, reference_name: str) -> list:
    return [
        f"{c.structure.name}: {format_mb(c.structure.total_mb)} "
        f"({c.structure.bytes_per_point:g} bytes/point, {c.ratio_to_reference:.2f}x {reference_name})"
        for c in comparisons
    ]


OVERHEAD_VERDICTS = {
    "Significant": "**SIGNIFICANT OVERHEAD** - Refactoring recommended",
    "Moderate": "**MODERATE OVERHEAD** - Consider optimization strategies",
    "Minimal": "**MINIMAL OVERHEAD** - Current structure is reasonable",
}


def key_overhead(rows: list, key_operation: Optional[str]) -> Optional[float]:
    candidates = [r for r in rows if not r.is_baseline]
    if key_operation is not None:
        candidates = [r for r in rows if r.operation_name == key_operation]
        if not candidates:
            raise InvalidBenchmark(f"key operation '{key_operation}' not found")
    return candidates[0].overhead_percent if candidates else None


def build_benchmark_report(
    rows: list,
    key_operation: Optional[str] = None,
    comparisons: Optional[list] = None,
    reference_name: str = "",
    doc: Optional[ReportDocument] = None,
) -> ReportDocument:
    doc = doc if doc is not None else ReportDocument()

    doc.append_section("Geometry Performance Benchmark Results", 1)
    doc.append_section("Execution Time Results", 2)
    doc.append_table(BENCHMARK_HEADERS, benchmark_rows(rows))

    if comparisons:
        doc.append_section("Memory Footprint", 2)
        doc.append_bullet_list(footprint_items(comparisons, reference_name))

    overhead = key_overhead(rows, key_operation)
    if overhead is not None:
        doc.append_section("Key Finding", 2)
        name = key_operation or next(r.operation_name for r in rows if not r.is_baseline)
        doc.append_text(f"{name.replace('_', ' ')} overhead: {format_percent(overhead)}")
        doc.append_text(OVERHEAD_VERDICTS[classify_overhead(overhead)])
    return doc
