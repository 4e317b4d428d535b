#!/usr/bin/env python3
"""
Geometry Impact Estimator
Estimate the GPU memory, bandwidth and register/occupancy overhead that a
per-point geometry structure (coordinates, Jacobians, metric tensors) adds to
an atmospheric model, and turn externally measured kernel timings into
overhead figures.

Everything in this module is pure arithmetic: no I/O besides the JSON loaders
at the bottom.
"""

import json
import logging
import math
from dataclasses import dataclass, field, fields, replace
from typing import Optional

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024**2


# ═══════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════
class EstimatorError(ValueError):
    pass


class InvalidConfiguration(EstimatorError):
    pass


class InvalidBenchmark(EstimatorError):
    pass


class ConfigFileError(EstimatorError):
    pass


# ═══════════════════════════════════════════════════════════════════
# CONSTANTS & PRESETS
# ═══════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class EstimatorConstants:
    state_bytes_per_var: int = 8  # Float64
    n_aux_fields: int = 8  # pressure, temperature, density, humidity, ...
    temp_factor: float = 3.0  # RHS evaluation + time stepping scratch
    n_bandwidth_aux_fields: int = 5  # aux fields read by a typical physics kernel
    base_registers: int = 35
    overhead_registers: int = 24  # coordinates + J/WJ/invJ + metric terms
    warps_per_sm: int = 128
    threads_per_warp: int = 32
    registers_per_thread_budget: int = 256
    significant_bandwidth: float = 1.5
    moderate_bandwidth: float = 1.2


DEFAULT_CONSTANTS = EstimatorConstants()

# Measured geometry size per grid point, in bytes
FOOTPRINT_PRESETS = {
    "2D spectral element": 296,  # cubed sphere horizontal space
    "3D extruded": 500,  # full 3D transformations (estimate)
}
DEFAULT_FOOTPRINT = "2D spectral element"

SIGNIFICANT_OVERHEAD_PCT = 10.0
MODERATE_OVERHEAD_PCT = 3.0


@dataclass(frozen=True)
class Configuration:
    name: str
    h_elements: int
    h_quads_per_elem: int
    v_levels: int
    n_state_vars: int
    description: str = ""

    @property
    def horizontal_points(self) -> int:
        return self.h_elements * self.h_quads_per_elem**2

    @property
    def total_points(self) -> int:
        return self.horizontal_points * self.v_levels


CONFIG_PRESETS = [
    Configuration("Development (testing)", 30, 4, 63, 10, "Small test cases, quick iteration"),
    Configuration("Operational (low-res)", 60, 4, 85, 12, "Regional simulations, standard operational"),
    Configuration("Operational (medium-res)", 120, 4, 137, 15, "Higher resolution research simulations"),
    Configuration("Research (high-res)", 250, 4, 137, 15, "Cloud-resolving models, high-resolution studies"),
]

RECOMMENDATIONS = [
    ("Extract geometry components at kernel entry",
     "Instead of passing the full geometry structure to inner loops, extract J, WJ "
     "and coordinate-dependent values once at the top of the kernel."),
    ("Use lite geometry structs for physics kernels",
     "Create a minimal geometry type with only J and WJ for kernels that do not "
     "need metric tensor components."),
    ("Cache in shared memory",
     "For blocks processing multiple grid points, load the geometry into shared "
     "memory once and reuse it across threads."),
    ("Reduced precision for geometry",
     "Consider Float32 geometry components in non-critical kernels where full "
     "precision is not needed."),
    ("Lazy evaluation",
     "Compute metric tensors on the fly rather than storing them, if the compute "
     "cost is cheaper than the memory bandwidth."),
    ("Kernel fusion",
     "Combine multiple physics kernels to reduce geometry reloads."),
    ("Profile specific kernels",
     "Use NVIDIA Nsight Systems or a roofline model to measure the actual impact "
     "on your specific kernels and models."),
]

SUMMARY_CONTENTS = [
    "Coordinates, Jacobian determinants, weighted Jacobians",
    "Metric tensor components (∂x∂ξ, ∂ξ∂x, covariant and contravariant metrics)",
]

ACTION_ITEMS = [
    "Run your physics kernels through NVIDIA Profiler",
    "Measure actual geometry impact on the FLOPs/bandwidth ratio",
    "Consider reduced geometry types for non-geometric kernels",
    "Profile memory access patterns during time stepping",
    "Compare with/without geometry access in realistic cases",
]


# ═══════════════════════════════════════════════════════════════════
# UTILITY FUNCTIONS
# ═══════════════════════════════════════════════════════════════════
def format_mb(mb: float) -> str:
    if mb >= 1024:
        return f"{mb / 1024:.2f} GB"
    return f"{mb:.2f} MB"


def format_percent(pct: float, digits: int = 1, signed: bool = False) -> str:
    if signed:
        return f"{pct:+.{digits}f}%"
    return f"{pct:.{digits}f}%"


def format_us(us: float) -> str:
    return f"{us:.2f} μs"


def format_points(n: int) -> str:
    return f"{n:,}"


# ═══════════════════════════════════════════════════════════════════
# CORE ESTIMATION ENGINE
# ═══════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class MemoryEstimate:
    geometry_mb: float = 0.0
    state_mb: float = 0.0
    aux_mb: float = 0.0
    temp_mb: float = 0.0
    total_mb: float = 0.0
    geometry_share_percent: float = 0.0


@dataclass(frozen=True)
class BandwidthEstimate:
    compute_intensity: float = 1.0
    impact: str = "Reasonable"


@dataclass(frozen=True)
class OccupancyEstimate:
    base_registers: int = 0
    overhead_registers: int = 0
    occupancy_without: int = 100
    occupancy_with: int = 100

    @property
    def total_registers(self) -> int:
        return self.base_registers + self.overhead_registers

    @property
    def occupancy_loss(self) -> int:
        return self.occupancy_without - self.occupancy_with


@dataclass(frozen=True)
class EstimateResult:
    config_name: str = ""
    total_points: int = 0
    geometry_mb: float = 0.0
    state_mb: float = 0.0
    aux_mb: float = 0.0
    temp_mb: float = 0.0
    total_mb: float = 0.0
    geometry_share_percent: float = 0.0
    bandwidth_multiplier: float = 1.0
    bandwidth_impact: str = "Reasonable"
    register_overhead: int = 0
    occupancy_without: int = 100
    occupancy_with: int = 100


def validate_configuration(config: Configuration, bytes_per_point: Optional[float] = None) -> None:
    for name in ("h_elements", "h_quads_per_elem", "v_levels", "n_state_vars"):
        value = getattr(config, name)
        if value <= 0:
            raise InvalidConfiguration(f"{config.name}: {name} must be positive, got {value}")
    if bytes_per_point is not None and not (math.isfinite(bytes_per_point) and bytes_per_point > 0):
        raise InvalidConfiguration(f"bytes per geometry point must be positive and finite, got {bytes_per_point}")


def estimate_memory(
    config: Configuration,
    bytes_per_point: float,
    constants: EstimatorConstants = DEFAULT_CONSTANTS,
) -> MemoryEstimate:
    validate_configuration(config, bytes_per_point)
    total_pts = config.total_points

    geometry_mb = (total_pts * bytes_per_point) / BYTES_PER_MB
    state_mb = (total_pts * config.n_state_vars * constants.state_bytes_per_var) / BYTES_PER_MB
    aux_mb = (total_pts * constants.n_aux_fields * constants.state_bytes_per_var) / BYTES_PER_MB
    temp_mb = state_mb * constants.temp_factor

    total_mb = geometry_mb + state_mb + aux_mb + temp_mb

    return MemoryEstimate(
        geometry_mb=geometry_mb,
        state_mb=state_mb,
        aux_mb=aux_mb,
        temp_mb=temp_mb,
        total_mb=total_mb,
        geometry_share_percent=100 * geometry_mb / total_mb,
    )


def classify_bandwidth(ratio: float, constants: EstimatorConstants = DEFAULT_CONSTANTS) -> str:
    if ratio > constants.significant_bandwidth:
        return "Significant"
    if ratio > constants.moderate_bandwidth:
        return "Moderate"
    return "Reasonable"


def estimate_bandwidth(
    config: Configuration,
    bytes_per_point: float,
    constants: EstimatorConstants = DEFAULT_CONSTANTS,
) -> BandwidthEstimate:
    validate_configuration(config, bytes_per_point)

    # Per-point reads of a typical kernel: full state, geometry, key aux fields
    bytes_per_state_point = config.n_state_vars * constants.state_bytes_per_var
    bytes_per_aux = constants.n_bandwidth_aux_fields * constants.state_bytes_per_var
    total_bytes_read = bytes_per_state_point + bytes_per_point + bytes_per_aux

    ratio = total_bytes_read / bytes_per_state_point
    return BandwidthEstimate(compute_intensity=ratio, impact=classify_bandwidth(ratio, constants))


def _occupancy_percent(regs_per_thread: int, constants: EstimatorConstants) -> int:
    max_resident = constants.warps_per_sm * constants.threads_per_warp
    if regs_per_thread <= 0:
        return 100
    register_file = max_resident * constants.registers_per_thread_budget
    max_threads = register_file // (regs_per_thread * constants.threads_per_warp)
    return min(100, max(10, (max_threads * 100) // max_resident))


def estimate_occupancy(
    base_registers: int = DEFAULT_CONSTANTS.base_registers,
    overhead_registers: int = DEFAULT_CONSTANTS.overhead_registers,
    constants: EstimatorConstants = DEFAULT_CONSTANTS,
) -> OccupancyEstimate:
    """Rough A100-style occupancy with and without the geometry register overhead.

    Both figures are clamped to [10, 100]; non-positive register counts are
    treated as unconstrained.
    """
    return OccupancyEstimate(
        base_registers=base_registers,
        overhead_registers=overhead_registers,
        occupancy_without=_occupancy_percent(base_registers, constants),
        occupancy_with=_occupancy_percent(base_registers + overhead_registers, constants),
    )


def estimate_config(
    config: Configuration,
    bytes_per_point: float,
    constants: EstimatorConstants = DEFAULT_CONSTANTS,
) -> EstimateResult:
    memory = estimate_memory(config, bytes_per_point, constants)
    bandwidth = estimate_bandwidth(config, bytes_per_point, constants)
    occupancy = estimate_occupancy(constants.base_registers, constants.overhead_registers, constants)
    logger.debug(
        "%s: %d points, %.2f MB total, intensity %.2fx",
        config.name, config.total_points, memory.total_mb, bandwidth.compute_intensity,
    )

    return EstimateResult(
        config_name=config.name,
        total_points=config.total_points,
        geometry_mb=memory.geometry_mb,
        state_mb=memory.state_mb,
        aux_mb=memory.aux_mb,
        temp_mb=memory.temp_mb,
        total_mb=memory.total_mb,
        geometry_share_percent=memory.geometry_share_percent,
        bandwidth_multiplier=bandwidth.compute_intensity,
        bandwidth_impact=bandwidth.impact,
        register_overhead=occupancy.overhead_registers,
        occupancy_without=occupancy.occupancy_without,
        occupancy_with=occupancy.occupancy_with,
    )


def estimate_all(
    configs: list,
    bytes_per_point: float,
    constants: EstimatorConstants = DEFAULT_CONSTANTS,
) -> list:
    return [estimate_config(cfg, bytes_per_point, constants) for cfg in configs]


# ═══════════════════════════════════════════════════════════════════
# BENCHMARK ANALYSIS
# ═══════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class BenchmarkTiming:
    operation_name: str
    elapsed_us: float


@dataclass(frozen=True)
class OverheadRow:
    operation_name: str
    elapsed_us: float
    overhead_percent: float
    is_baseline: bool = False


@dataclass(frozen=True)
class StructureFootprint:
    name: str
    total_bytes: int
    n_points: int

    @property
    def bytes_per_point(self) -> float:
        return self.total_bytes / self.n_points if self.n_points > 0 else 0.0

    @property
    def total_mb(self) -> float:
        return self.total_bytes / BYTES_PER_MB


@dataclass(frozen=True)
class FootprintComparison:
    structure: StructureFootprint
    ratio_to_reference: float


def compute_overheads(timings: list, baseline_name: Optional[str] = None) -> list:
    if not timings:
        raise InvalidBenchmark("no timings to analyze")

    if baseline_name is None:
        baseline = timings[0]
    else:
        matches = [t for t in timings if t.operation_name == baseline_name]
        if not matches:
            raise InvalidBenchmark(f"baseline operation '{baseline_name}' not found")
        baseline = matches[0]

    if baseline.elapsed_us <= 0:
        raise InvalidBenchmark(f"baseline time must be positive, got {baseline.elapsed_us}")

    base = baseline.elapsed_us
    return [
        OverheadRow(
            operation_name=t.operation_name,
            elapsed_us=t.elapsed_us,
            overhead_percent=100 * (t.elapsed_us - base) / base,
            is_baseline=t is baseline,
        )
        for t in timings
    ]


def classify_overhead(overhead_pct: float) -> str:
    if overhead_pct > SIGNIFICANT_OVERHEAD_PCT:
        return "Significant"
    if overhead_pct > MODERATE_OVERHEAD_PCT:
        return "Moderate"
    return "Minimal"


def compare_footprints(structures: list, reference_name: str) -> list:
    reference = next((s for s in structures if s.name == reference_name), None)
    if reference is None:
        raise InvalidBenchmark(f"reference structure '{reference_name}' not found")
    if reference.total_bytes <= 0:
        raise InvalidBenchmark(f"reference structure '{reference_name}' has no data")
    return [FootprintComparison(s, s.total_bytes / reference.total_bytes) for s in structures]


# ═══════════════════════════════════════════════════════════════════
# CONFIGURATION FILES
# ═══════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class RunSettings:
    configs: list = field(default_factory=lambda: list(CONFIG_PRESETS))
    bytes_per_point: float = FOOTPRINT_PRESETS[DEFAULT_FOOTPRINT]
    constants: EstimatorConstants = DEFAULT_CONSTANTS


@dataclass(frozen=True)
class BenchmarkInput:
    timings: list
    baseline: Optional[str] = None
    key_operation: Optional[str] = None
    structures: list = field(default_factory=list)
    reference_structure: Optional[str] = None


def _read_json(path: str):
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConfigFileError(f"{path}: invalid JSON ({exc})") from exc


def configuration_from_dict(data: dict) -> Configuration:
    try:
        return Configuration(
            name=str(data["name"]),
            h_elements=int(data["h_elements"]),
            h_quads_per_elem=int(data["h_quads_per_elem"]),
            v_levels=int(data["v_levels"]),
            n_state_vars=int(data["n_state_vars"]),
            description=str(data.get("description", "")),
        )
    except KeyError as exc:
        raise ConfigFileError(f"configuration entry is missing {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise ConfigFileError(f"bad configuration entry {data!r}: {exc}") from exc


# Divisors or multiplicands of the occupancy and footprint formulas
POSITIVE_COUNT_CONSTANTS = {
    "state_bytes_per_var", "warps_per_sm", "threads_per_warp", "registers_per_thread_budget",
}
INTEGER_CONSTANTS = POSITIVE_COUNT_CONSTANTS | {
    "n_aux_fields", "n_bandwidth_aux_fields", "base_registers", "overhead_registers",
}


def constants_from_dict(data: dict, base: EstimatorConstants = DEFAULT_CONSTANTS) -> EstimatorConstants:
    if not isinstance(data, dict):
        raise ConfigFileError(f"constants must be an object, got {data!r}")
    known = {f.name for f in fields(EstimatorConstants)}
    unknown = set(data) - known
    if unknown:
        raise ConfigFileError(f"unknown constants: {', '.join(sorted(unknown))}")

    for name, value in data.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigFileError(f"constant {name} must be a number, got {value!r}")
        if not math.isfinite(value):
            raise ConfigFileError(f"constant {name} must be finite, got {value}")
        if name in POSITIVE_COUNT_CONSTANTS and (not float(value).is_integer() or value <= 0):
            raise ConfigFileError(f"constant {name} must be a positive integer, got {value}")
        if name not in POSITIVE_COUNT_CONSTANTS and value < 0:
            raise ConfigFileError(f"constant {name} must not be negative, got {value}")
    coerced = {k: int(v) if k in INTEGER_CONSTANTS else v for k, v in data.items()}
    return replace(base, **coerced)


def load_configurations(path: str) -> RunSettings:
    data = _read_json(path)
    if isinstance(data, list):
        data = {"configurations": data}
    if not isinstance(data, dict) or "configurations" not in data:
        raise ConfigFileError(f"{path}: expected a list or an object with 'configurations'")

    configs = [configuration_from_dict(entry) for entry in data["configurations"]]
    if not configs:
        raise ConfigFileError(f"{path}: no configurations defined")

    settings = RunSettings(configs=configs)
    if "bytes_per_point" in data:
        try:
            bytes_per_point = float(data["bytes_per_point"])
        except (TypeError, ValueError) as exc:
            raise ConfigFileError(f"{path}: bytes_per_point must be a number ({exc})") from exc
        if not (math.isfinite(bytes_per_point) and bytes_per_point > 0):
            raise ConfigFileError(f"{path}: bytes_per_point must be positive and finite, got {bytes_per_point}")
        settings = replace(settings, bytes_per_point=bytes_per_point)
    if "constants" in data:
        settings = replace(settings, constants=constants_from_dict(data["constants"]))
    logger.info("Loaded %d configuration(s) from %s", len(configs), path)
    return settings


def load_timings(path: str) -> BenchmarkInput:
    data = _read_json(path)
    if not isinstance(data, dict) or "timings" not in data:
        raise ConfigFileError(f"{path}: expected an object with 'timings'")

    raw = data["timings"]
    try:
        if isinstance(raw, dict):
            timings = [BenchmarkTiming(name, float(us)) for name, us in raw.items()]
        else:
            timings = [BenchmarkTiming(str(t["operation"]), float(t["elapsed_us"])) for t in raw]
        structures = [
            StructureFootprint(name, int(s["bytes"]), int(s["points"]))
            for name, s in data.get("structures", {}).items()
        ]
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise ConfigFileError(f"{path}: malformed benchmark data ({exc})") from exc

    if any(not math.isfinite(t.elapsed_us) for t in timings):
        raise ConfigFileError(f"{path}: timings must be finite")

    return BenchmarkInput(
        timings=timings,
        baseline=data.get("baseline"),
        key_operation=data.get("key_operation"),
        structures=structures,
        reference_structure=data.get("reference_structure"),
    )
