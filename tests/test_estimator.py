"""
Tests for the geometry impact estimation engine.
"""

import json

import pytest

from geometry_estimator import (
    CONFIG_PRESETS,
    DEFAULT_CONSTANTS,
    FOOTPRINT_PRESETS,
    BenchmarkTiming,
    ConfigFileError,
    Configuration,
    EstimatorConstants,
    InvalidBenchmark,
    InvalidConfiguration,
    StructureFootprint,
    classify_bandwidth,
    classify_overhead,
    compare_footprints,
    compute_overheads,
    constants_from_dict,
    estimate_all,
    estimate_bandwidth,
    estimate_config,
    estimate_memory,
    estimate_occupancy,
    format_mb,
    load_configurations,
    load_timings,
)

DEV = Configuration("Development", 30, 4, 63, 10, "Small test cases")


def test_development_scenario_point_counts():
    assert DEV.horizontal_points == 480
    assert DEV.total_points == 30240


def test_development_scenario_geometry_mb():
    mem = estimate_memory(DEV, 296)
    assert mem.geometry_mb == pytest.approx(30240 * 296 / 1024**2)
    assert round(mem.geometry_mb, 2) == 8.54
    assert mem.state_mb == pytest.approx(30240 * 10 * 8 / 1024**2)
    assert mem.aux_mb == pytest.approx(30240 * 8 * 8 / 1024**2)
    assert mem.temp_mb == pytest.approx(mem.state_mb * 3.0)


@pytest.mark.parametrize("config", CONFIG_PRESETS, ids=lambda c: c.name)
@pytest.mark.parametrize("footprint", sorted(FOOTPRINT_PRESETS.values()))
def test_memory_totals_and_share(config, footprint):
    mem = estimate_memory(config, footprint)
    assert mem.total_mb == mem.geometry_mb + mem.state_mb + mem.aux_mb + mem.temp_mb
    assert mem.geometry_share_percent == pytest.approx(100 * mem.geometry_mb / mem.total_mb)
    assert 0 <= mem.geometry_share_percent <= 100


@pytest.mark.parametrize("field_name", ["h_elements", "h_quads_per_elem", "v_levels", "n_state_vars"])
@pytest.mark.parametrize("value", [0, -3])
def test_non_positive_structure_is_rejected(field_name, value):
    kwargs = dict(name="bad", h_elements=30, h_quads_per_elem=4, v_levels=63, n_state_vars=10)
    kwargs[field_name] = value
    config = Configuration(**kwargs)
    with pytest.raises(InvalidConfiguration, match=field_name):
        estimate_memory(config, 296)
    with pytest.raises(InvalidConfiguration):
        estimate_bandwidth(config, 296)


@pytest.mark.parametrize("bytes_per_point", [0, -1.5, float("nan"), float("inf")])
def test_non_positive_footprint_is_rejected(bytes_per_point):
    with pytest.raises(InvalidConfiguration):
        estimate_memory(DEV, bytes_per_point)
    with pytest.raises(InvalidConfiguration):
        estimate_bandwidth(DEV, bytes_per_point)


def test_invalid_configuration_is_a_value_error():
    with pytest.raises(ValueError):
        estimate_config(Configuration("x", 0, 4, 63, 10), 296)


def test_bandwidth_ratio_development():
    bw = estimate_bandwidth(DEV, 296)
    assert bw.compute_intensity == pytest.approx((80 + 296 + 40) / 80)
    assert bw.compute_intensity == pytest.approx(5.2)
    assert bw.impact == "Significant"


def test_bandwidth_monotonic_in_footprint():
    config = Configuration("wide", 30, 4, 63, 100)
    ratios = [estimate_bandwidth(config, b).compute_intensity for b in (1, 8, 64, 160, 296, 500, 4096)]
    assert ratios == sorted(ratios)


@pytest.mark.parametrize(
    "ratio, expected",
    [
        (5.2, "Significant"),
        (1.51, "Significant"),
        (1.5, "Moderate"),
        (1.3, "Moderate"),
        (1.2, "Reasonable"),
        (1.0, "Reasonable"),
    ],
)
def test_bandwidth_classification_thresholds(ratio, expected):
    assert classify_bandwidth(ratio) == expected


def test_bandwidth_classification_for_large_state():
    config = Configuration("many vars", 30, 4, 63, 100)
    assert estimate_bandwidth(config, 8).impact == "Reasonable"
    assert estimate_bandwidth(config, 160).impact == "Moderate"
    assert estimate_bandwidth(config, 500).impact == "Significant"


def test_default_occupancy():
    occ = estimate_occupancy()
    assert occ.base_registers == 35
    assert occ.overhead_registers == 24
    assert occ.total_registers == 59
    assert (occ.occupancy_without, occ.occupancy_with) == (22, 13)
    assert occ.occupancy_loss == 9


@pytest.mark.parametrize(
    "base, overhead",
    [(0, 0), (1, 0), (0, 10000), (10000, 0), (10000, 10000), (-5, 2), (35, 24)],
)
def test_occupancy_is_clamped(base, overhead):
    occ = estimate_occupancy(base, overhead)
    assert 10 <= occ.occupancy_without <= 100
    assert 10 <= occ.occupancy_with <= 100


def test_occupancy_extremes():
    assert estimate_occupancy(0, 0).occupancy_without == 100
    assert estimate_occupancy(1, 0).occupancy_without == 100
    assert estimate_occupancy(10000, 0).occupancy_without == 10


def test_estimate_config_combines_estimates():
    result = estimate_config(DEV, 296)
    mem = estimate_memory(DEV, 296)
    assert result.config_name == "Development"
    assert result.total_points == 30240
    assert result.total_mb == mem.total_mb
    assert result.bandwidth_multiplier == pytest.approx(5.2)
    assert result.bandwidth_impact == "Significant"
    assert result.register_overhead == 24
    assert (result.occupancy_without, result.occupancy_with) == (22, 13)


def test_estimate_all_preserves_order():
    results = estimate_all(CONFIG_PRESETS, 296)
    assert [r.config_name for r in results] == [c.name for c in CONFIG_PRESETS]


def test_constants_change_estimates():
    constants = EstimatorConstants(state_bytes_per_var=4, temp_factor=2.0)
    mem = estimate_memory(DEV, 296, constants)
    assert mem.state_mb == pytest.approx(30240 * 10 * 4 / 1024**2)
    assert mem.temp_mb == pytest.approx(mem.state_mb * 2.0)
    assert DEFAULT_CONSTANTS.state_bytes_per_var == 8


def test_compute_overheads_against_named_baseline():
    timings = [
        BenchmarkTiming("full_geometry", 15.0),
        BenchmarkTiming("baseline_simple", 12.0),
        BenchmarkTiming("extracted_j", 11.4),
    ]
    rows = compute_overheads(timings, "baseline_simple")
    assert [r.operation_name for r in rows] == ["full_geometry", "baseline_simple", "extracted_j"]
    assert rows[0].overhead_percent == pytest.approx(25.0)
    assert rows[1].overhead_percent == 0.0
    assert rows[1].is_baseline
    assert rows[2].overhead_percent == pytest.approx(-5.0)


def test_compute_overheads_defaults_to_first_timing():
    rows = compute_overheads([BenchmarkTiming("a", 10.0), BenchmarkTiming("b", 12.0)])
    assert rows[0].is_baseline
    assert rows[1].overhead_percent == pytest.approx(20.0)


@pytest.mark.parametrize(
    "timings, baseline",
    [
        ([], None),
        ([BenchmarkTiming("a", 1.0)], "missing"),
        ([BenchmarkTiming("a", 0.0), BenchmarkTiming("b", 1.0)], None),
    ],
)
def test_compute_overheads_errors(timings, baseline):
    with pytest.raises(InvalidBenchmark):
        compute_overheads(timings, baseline)


@pytest.mark.parametrize(
    "pct, expected",
    [(25.0, "Significant"), (10.01, "Significant"), (10.0, "Moderate"), (3.5, "Moderate"), (3.0, "Minimal"), (-4.0, "Minimal")],
)
def test_overhead_classification(pct, expected):
    assert classify_overhead(pct) == expected


def test_compare_footprints():
    structures = [
        StructureFootprint("Scalar field", 1474560, 184320),
        StructureFootprint("Full geometry", 54558720, 184320),
    ]
    comparisons = compare_footprints(structures, "Scalar field")
    assert comparisons[0].ratio_to_reference == 1.0
    assert comparisons[1].ratio_to_reference == pytest.approx(37.0)
    assert comparisons[1].structure.bytes_per_point == 296
    with pytest.raises(InvalidBenchmark):
        compare_footprints(structures, "Nope")
    with pytest.raises(InvalidBenchmark):
        compare_footprints([StructureFootprint("empty", 0, 0)], "empty")


def test_format_mb():
    assert format_mb(8.5363) == "8.54 MB"
    assert format_mb(2048) == "2.00 GB"


def test_load_configurations(tmp_path):
    path = tmp_path / "configs.json"
    path.write_text(json.dumps({
        "bytes_per_point": 500,
        "constants": {"base_registers": 40},
        "configurations": [
            {"name": "Dev", "h_elements": 30, "h_quads_per_elem": 4, "v_levels": 63, "n_state_vars": 10},
        ],
    }))
    settings = load_configurations(str(path))
    assert settings.bytes_per_point == 500
    assert settings.constants.base_registers == 40
    assert settings.constants.overhead_registers == 24
    assert settings.configs == [Configuration("Dev", 30, 4, 63, 10, "")]


def test_load_configurations_accepts_plain_list(tmp_path):
    path = tmp_path / "configs.json"
    path.write_text(json.dumps([
        {"name": "A", "h_elements": 1, "h_quads_per_elem": 2, "v_levels": 3, "n_state_vars": 4, "description": "d"},
    ]))
    settings = load_configurations(str(path))
    assert settings.configs[0].description == "d"
    assert settings.bytes_per_point == 296


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        json.dumps({"something": []}),
        json.dumps({"configurations": []}),
        json.dumps([{"name": "missing fields"}]),
        json.dumps({"configurations": [{"name": "A", "h_elements": 1, "h_quads_per_elem": 2, "v_levels": 3,
                                        "n_state_vars": 4}], "constants": {"bogus": 1}}),

        json.dumps({"configurations": [{"name": "A", "h_elements": 1, "h_quads_per_elem": 2, "v_levels": 3,
                                        "n_state_vars": 4}], "bytes_per_point": "abc"}),
    ],
)
def test_load_configurations_errors(tmp_path, content):
    path = tmp_path / "configs.json"
    path.write_text(content)
    with pytest.raises(ConfigFileError):
        load_configurations(str(path))


def test_load_timings_list_and_mapping(tmp_path):
    listed = tmp_path / "listed.json"
    listed.write_text(json.dumps({
        "baseline": "base",
        "timings": [{"operation": "base", "elapsed_us": 10}, {"operation": "geom", "elapsed_us": 12.5}],
        "structures": {"Scalar": {"bytes": 800, "points": 100}},
        "reference_structure": "Scalar",
    }))
    bench = load_timings(str(listed))
    assert bench.baseline == "base"
    assert bench.timings == [BenchmarkTiming("base", 10.0), BenchmarkTiming("geom", 12.5)]
    assert bench.structures == [StructureFootprint("Scalar", 800, 100)]

    mapped = tmp_path / "mapped.json"
    mapped.write_text(json.dumps({"timings": {"base": 10, "geom": 11}}))
    assert [t.operation_name for t in load_timings(str(mapped)).timings] == ["base", "geom"]


def test_load_timings_errors(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"timings": [{"operation": "a"}]}))
    with pytest.raises(ConfigFileError):
        load_timings(str(path))
    path.write_text(json.dumps([1, 2, 3]))
    with pytest.raises(ConfigFileError):
        load_timings(str(path))


@pytest.mark.parametrize(
    "constants",
    [
        {"warps_per_sm": 0},
        {"threads_per_warp": -32},
        {"registers_per_thread_budget": 2.5},
        {"state_bytes_per_var": "8"},
        {"temp_factor": -1.0},
        {"significant_bandwidth": True},
    ],
)
def test_load_configurations_rejects_bad_constants(tmp_path, constants):
    path = tmp_path / "configs.json"
    path.write_text(json.dumps({
        "constants": constants,
        "configurations": [
            {"name": "Dev", "h_elements": 30, "h_quads_per_elem": 4, "v_levels": 63, "n_state_vars": 10},
        ],
    }))
    with pytest.raises(ConfigFileError):
        load_configurations(str(path))


def test_constants_from_dict_coerces_whole_floats():
    constants = constants_from_dict({"warps_per_sm": 64.0, "temp_factor": 2})
    assert constants.warps_per_sm == 64
    assert isinstance(constants.warps_per_sm, int)
    assert constants.temp_factor == 2


def test_load_configurations_rejects_non_finite_footprint(tmp_path):
    path = tmp_path / "configs.json"
    path.write_text('{"bytes_per_point": NaN, "configurations": '
                    '[{"name": "A", "h_elements": 1, "h_quads_per_elem": 2, "v_levels": 3, "n_state_vars": 4}]}')
    with pytest.raises(ConfigFileError):
        load_configurations(str(path))


def test_non_utf8_input_is_a_config_error(tmp_path):
    path = tmp_path / "latin1.json"
    path.write_bytes(b'{"timings": {"caf\xe9": 10}}')
    with pytest.raises(ConfigFileError):
        load_timings(str(path))
    with pytest.raises(ConfigFileError):
        load_configurations(str(path))


def test_structures_must_be_a_mapping(tmp_path):
    path = tmp_path / "bench.json"
    path.write_text(json.dumps({"timings": {"base": 10}, "structures": [["Scalar", 800, 100]]}))
    with pytest.raises(ConfigFileError):
        load_timings(str(path))
