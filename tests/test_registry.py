from __future__ import annotations

import json

import pytest

from vi_decay.config import DECAY_WEIGHTS, INDEX_BANDS, MAX_YEAR, MIN_YEAR, YEAR_SENSOR
from vi_decay.errors import ConfigurationError, UnmappedYear
from vi_decay.registry import (
    BandSet,
    DecayWeights,
    RunConfig,
    YearSensorRegistry,
    load_run_config,
    parse_years,
)


def test_default_weights_are_valid() -> None:
    weights = DecayWeights()
    assert len(weights) == 7
    assert abs(weights.total - 1.0) <= 1e-3
    assert all(weights[i] >= weights[i + 1] for i in range(6))
    assert weights.values == DECAY_WEIGHTS


def test_weights_must_sum_to_one() -> None:
    with pytest.raises(ConfigurationError, match="sum"):
        DecayWeights((0.5, 0.3, 0.1), lags=3)


def test_weights_must_not_increase() -> None:
    with pytest.raises(ConfigurationError, match="increase"):
        DecayWeights((0.3, 0.5, 0.2), lags=3)


def test_weights_length_is_checked() -> None:
    with pytest.raises(ConfigurationError, match="Expected 7"):
        DecayWeights((0.5, 0.3, 0.2))


def test_weights_reject_negative_values() -> None:
    with pytest.raises(ConfigurationError, match="non-negative"):
        DecayWeights((1.1, -0.1), lags=2)


def test_registry_lookup_and_unmapped_year() -> None:
    registry = YearSensorRegistry(YEAR_SENSOR)
    assert registry.sensor_for(1985) == "l5"
    assert registry.sensor_for(2001) == "l7"
    assert registry.sensor_for(2013) == "l8"
    assert registry.sensors == ("l5", "l7", "l8")

    with pytest.raises(UnmappedYear) as exc:
        registry.sensor_for(1984)
    assert exc.value.year == 1984


def test_registry_is_read_only() -> None:
    table = {2000: "l5"}
    registry = YearSensorRegistry(table)
    table[2001] = "l7"
    assert 2001 not in registry
    with pytest.raises(TypeError):
        registry._table[2002] = "l8"  # type: ignore[index]


def test_registry_covers_reports_first_gap() -> None:
    registry = YearSensorRegistry({2000: "l5", 2002: "l7"})
    with pytest.raises(UnmappedYear) as exc:
        registry.covers(2000, 2002)
    assert exc.value.year == 2001


def test_default_bands_are_index_by_season() -> None:
    bands = BandSet()
    assert len(bands) == 9
    assert bands.names == INDEX_BANDS
    assert bands.names[:3] == ("ndvi_median", "ndvi_median_wet", "ndvi_median_dry")
    assert bands.output_name("savi_median_dry") == "mb_savi_median_dry"


def test_bandset_rejects_duplicates() -> None:
    with pytest.raises(ConfigurationError):
        BandSet(("ndvi_median", "ndvi_median"))


def test_default_run_config_covers_record() -> None:
    config = RunConfig()
    config.validate()
    assert config.years[0] == MIN_YEAR
    assert config.years[-1] == MAX_YEAR
    assert len(config.years) == 39


def test_parse_years_ranges_and_lists() -> None:
    assert parse_years("1985-1987,2000", 1985, 2023) == [1985, 1986, 1987, 2000]
    assert parse_years("2001, 2001", 1985, 2023) == [2001]
    with pytest.raises(ConfigurationError):
        parse_years("1980-1986", 1985, 2023)


def test_load_run_config_overrides(tmp_path) -> None:
    path = tmp_path / "run.json"
    path.write_text(json.dumps({
        "min_year": 2000,
        "max_year": 2002,
        "year_sensor": {"2000": "l5", "2001": "l7", "2002": "l7"},
        "decay_weights": [0.5, 0.3, 0.2],
        "bands": ["ndvi_median", "evi2_median"],
    }))
    config = load_run_config(str(path))
    assert config.years == (2000, 2001, 2002)
    assert config.registry.sensor_for(2001) == "l7"
    assert config.weights.values == (0.5, 0.3, 0.2)
    assert config.bands.names == ("ndvi_median", "evi2_median")


def test_load_run_config_defaults_without_file() -> None:
    config = load_run_config(None)
    assert config.weights.values == DECAY_WEIGHTS
    assert len(config.bands) == 9
