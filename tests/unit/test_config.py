"""Tests for run configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from powertest.config import (
    DEFAULT_RECEIVE_TIMEOUT,
    DEFAULT_SAMPLES_PER_SECOND,
    DEFAULT_VOLTAGE_MV,
    RunConfig,
    build_run_config,
    load_config_file,
    parse_mode,
)
from powertest.errors import ConfigError
from powertest.types import MeasurementMode


class TestParseMode:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("source", MeasurementMode.SOURCE),
            ("SOURCE", MeasurementMode.SOURCE),
            ("ampere", MeasurementMode.AMPERE),
            ("ampere-meter", MeasurementMode.AMPERE),
            ("ampere_meter", MeasurementMode.AMPERE),
        ],
    )
    def test_names(self, name: str, expected: MeasurementMode) -> None:
        assert parse_mode(name) is expected

    def test_enum_passthrough(self) -> None:
        assert parse_mode(MeasurementMode.AMPERE) is MeasurementMode.AMPERE

    def test_unknown(self) -> None:
        with pytest.raises(ConfigError, match="Unknown mode"):
            parse_mode("battery")


class TestRunConfig:
    """Tests for RunConfig validation."""

    def test_defaults(self) -> None:
        config = RunConfig(binary=Path("fw.elf"), chip="nrf52840")
        assert config.num_tests is None
        assert config.serial_port is None
        assert config.voltage_mv == DEFAULT_VOLTAGE_MV
        assert config.mode is MeasurementMode.SOURCE
        assert config.log_level == "info"
        assert config.samples_per_second == DEFAULT_SAMPLES_PER_SECOND
        assert config.receive_timeout == DEFAULT_RECEIVE_TIMEOUT
        assert config.probe is None

    def test_frozen(self) -> None:
        config = RunConfig(binary=Path("fw.elf"), chip="nrf52840")
        with pytest.raises(AttributeError):
            config.chip = "other"  # type: ignore[misc]

    def test_missing_chip(self) -> None:
        with pytest.raises(ConfigError, match="chip"):
            RunConfig(binary=Path("fw.elf"), chip="")

    @pytest.mark.parametrize("voltage", [799, 5001])
    def test_voltage_range(self, voltage: int) -> None:
        with pytest.raises(ConfigError, match="voltage_mv"):
            RunConfig(binary=Path("fw.elf"), chip="nrf52840", voltage_mv=voltage)

    def test_negative_num_tests(self) -> None:
        with pytest.raises(ConfigError, match="num_tests"):
            RunConfig(binary=Path("fw.elf"), chip="nrf52840", num_tests=-1)

    def test_zero_num_tests_allowed(self) -> None:
        assert RunConfig(binary=Path("fw.elf"), chip="nrf52840", num_tests=0).num_tests == 0

    @pytest.mark.parametrize("rate", [0, 100_001])
    def test_sample_rate_range(self, rate: int) -> None:
        with pytest.raises(ConfigError, match="samples_per_second"):
            RunConfig(binary=Path("fw.elf"), chip="nrf52840", samples_per_second=rate)

    def test_bad_log_level(self) -> None:
        with pytest.raises(ConfigError, match="log_level"):
            RunConfig(binary=Path("fw.elf"), chip="nrf52840", log_level="verbose")

    def test_bad_timeout(self) -> None:
        with pytest.raises(ConfigError, match="receive_timeout"):
            RunConfig(binary=Path("fw.elf"), chip="nrf52840", receive_timeout=0)


class TestFromMapping:
    """Tests for RunConfig.from_mapping."""

    def test_converts_values(self) -> None:
        config = RunConfig.from_mapping({
            "binary": "fw.elf",
            "chip": "nrf52840",
            "num_tests": "3",
            "voltage_mv": "1800",
            "mode": "ampere",
            "log_level": "DEBUG",
            "receive_timeout": "0.5",
        })
        assert config.binary == Path("fw.elf")
        assert config.num_tests == 3
        assert config.voltage_mv == 1800
        assert config.mode is MeasurementMode.AMPERE
        assert config.log_level == "debug"
        assert config.receive_timeout == 0.5

    def test_unknown_key(self) -> None:
        with pytest.raises(ConfigError, match="Unknown configuration keys: volts"):
            RunConfig.from_mapping({"binary": "fw.elf", "chip": "nrf52840", "volts": 3})

    @pytest.mark.parametrize("missing", ["binary", "chip"])
    def test_missing_required(self, missing: str) -> None:
        data = {"binary": "fw.elf", "chip": "nrf52840"}
        del data[missing]
        with pytest.raises(ConfigError, match=f"Missing required field: {missing}"):
            RunConfig.from_mapping(data)

    def test_bad_number(self) -> None:
        with pytest.raises(ConfigError, match="Invalid configuration value"):
            RunConfig.from_mapping({"binary": "fw.elf", "chip": "nrf52840", "voltage_mv": "high"})


class TestLoadConfigFile:
    """Tests for YAML loading."""

    def test_loads_section(self, tmp_path: Path) -> None:
        path = tmp_path / "bench.yaml"
        path.write_text("powertest:\n  chip: nrf52840\n  voltage_mv: 3000\nother: 1\n")
        assert load_config_file(path) == {"chip": "nrf52840", "voltage_mv": 3000}

    def test_missing_section(self, tmp_path: Path) -> None:
        path = tmp_path / "bench.yaml"
        path.write_text("other: 1\n")
        assert load_config_file(path) == {}

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "bench.yaml"
        path.write_text("")
        assert load_config_file(path) == {}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config_file(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bench.yaml"
        path.write_text("powertest: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config_file(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "bench.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config_file(path)

    def test_section_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "bench.yaml"
        path.write_text("powertest: 3\n")
        with pytest.raises(ConfigError, match="section must be a mapping"):
            load_config_file(path)


class TestBuildRunConfig:
    """Tests for layering overrides on a file."""

    def test_overrides_win(self, tmp_path: Path) -> None:
        path = tmp_path / "bench.yaml"
        path.write_text("powertest:\n  binary: a.elf\n  chip: nrf52840\n  voltage_mv: 3000\n")
        config = build_run_config(path, {"voltage_mv": 1800, "chip": None})
        assert config.voltage_mv == 1800
        assert config.chip == "nrf52840"
        assert config.binary == Path("a.elf")

    def test_without_file(self) -> None:
        config = build_run_config(None, {"binary": "b.elf", "chip": "nrf5340", "mode": None})
        assert config.chip == "nrf5340"
        assert config.mode is MeasurementMode.SOURCE

    def test_nothing_given(self) -> None:
        with pytest.raises(ConfigError, match="Missing required field"):
            build_run_config()
