"""Run configuration for powertest.

A run is described by a :class:`RunConfig`. Values come from command-line
arguments, optionally layered over a YAML file whose top-level
``powertest`` mapping uses the same keys.

Example YAML:
    powertest:
      binary: "target/thumbv7em-none-eabihf/debug/power"
      chip: "nrf52840"
      voltage_mv: 3000
      mode: source
      samples_per_second: 1000
      log_level: info
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from powertest.errors import ConfigError
from powertest.matching import RAW_SAMPLE_RATE
from powertest.ppk2 import MAX_SOURCE_MV, MIN_SOURCE_MV
from powertest.types import MeasurementMode

DEFAULT_VOLTAGE_MV = 3300
DEFAULT_SAMPLES_PER_SECOND = 1000
DEFAULT_RECEIVE_TIMEOUT = 2.0

LOG_LEVELS: tuple[str, ...] = ("trace", "debug", "info", "warning", "error")

_MODE_ALIASES: dict[str, MeasurementMode] = {
    "source": MeasurementMode.SOURCE,
    "ampere": MeasurementMode.AMPERE,
    "ampere-meter": MeasurementMode.AMPERE,
    "ampere_meter": MeasurementMode.AMPERE,
}


def parse_mode(value: str | MeasurementMode) -> MeasurementMode:
    """Parse a measurement mode name.

    Raises:
        ConfigError: If the name is unknown.
    """
    if isinstance(value, MeasurementMode):
        return value
    try:
        return _MODE_ALIASES[str(value).lower()]
    except KeyError:
        raise ConfigError(
            f"Unknown mode {value!r}; expected one of {', '.join(_MODE_ALIASES)}"
        ) from None


@dataclass(frozen=True)
class RunConfig:
    """Complete configuration for one power test run.

    Attributes:
        binary: Firmware image to flash and inspect.
        chip: Target chip identifier for probe attach.
        num_tests: Expected report count; read from the binary if None.
        serial_port: PPK2 serial port; discovered if None.
        voltage_mv: Source voltage in millivolts.
        mode: Measurement mode.
        log_level: Log verbosity name.
        samples_per_second: Classified event rate.
        receive_timeout: Seconds the control loop waits per receive before
            re-checking for completion.
        probe: Debug probe unique ID to use; any probe if None.

    Raises:
        ConfigError: If any value is out of range.
    """

    binary: Path
    chip: str
    num_tests: int | None = None
    serial_port: str | None = None
    voltage_mv: int = DEFAULT_VOLTAGE_MV
    mode: MeasurementMode = MeasurementMode.SOURCE
    log_level: str = "info"
    samples_per_second: int = DEFAULT_SAMPLES_PER_SECOND
    receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT
    probe: str | None = None

    def __post_init__(self) -> None:
        if not str(self.binary):
            raise ConfigError("binary must be given")
        if not self.chip:
            raise ConfigError("chip must be given")
        if self.num_tests is not None and self.num_tests < 0:
            raise ConfigError(f"num_tests must be >= 0, got {self.num_tests}")
        if not MIN_SOURCE_MV <= self.voltage_mv <= MAX_SOURCE_MV:
            raise ConfigError(
                f"voltage_mv must be {MIN_SOURCE_MV}-{MAX_SOURCE_MV}, got {self.voltage_mv}"
            )
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(
                f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}"
            )
        if not 1 <= self.samples_per_second <= RAW_SAMPLE_RATE:
            raise ConfigError(
                f"samples_per_second must be 1-{RAW_SAMPLE_RATE}, got {self.samples_per_second}"
            )
        if self.receive_timeout <= 0:
            raise ConfigError(f"receive_timeout must be > 0, got {self.receive_timeout}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RunConfig:
        """Build a config from plain values (YAML or parsed arguments).

        Raises:
            ConfigError: If keys are unknown, required keys are missing, or
                values have the wrong type.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        for required in ("binary", "chip"):
            if not data.get(required):
                raise ConfigError(f"Missing required field: {required}")

        values = dict(data)
        values["binary"] = Path(values["binary"])
        values["chip"] = str(values["chip"])
        if "mode" in values:
            values["mode"] = parse_mode(values["mode"])
        if "log_level" in values:
            values["log_level"] = str(values["log_level"]).lower()
        try:
            for key in ("num_tests", "voltage_mv", "samples_per_second"):
                if values.get(key) is not None:
                    values[key] = int(values[key])
            if "receive_timeout" in values:
                values["receive_timeout"] = float(values["receive_timeout"])
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid configuration value: {exc}") from exc
        return cls(**values)


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load the ``powertest`` mapping from a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        The mapping (empty if the section is absent).

    Raises:
        ConfigError: If the file is missing or not valid YAML of the right shape.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Config file must be a YAML mapping")

    section = data.get("powertest", {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError("powertest section must be a mapping")
    return dict(section)


def build_run_config(
    config_path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> RunConfig:
    """Layer explicit values over an optional config file.

    Args:
        config_path: YAML file to start from, if any.
        overrides: Values that take precedence; None values are ignored.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: If the merged configuration is invalid.
    """
    data: dict[str, Any] = load_config_file(config_path) if config_path else {}
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    return RunConfig.from_mapping(data)
