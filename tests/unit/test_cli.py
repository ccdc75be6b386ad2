"""Tests for the command-line interface."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator
from unittest.mock import MagicMock, patch

import pytest

from powertest.aggregator import TRACE
from powertest.cli import build_parser, main, setup_logging
from powertest.errors import InstrumentError
from powertest.types import MeasurementMode


@pytest.fixture
def restore_powertest_logger() -> Iterator[None]:
    """Undo level changes made to the package logger."""
    log = logging.getLogger("powertest")
    level = log.level
    yield
    log.setLevel(level)


class TestBuildParser:
    """Tests for argument parsing."""

    def test_all_options(self) -> None:
        args = build_parser().parse_args([
            "fw.elf", "-c", "nrf52840", "-n", "3", "-p", "COM3", "-v", "1800",
            "-m", "ampere", "-l", "trace", "-s", "5000", "--receive-timeout", "0.5",
            "--probe", "ABC", "--config", "bench.yaml",
        ])
        assert args.binary == "fw.elf"
        assert args.chip == "nrf52840"
        assert args.num_tests == 3
        assert args.serial_port == "COM3"
        assert args.voltage_mv == 1800
        assert args.mode == "ampere"
        assert args.log_level == "trace"
        assert args.samples_per_second == 5000
        assert args.receive_timeout == 0.5
        assert args.probe == "ABC"
        assert args.config == "bench.yaml"

    def test_defaults_are_unset(self) -> None:
        args = build_parser().parse_args([])
        assert args.binary is None
        assert args.voltage_mv is None
        assert args.log_level is None

    def test_invalid_level(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["fw.elf", "-l", "loud"])


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.mark.usefixtures("restore_powertest_logger")
    def test_trace_level(self) -> None:
        with patch("powertest.cli.logging.basicConfig") as mock_basic:
            log = setup_logging("trace")
        assert log.name == "powertest"
        assert log.level == TRACE
        assert logging.getLevelName(TRACE) == "TRACE"
        assert mock_basic.call_args.kwargs["level"] == TRACE

    @pytest.mark.usefixtures("restore_powertest_logger")
    def test_warning_level(self) -> None:
        with patch("powertest.cli.logging.basicConfig"):
            log = setup_logging("warning")
        assert log.level == logging.WARNING


class TestMain:
    """Tests for main()."""

    def test_runs_with_merged_config(self, tmp_path: Path) -> None:
        runner = MagicMock()
        with (
            patch("powertest.cli.setup_logging", return_value=logging.getLogger("t")),
            patch("powertest.cli.PowerTestRunner", return_value=runner) as mock_cls,
        ):
            code = main(["fw.elf", "--chip", "nrf52840", "--mode", "ampere", "-n", "2"])

        assert code == 0
        config = mock_cls.call_args.args[0]
        assert config.binary == Path("fw.elf")
        assert config.mode is MeasurementMode.AMPERE
        assert config.num_tests == 2
        runner.run.assert_called_once_with()

    def test_config_error_exit_code(self, capsys: pytest.CaptureFixture[str]) -> None:
        with patch("powertest.cli.PowerTestRunner") as mock_cls:
            code = main(["fw.elf"])
        assert code == 1
        assert "Missing required field: chip" in capsys.readouterr().err
        mock_cls.assert_not_called()

    def test_run_error_exit_code(self) -> None:
        runner = MagicMock()
        runner.run.side_effect = InstrumentError("No PPK2 serial port found")
        with (
            patch("powertest.cli.setup_logging", return_value=logging.getLogger("t")),
            patch("powertest.cli.PowerTestRunner", return_value=runner),
        ):
            assert main(["fw.elf", "--chip", "nrf52840"]) == 1

    def test_interrupted_during_setup(self) -> None:
        runner = MagicMock()
        runner.run.side_effect = KeyboardInterrupt
        with (
            patch("powertest.cli.setup_logging", return_value=logging.getLogger("t")),
            patch("powertest.cli.PowerTestRunner", return_value=runner),
        ):
            assert main(["fw.elf", "--chip", "nrf52840"]) == 130

    def test_config_file(self, tmp_path: Path) -> None:
        path = tmp_path / "bench.yaml"
        path.write_text("powertest:\n  binary: a.elf\n  chip: nrf52840\n  log_level: debug\n")
        with (
            patch("powertest.cli.setup_logging", return_value=logging.getLogger("t")) as mock_setup,
            patch("powertest.cli.PowerTestRunner") as mock_cls,
        ):
            assert main(["--config", str(path), "-v", "2500"]) == 0
        mock_setup.assert_called_once_with("debug")
        assert mock_cls.call_args.args[0].voltage_mv == 2500
