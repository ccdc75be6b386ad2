"""Command-line interface for powertest.

Flashes a defmt-test firmware image, measures the target's current draw
with a PPK2 and logs the average current of every test.

Usage:
    # Test count read from the DEFMT_TEST_COUNT symbol
    powertest target/thumbv7em-none-eabihf/debug/power --chip nrf52840

    # Explicit count, lower voltage, faster sampling
    powertest power.elf --chip nrf52840 --num-tests 3 --voltage 1800 \\
        --samples-per-second 10000

    # Settings from a YAML file, overridden on the command line
    powertest --config bench.yaml --log-level debug
"""

from __future__ import annotations

import argparse
import logging
import sys

from powertest.aggregator import TRACE
from powertest.config import LOG_LEVELS, build_run_config
from powertest.errors import ConfigError, PowertestError
from powertest.orchestrator import PowerTestRunner


def setup_logging(level: str = "info") -> logging.Logger:
    """Configure logging and return the logger the run passes around.

    Args:
        level: One of ``trace``, ``debug``, ``info``, ``warning``, ``error``.

    Returns:
        The ``powertest`` logger.
    """
    logging.addLevelName(TRACE, "TRACE")
    numeric = TRACE if level == "trace" else getattr(logging, level.upper())
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    log = logging.getLogger("powertest")
    log.setLevel(numeric)
    return log


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="powertest",
        description="Measure per-test current consumption of embedded firmware",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "binary", nargs="?",
        help="Firmware ELF to flash and inspect"
    )
    parser.add_argument(
        "--num-tests", "-n", type=int,
        help="Number of tests the device will run (default: read from the binary)"
    )
    parser.add_argument(
        "--chip", "-c",
        help="Target chip identifier for the debug probe (e.g. nrf52840)"
    )
    parser.add_argument(
        "--serial-port", "-p",
        help="PPK2 serial port (default: auto-discovered)"
    )
    parser.add_argument(
        "--voltage", "-v", dest="voltage_mv", type=int,
        help="Source voltage in millivolts (default: 3300)"
    )
    parser.add_argument(
        "--mode", "-m", choices=["source", "ampere"],
        help="Measurement mode (default: source)"
    )
    parser.add_argument(
        "--log-level", "-l", choices=LOG_LEVELS,
        help="Log verbosity (default: info)"
    )
    parser.add_argument(
        "--samples-per-second", "-s", type=int,
        help="Classified sample rate (default: 1000)"
    )
    parser.add_argument(
        "--receive-timeout", type=float,
        help="Seconds to wait for data before re-checking completion (default: 2.0)"
    )
    parser.add_argument(
        "--probe",
        help="Unique ID of the debug probe to use (default: first that attaches)"
    )
    parser.add_argument(
        "--config",
        help="YAML file with a 'powertest' section of default settings"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    overrides = {
        "binary": args.binary,
        "chip": args.chip,
        "num_tests": args.num_tests,
        "serial_port": args.serial_port,
        "voltage_mv": args.voltage_mv,
        "mode": args.mode,
        "log_level": args.log_level,
        "samples_per_second": args.samples_per_second,
        "receive_timeout": args.receive_timeout,
        "probe": args.probe,
    }
    try:
        config = build_run_config(args.config, overrides)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    log = setup_logging(config.log_level)
    try:
        PowerTestRunner(config, log=log).run()
    except PowertestError as exc:
        log.error("Error: %s", exc)
        return 1
    except KeyboardInterrupt:
        log.warning("Interrupted during setup")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
