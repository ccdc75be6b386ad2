"""Per-test current measurement for embedded firmware.

powertest flashes a test firmware image through a debug probe, powers and
samples the target with a Nordic PPK2, and uses a signal pin driven by the
firmware to split the current stream into one window per test. It logs the
average current of each window as it completes.

Key components:
    - TestCountResolver: :func:`read_test_count` reads ``DEFMT_TEST_COUNT``
      from the ELF to learn how many reports to expect.
    - WindowAggregator: turns classified events into per-test reports.
    - ShutdownCoordinator: stops measuring and powers the target off exactly
      once, whether the run completes or is aborted.
    - PowerTestRunner: sequences a complete run.

Example:
    >>> from powertest import RunConfig, PowerTestRunner
    >>> config = RunConfig(binary=Path("power.elf"), chip="nrf52840")
    >>> result = PowerTestRunner(config).run()
    >>> [r.average_current_milli_amps for r in result.reports]
"""

from powertest.aggregator import WindowAggregator
from powertest.config import RunConfig, build_run_config, load_config_file
from powertest.elf import TEST_COUNT_SYMBOLS, read_test_count, resolve_test_count
from powertest.errors import (
    ConfigError,
    InstrumentError,
    MalformedSymbolError,
    PowertestError,
    ProbeError,
    StreamClosed,
    StreamError,
    SymbolNotFoundError,
    TestCountError,
)
from powertest.matching import MatchingDecimator, classify_group
from powertest.orchestrator import LoopOutcome, PowerTestRunner, RunResult, drive
from powertest.ppk2 import MeasurementStream, Ppk2Instrument, find_ppk2_port
from powertest.probe import DebugTarget, attach_target, first_success
from powertest.shutdown import AbortHandler, ShutdownCoordinator, StopSlot, power_off
from powertest.types import (
    NO_MATCH,
    ClassifiedEvent,
    Match,
    Measurement,
    MeasurementMode,
    NoMatch,
    Phase,
    PinLevel,
    PinPattern,
    Report,
)

__version__ = "0.1.0"

__all__ = [
    # Aggregation
    "WindowAggregator",
    # Config
    "RunConfig",
    "build_run_config",
    "load_config_file",
    # Test count
    "TEST_COUNT_SYMBOLS",
    "read_test_count",
    "resolve_test_count",
    # Errors
    "ConfigError",
    "InstrumentError",
    "MalformedSymbolError",
    "PowertestError",
    "ProbeError",
    "StreamClosed",
    "StreamError",
    "SymbolNotFoundError",
    "TestCountError",
    # Matching
    "MatchingDecimator",
    "classify_group",
    # Orchestration
    "LoopOutcome",
    "PowerTestRunner",
    "RunResult",
    "drive",
    # Instrument
    "MeasurementStream",
    "Ppk2Instrument",
    "find_ppk2_port",
    # Probe
    "DebugTarget",
    "attach_target",
    "first_success",
    # Shutdown
    "AbortHandler",
    "ShutdownCoordinator",
    "StopSlot",
    "power_off",
    # Types
    "NO_MATCH",
    "ClassifiedEvent",
    "Match",
    "Measurement",
    "MeasurementMode",
    "NoMatch",
    "Phase",
    "PinLevel",
    "PinPattern",
    "Report",
]
