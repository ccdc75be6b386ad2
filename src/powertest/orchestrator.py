"""Power test run sequencing and the measurement control loop.

A run powers the target from the PPK2, flashes the test firmware, starts a
stream matched on "channel 0 low", lets the firmware run, and aggregates
one average-current report per test until the expected number of reports
is reached or the stream closes. Shutdown always goes through the
:class:`~powertest.shutdown.ShutdownCoordinator`, which the abort signal
handler shares.
"""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Protocol

from powertest.aggregator import WindowAggregator
from powertest.config import RunConfig
from powertest.elf import read_test_count
from powertest.errors import ConfigError, StreamClosed, StreamError
from powertest.ppk2 import Ppk2Instrument
from powertest.probe import attach_target
from powertest.shutdown import AbortHandler, ShutdownCoordinator, power_off
from powertest.types import ClassifiedEvent, PinPattern, Report

logger = logging.getLogger(__name__)

SIGNAL_CHANNEL = 0
"""Logic channel the test firmware drives low while a test runs."""


class EventSource(Protocol):
    """Anything the control loop can receive classified events from."""

    def receive(self, timeout: float | None = None) -> ClassifiedEvent:
        """Return the next event.

        Raises:
            queue.Empty: On timeout.
            StreamClosed: Once the producer has finished.
            StreamError: If the producer failed.
        """
        ...


class LoopOutcome(Enum):
    """Why the control loop stopped."""

    COMPLETED = "completed"
    STREAM_CLOSED = "stream_closed"


def drive(
    source: EventSource,
    aggregator: WindowAggregator,
    expected: int,
    *,
    timeout: float = 2.0,
    on_report: Callable[[Report], None] | None = None,
    log: logging.Logger | None = None,
) -> LoopOutcome:
    """Feed events to the aggregator until enough reports are emitted.

    The completion check runs before every receive, so no event is consumed
    once ``expected`` reports exist, and an expected count of zero returns
    without waiting. A receive timeout only triggers another check.

    Args:
        source: Stream of classified events.
        aggregator: Window state machine.
        expected: Number of reports to collect.
        timeout: Seconds to wait per receive.
        on_report: Called with each report as it completes.
        log: Logger for report lines. Defaults to the module logger.

    Returns:
        COMPLETED when ``expected`` reports were emitted, STREAM_CLOSED if
        the producer finished first.

    Raises:
        StreamError: If the producer failed.
    """
    log = log or logger
    while aggregator.reports_emitted < expected:
        try:
            event = source.receive(timeout)
        except queue.Empty:
            log.debug(
                "No data within %.1f s (%d of %d reports)",
                timeout,
                aggregator.reports_emitted,
                expected,
            )
            continue
        except StreamClosed:
            log.warning(
                "Measurement stream closed after %d of %d reports",
                aggregator.reports_emitted,
                expected,
            )
            return LoopOutcome.STREAM_CLOSED
        except StreamError as exc:
            log.error("Error receiving data: %s", exc)
            raise

        report = aggregator.feed(event)
        if report is not None:
            log.info("%s", report)
            if on_report is not None:
                on_report(report)
    return LoopOutcome.COMPLETED


@dataclass
class RunResult:
    """Outcome of a power test run.

    Attributes:
        expected: Number of reports the run waited for.
        reports: Reports in window order.
        stream_closed: True if the stream closed before ``expected`` reports.
    """

    expected: int
    reports: list[Report] = field(default_factory=list)
    stream_closed: bool = False

    @property
    def complete(self) -> bool:
        """True if every expected report was collected."""
        return len(self.reports) >= self.expected


class PowerTestRunner:
    """Sequences one power test run.

    The instrument, probe and count-resolution steps are injectable so the
    sequence can run against fakes.

    Args:
        config: Run configuration.
        open_instrument: Opens the measurement instrument given a port (or
            None to discover it).
        attach: Attaches a debug target given a chip and probe unique ID.
        resolve_count: Reads the expected report count from a binary.
        abort_handler: Builds the abort-signal context for a coordinator.
        log: Logger for the run. Defaults to the module logger.
    """

    def __init__(
        self,
        config: RunConfig,
        *,
        open_instrument: Callable[[str | None], Any] = Ppk2Instrument.open,
        attach: Callable[..., Any] = attach_target,
        resolve_count: Callable[[Path], int] = read_test_count,
        abort_handler: Callable[..., Any] = AbortHandler,
        log: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._open_instrument = open_instrument
        self._attach = attach
        self._resolve_count = resolve_count
        self._abort_handler = abort_handler
        self._log = log or logger

    def expected_report_count(self) -> int:
        """Return the explicit test count, else the one stored in the binary."""
        if self._config.num_tests is not None:
            return self._config.num_tests
        return self._resolve_count(self._config.binary)

    def run(self) -> RunResult:
        """Execute the full sequence.

        Returns:
            The collected reports.

        Raises:
            PowertestError: On any unrecovered setup or streaming failure.
                Target power is switched off before the error propagates.
        """
        config = self._config
        log = self._log

        if not config.binary.is_file():
            raise ConfigError(f"Binary not found: {config.binary}")
        expected = self.expected_report_count()
        log.info("Expecting %d test reports", expected)
        result = RunResult(expected=expected)

        instrument = self._open_instrument(config.serial_port)
        coordinator: ShutdownCoordinator | None = None
        target = None
        try:
            instrument.configure(config.mode, config.voltage_mv)
            instrument.set_device_power(True)
            log.info("Target power enabled")

            target = self._attach(config.chip, unique_id=config.probe)
            target.flash(config.binary)
            target.reset_and_halt()

            stream, stop = instrument.start_matched_stream(
                PinPattern.channel_low(SIGNAL_CHANNEL), config.samples_per_second, log=log
            )
            coordinator = ShutdownCoordinator(stop, log=log)

            with self._abort_handler(coordinator, log=log):
                try:
                    target.reset()
                    log.info("Target running, waiting for test windows")
                    outcome = drive(
                        stream,
                        WindowAggregator(log=log),
                        expected,
                        timeout=config.receive_timeout,
                        on_report=result.reports.append,
                        log=log,
                    )
                    result.stream_closed = outcome is LoopOutcome.STREAM_CLOSED
                finally:
                    coordinator.shutdown()
        finally:
            if coordinator is None:
                power_off(instrument, log=log)
            else:
                coordinator.shutdown()
            if target is not None:
                target.close()

        log.info("Collected %d of %d reports", len(result.reports), expected)
        log.info("Goodbye!")
        return result
