"""Test window aggregation.

The target firmware holds its signal pin high between tests and low while a
test runs. With the instrument matching "channel 0 low", a run of ``Match``
events is one test execution and the ``NoMatch`` that follows is the rising
edge ending it.

The aggregator starts in the PREAMBLE phase: matches seen before the first
``NoMatch`` cannot be attributed to a test and are dropped. The first
``NoMatch`` moves it to READY for the rest of the run. In READY, every
``NoMatch`` closes the current window and emits a Report if the window holds
at least one sample.

Example:
    >>> agg = WindowAggregator()
    >>> for event in [NO_MATCH, Match(Measurement(1000.0)), NO_MATCH]:
    ...     report = agg.feed(event)
    >>> report.average_current_micro_amps
    1000.0
"""

from __future__ import annotations

import logging

from powertest.types import ClassifiedEvent, Match, Phase, Report

logger = logging.getLogger(__name__)

TRACE = 5
"""Log level for per-sample messages, below DEBUG."""


class WindowAggregator:
    """State machine turning classified events into per-window reports.

    All state is owned by the control-loop thread; no locking is needed.

    Args:
        log: Logger for per-event tracing. Defaults to the module logger.
    """

    def __init__(self, *, log: logging.Logger | None = None) -> None:
        self._log = log or logger
        self._phase = Phase.PREAMBLE
        self._sum = 0.0
        self._count = 0
        self._reports_emitted = 0

    @property
    def phase(self) -> Phase:
        """Current phase."""
        return self._phase

    @property
    def reports_emitted(self) -> int:
        """Number of reports emitted so far."""
        return self._reports_emitted

    @property
    def running_count(self) -> int:
        """Samples accumulated in the open window."""
        return self._count

    @property
    def running_sum(self) -> float:
        """Sum of currents (uA) accumulated in the open window."""
        return self._sum

    def feed(self, event: ClassifiedEvent) -> Report | None:
        """Consume one classified event.

        Args:
            event: The next event from the measurement stream.

        Returns:
            The Report for a window this event closed, otherwise None.
        """
        if isinstance(event, Match):
            micro_amps = event.measurement.current_micro_amps
            if self._phase is Phase.PREAMBLE:
                self._log.log(TRACE, "No preamble detected yet: %.4f mA", micro_amps / 1000.0)
                return None
            self._count += 1
            self._sum += micro_amps
            self._log.log(
                TRACE,
                "Last: %.4f mA. Pins: %s",
                micro_amps / 1000.0,
                event.measurement.pins,
            )
            return None

        if self._phase is Phase.PREAMBLE:
            self._log.debug("Preamble detected, ready for first test window")
            self._phase = Phase.READY
        return self._close_window()

    def _close_window(self) -> Report | None:
        """Emit a report for the open window (if non-empty) and reset it."""
        report = None
        if self._count > 0:
            self._reports_emitted += 1
            report = Report(
                index=self._reports_emitted,
                average_current_micro_amps=self._sum / self._count,
                sample_count=self._count,
            )
        else:
            self._log.log(TRACE, "No match, ignoring.")
        self._sum = 0.0
        self._count = 0
        return report
