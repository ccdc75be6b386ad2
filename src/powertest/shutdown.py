"""Exactly-once shutdown of the measurement stream and target power.

Two execution contexts can end a run: the control loop (expected report
count reached, or the producer closed) and an external abort signal. Both
call :meth:`ShutdownCoordinator.shutdown`. The stop capability sits in a
single-use slot; whichever caller takes it performs the one real
stop/power-off sequence and every later caller gets None.

The slot is a :class:`queue.SimpleQueue` holding one item. Its ``get`` is
reentrant, so a signal handler interrupting the main thread in the middle
of a take can neither deadlock nor take the capability a second time.
"""

from __future__ import annotations

import logging
import os
import queue
import signal
import threading
from types import FrameType
from typing import Callable, Iterable, Protocol

logger = logging.getLogger(__name__)


class PoweredInstrument(Protocol):
    """The instrument operations needed to power the target down."""

    def set_device_power(self, enabled: bool) -> None:
        """Enable or disable power to the target."""
        ...

    def close(self) -> None:
        """Release the instrument."""
        ...


StopCapability = Callable[[], PoweredInstrument]
"""Halts the measurement stream and hands back the instrument."""


def power_off(instrument: PoweredInstrument, *, log: logging.Logger | None = None) -> None:
    """Disable target power and release the instrument.

    The instrument is closed even if disabling power fails.
    """
    log = log or logger
    try:
        instrument.set_device_power(False)
        log.info("Target power disabled")
    finally:
        instrument.close()


class StopSlot:
    """Single-use container for a stop capability.

    Args:
        capability: The capability to hold.
    """

    def __init__(self, capability: StopCapability) -> None:
        self._queue: queue.SimpleQueue[StopCapability] = queue.SimpleQueue()
        self._queue.put(capability)

    def take(self) -> StopCapability | None:
        """Remove and return the capability, or None if already taken."""
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    @property
    def empty(self) -> bool:
        """True once the capability has been taken."""
        return self._queue.empty()


class ShutdownCoordinator:
    """Runs the stop and power-off sequence at most once.

    Args:
        stop: Capability that halts the measurement stream and returns the
            instrument.
        log: Logger to use. Defaults to the module logger.
    """

    def __init__(self, stop: StopCapability, *, log: logging.Logger | None = None) -> None:
        self._slot = StopSlot(stop)
        self._finished = threading.Event()
        self._log = log or logger

    @property
    def finished(self) -> bool:
        """True once a shutdown sequence has run to completion (or failed)."""
        return self._finished.is_set()

    @property
    def taken(self) -> bool:
        """True once some caller has taken the stop capability."""
        return self._slot.empty

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a shutdown sequence has finished.

        Returns:
            True if it finished within the timeout.
        """
        return self._finished.wait(timeout)

    def shutdown(self) -> PoweredInstrument | None:
        """Take the stop capability, stop measuring and power the target off.

        A caller that finds the slot empty does nothing; another path has
        already handled shutdown.

        Returns:
            The instrument if this call performed the shutdown, else None.
        """
        stop = self._slot.take()
        if stop is None:
            self._log.debug("Shutdown already handled")
            return None

        try:
            instrument = stop()
            self._log.info("Measurement stopped")
            power_off(instrument, log=self._log)
        finally:
            self._finished.set()
        return instrument


class AbortHandler:
    """Routes external abort signals to a ShutdownCoordinator.

    On a signal the handler attempts shutdown, then terminates the process
    with status 0. The one exception: if the signal interrupted a shutdown
    already in progress on the same thread, the handler returns without
    exiting, and the interrupted shutdown completes before the run ends
    normally.

    Args:
        coordinator: Coordinator shared with the control loop.
        signals: Signals to handle. Defaults to SIGINT and SIGTERM.
        exit_func: Process termination function, ``os._exit`` by default.
        log: Logger to use. Defaults to the module logger.

    Example:
        >>> with AbortHandler(coordinator):
        ...     drive(stream, aggregator, expected)
    """

    def __init__(
        self,
        coordinator: ShutdownCoordinator,
        *,
        signals: Iterable[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
        exit_func: Callable[[int], object] = os._exit,
        log: logging.Logger | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._signals = tuple(signals)
        self._exit = exit_func
        self._log = log or logger
        self._previous: dict[signal.Signals, object] = {}

    def install(self) -> None:
        """Install the handler for each signal, remembering the previous one."""
        try:
            for sig in self._signals:
                self._previous[sig] = signal.signal(sig, self.handle)
        except BaseException:
            self.restore()
            raise

    def restore(self) -> None:
        """Reinstate the handlers that were active before :meth:`install`."""
        while self._previous:
            sig, previous = self._previous.popitem()
            if previous is None:
                previous = signal.SIG_DFL
            signal.signal(sig, previous)  # type: ignore[arg-type]

    def __enter__(self) -> AbortHandler:
        self.install()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.restore()

    def handle(self, signum: int, frame: FrameType | None) -> None:  # pylint: disable=unused-argument
        """Signal handler: best-effort shutdown followed by exit(0)."""
        self._log.warning("Received %s, shutting down", signal.Signals(signum).name)
        try:
            performed = self._coordinator.shutdown() is not None
        except Exception:  # pylint: disable=broad-exception-caught
            self._log.exception("Shutdown after abort failed")
            performed = True

        if performed or self._coordinator.finished:
            self._exit(0)
            return
        self._log.info("Shutdown already in progress, letting it finish")
