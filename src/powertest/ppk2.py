"""Nordic Power Profiler Kit II measurement source.

This module wraps the ``ppk2_api`` library to supply power to the target,
sample its current draw, and turn the raw sample stream into classified
events via :class:`~powertest.matching.MatchingDecimator`.

The driver provides:
    - Serial port discovery by USB VID:PID
    - Source-meter and ampere-meter configuration
    - A pattern-matched event stream fed by a background producer thread
    - A single-use stop capability that halts the producer and hands the
      instrument back for power-off

``ppk2_api`` is imported lazily in :meth:`Ppk2Instrument.open` so the rest
of powertest works without it installed.

Example:
    ::

        instrument = Ppk2Instrument.open()
        instrument.configure(MeasurementMode.SOURCE, voltage_mv=3300)
        instrument.set_device_power(True)
        stream, stop = instrument.start_matched_stream(PinPattern.channel_low(0), 1000)
        event = stream.receive(timeout=2.0)
        stop().set_device_power(False)
"""

# pylint: disable=broad-exception-caught  # ppk2_api and pyserial raise unpredictable exceptions

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, Sequence

from serial.tools import list_ports

from powertest.errors import InstrumentError, StreamClosed, StreamError
from powertest.matching import MatchingDecimator
from powertest.types import ClassifiedEvent, MeasurementMode, PinPattern

logger = logging.getLogger(__name__)

NORDIC_VID = 0x1915
PPK2_PID = 0xC00A

MIN_SOURCE_MV = 800
MAX_SOURCE_MV = 5000

RawChunk = tuple[Sequence[float], Sequence[int]]
"""Raw currents (uA) and packed logic bytes from one instrument read."""


def find_ppk2_port() -> str:
    """Find the serial port of a connected PPK2.

    Returns:
        Device path of the first matching port.

    Raises:
        InstrumentError: If no PPK2 is connected.
    """
    for port in sorted(list_ports.comports(), key=lambda p: p.device):
        if (port.vid, port.pid) == (NORDIC_VID, PPK2_PID):
            logger.debug("PPK2 found on %s (%s)", port.device, port.description)
            return port.device
        if "PPK2" in (port.description or "") or "PPK2" in (port.product or ""):
            logger.debug("PPK2 found on %s by description", port.device)
            return port.device
    raise InstrumentError("No PPK2 serial port found")


class _Closed:
    """Queue sentinel marking the end of the producer."""


_CLOSED = _Closed()


class MeasurementStream:
    """Classified events produced by a background reader thread.

    Args:
        read_chunk: Returns the next raw chunk, or None when nothing is
            available yet. Called only from the producer thread.
        decimator: Groups and classifies raw samples.
        poll_interval: Sleep between empty reads, in seconds.
        log: Logger to use. Defaults to the module logger.
    """

    def __init__(
        self,
        read_chunk: Callable[[], RawChunk | None],
        decimator: MatchingDecimator,
        *,
        poll_interval: float = 0.01,
        log: logging.Logger | None = None,
    ) -> None:
        self._read_chunk = read_chunk
        self._decimator = decimator
        self._poll_interval = poll_interval
        self._log = log or logger
        self._queue: queue.Queue[ClassifiedEvent | _Closed] = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None

    @property
    def is_running(self) -> bool:
        """True while the producer thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the producer thread. Safe to call once."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._produce, name="ppk2-producer", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Ask the producer to finish and wait for it."""
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
            if self._thread.is_alive():
                self._log.warning("Producer thread did not stop within %.1f s", timeout)

    def receive(self, timeout: float | None = None) -> ClassifiedEvent:
        """Wait for the next classified event.

        Args:
            timeout: Maximum wait in seconds, None to block.

        Returns:
            The next event.

        Raises:
            queue.Empty: If no event arrived within the timeout.
            StreamClosed: If the producer has finished.
            StreamError: If the producer stopped because of an error.
        """
        item = self._queue.get(timeout=timeout)
        if isinstance(item, _Closed):
            # Leave the sentinel for any later receive
            self._queue.put(item)
            if self._error is not None:
                raise StreamError(f"measurement producer failed: {self._error}") from self._error
            raise StreamClosed()
        return item

    def _produce(self) -> None:
        """Producer loop: read raw chunks, classify, enqueue."""
        try:
            while not self._stop_event.is_set():
                chunk = self._read_chunk()
                if chunk is None:
                    time.sleep(self._poll_interval)
                    continue
                for event in self._decimator.feed(*chunk):
                    self._queue.put(event)
        except Exception as exc:
            self._log.error("Error reading measurement data: %s", exc)
            self._error = exc
        finally:
            self._queue.put(_CLOSED)


class Ppk2Instrument:
    """High-level driver for a PPK2.

    Args:
        api: An opened ``ppk2_api.ppk2_api.PPK2_API`` object.
        port: Serial port the API object is bound to.
    """

    def __init__(self, api: Any, port: str) -> None:
        self._api = api
        self._port = port
        self._stream: MeasurementStream | None = None

    @classmethod
    def open(cls, port: str | None = None, *, timeout: float = 1.0) -> Ppk2Instrument:
        """Open a PPK2, discovering its port if not given.

        Raises:
            InstrumentError: If ``ppk2_api`` is not installed, no port was
                found, or the device cannot be opened.
        """
        try:
            from ppk2_api.ppk2_api import PPK2_API  # type: ignore[import-not-found]  # pylint: disable=import-outside-toplevel
        except ImportError as exc:
            raise InstrumentError(
                "ppk2_api library is not installed. Install with: pip install ppk2-api"
            ) from exc

        port = port or find_ppk2_port()
        try:
            api = PPK2_API(port, timeout=timeout, write_timeout=timeout, exclusive=True)
            api.get_modifiers()
        except Exception as exc:
            raise InstrumentError(f"Failed to open PPK2 on {port}: {exc}") from exc
        logger.info("Opened PPK2 on %s", port)
        return cls(api, port)

    @property
    def port(self) -> str:
        """Serial port of the instrument."""
        return self._port

    def configure(self, mode: MeasurementMode, voltage_mv: int) -> None:
        """Select the measurement mode and source voltage.

        Args:
            mode: Source meter (PPK2 powers the target) or ampere meter.
            voltage_mv: Source voltage in mV, used in source mode.

        Raises:
            InstrumentError: If the voltage is out of range or the device
                rejects the configuration.
        """
        if not MIN_SOURCE_MV <= voltage_mv <= MAX_SOURCE_MV:
            raise InstrumentError(
                f"voltage must be {MIN_SOURCE_MV}-{MAX_SOURCE_MV} mV, got {voltage_mv}"
            )
        try:
            if mode is MeasurementMode.SOURCE:
                self._api.use_source_meter()
                self._api.set_source_voltage(voltage_mv)
            else:
                self._api.use_ampere_meter()
        except Exception as exc:
            raise InstrumentError(f"Failed to configure PPK2: {exc}") from exc
        logger.info("PPK2 in %s mode at %d mV", mode.value, voltage_mv)

    def set_device_power(self, enabled: bool) -> None:
        """Switch power to the target on or off."""
        try:
            self._api.toggle_DUT_power("ON" if enabled else "OFF")
        except Exception as exc:
            raise InstrumentError(f"Failed to switch target power: {exc}") from exc

    def start_matched_stream(
        self,
        pattern: PinPattern,
        samples_per_second: int,
        *,
        log: logging.Logger | None = None,
    ) -> tuple[MeasurementStream, Callable[[], Ppk2Instrument]]:
        """Start measuring and classify samples against a pin pattern.

        Args:
            pattern: Pattern a sample's logic channels must satisfy.
            samples_per_second: Classified event rate.
            log: Logger for the producer thread.

        Returns:
            The event stream and a single-use stop capability. Calling the
            capability stops the producer and measurement and returns this
            instrument.

        Raises:
            InstrumentError: If a stream is already running or measuring
                cannot be started.
        """
        if self._stream is not None:
            raise InstrumentError("Measurement stream already started")

        try:
            decimator = MatchingDecimator(pattern, samples_per_second)
        except ValueError as exc:
            raise InstrumentError(str(exc)) from exc

        try:
            self._api.start_measuring()
        except Exception as exc:
            raise InstrumentError(f"Failed to start measuring: {exc}") from exc

        stream = MeasurementStream(self._read_chunk, decimator, log=log)
        self._stream = stream
        stream.start()
        logger.info(
            "Measuring at %d samples/s (%d raw samples per event)",
            samples_per_second,
            decimator.group_size,
        )

        def stop() -> Ppk2Instrument:
            stream.stop()
            try:
                self._api.stop_measuring()
            except Exception as exc:
                logger.warning("Error stopping measurement: %s", exc)
            return self

        return stream, stop

    def close(self) -> None:
        """Close the serial connection. Safe to call multiple times."""
        ser = getattr(self._api, "ser", None)
        if ser is not None:
            try:
                ser.close()
            except Exception:
                logger.warning("Error closing PPK2 port", exc_info=True)

    def _read_chunk(self) -> RawChunk | None:
        """Read and convert whatever the device has buffered."""
        data = self._api.get_data()
        if not data:
            return None
        samples, bits = self._api.get_samples(data)
        return samples, bits
