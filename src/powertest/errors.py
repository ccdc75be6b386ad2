"""Exception types for powertest.

All powertest exceptions inherit from PowertestError, allowing the CLI to
report any expected failure with a single except clause and a non-zero exit.

Exception hierarchy:
    PowertestError (base)
    +-- ConfigError: Invalid or missing run configuration
    +-- TestCountError: Expected report count could not be resolved
    |   +-- SymbolNotFoundError: Test count symbol absent from the binary
    |   +-- MalformedSymbolError: Symbol data is not a 32/64-bit integer
    +-- InstrumentError: Measurement instrument discovery or I/O failures
    +-- ProbeError: Debug probe discovery, attach, flash or reset failures
    +-- StreamError: Measurement producer failed while streaming

StreamClosed is outside the hierarchy: a producer that finishes
cleanly ends the run the same way reaching the expected count does.
"""


class PowertestError(Exception):
    """Base exception for all powertest errors."""


class ConfigError(PowertestError):
    """Raised when the run configuration is invalid or cannot be loaded."""


class TestCountError(PowertestError):
    """Raised when the expected number of test reports cannot be resolved."""

    __test__ = False  # not a pytest test class


class SymbolNotFoundError(TestCountError):
    """Raised when the binary does not define a test count symbol."""


class MalformedSymbolError(TestCountError):
    """Raised when the binary is unreadable or the symbol data has an unexpected size."""


class InstrumentError(PowertestError):
    """Raised for measurement instrument failures.

    This includes failing to find a PPK2 serial port, the ``ppk2_api``
    library not being installed, and errors while configuring the device.
    """


class ProbeError(PowertestError):
    """Raised for debug probe failures.

    This includes having no probe that can attach to the requested chip,
    the ``pyocd`` library not being installed, and flash or reset failures.
    """


class StreamError(PowertestError):
    """Raised when the measurement producer stops because of an error.

    The underlying exception is chained as ``__cause__``.
    """


class StreamClosed(Exception):
    """Raised by a measurement stream once its producer has finished."""
