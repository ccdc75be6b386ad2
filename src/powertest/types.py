"""Data types shared across powertest modules.

Classes:
    PinLevel: Desired level of one logic channel in a PinPattern.
    PinPattern: Per-channel levels used to classify samples.
    Measurement: One (averaged) current sample with its observed pin states.
    Match / NoMatch: The classified events consumed by the WindowAggregator.
    Phase: WindowAggregator phase.
    Report: Average current of one completed test window.
    MeasurementMode: PPK2 operating mode.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

LOGIC_CHANNELS = 8
"""Number of digital logic channels sampled by the PPK2."""


class PinLevel(Enum):
    """Desired level of a single logic channel.

    Attributes:
        LOW: The channel must read low.
        HIGH: The channel must read high.
        EITHER: The channel is ignored.
    """

    LOW = "low"
    HIGH = "high"
    EITHER = "either"

    def accepts(self, observed: bool) -> bool:
        """Check whether an observed channel level satisfies this level.

        Args:
            observed: True if the channel read high.

        Returns:
            True if the observed level is acceptable.
        """
        if self is PinLevel.EITHER:
            return True
        return bool(observed) == (self is PinLevel.HIGH)


@dataclass(frozen=True)
class PinPattern:
    """One desired level per logic channel.

    Attributes:
        levels: Desired level for channels 0..N-1.
    """

    levels: tuple[PinLevel, ...]

    def __post_init__(self) -> None:
        if len(self.levels) != LOGIC_CHANNELS:
            raise ValueError(
                f"pattern must have {LOGIC_CHANNELS} levels, got {len(self.levels)}"
            )

    @classmethod
    def channel_low(cls, channel: int = 0) -> PinPattern:
        """Build a pattern requiring one channel low and ignoring the rest.

        Args:
            channel: Channel that must read low (0-7).

        Returns:
            The pattern.
        """
        if not 0 <= channel < LOGIC_CHANNELS:
            raise ValueError(f"channel must be 0-{LOGIC_CHANNELS - 1}, got {channel}")
        levels = [PinLevel.EITHER] * LOGIC_CHANNELS
        levels[channel] = PinLevel.LOW
        return cls(tuple(levels))

    def matches(self, pins: tuple[bool, ...]) -> bool:
        """Check per-channel observed levels against the pattern."""
        return all(level.accepts(pin) for level, pin in zip(self.levels, pins))

    def matches_bits(self, bits: int) -> bool:
        """Check a packed logic byte (bit N is channel N) against the pattern."""
        return self.matches(pins_from_bits(bits))


def pins_from_bits(bits: int) -> tuple[bool, ...]:
    """Unpack a logic byte into per-channel levels (bit N is channel N)."""
    return tuple(bool((bits >> ch) & 1) for ch in range(LOGIC_CHANNELS))


@dataclass(frozen=True)
class Measurement:
    """A current sample together with the observed logic levels.

    Attributes:
        current_micro_amps: Instantaneous (or group-averaged) current in uA.
        pins: Observed level per logic channel, True for high.
    """

    current_micro_amps: float
    pins: tuple[bool, ...] = (False,) * LOGIC_CHANNELS


@dataclass(frozen=True)
class Match:
    """A measurement taken while the pin pattern matched."""

    measurement: Measurement


@dataclass(frozen=True)
class NoMatch:
    """A sampling period in which the pin pattern did not match."""


NO_MATCH = NoMatch()

ClassifiedEvent = Union[Match, NoMatch]


class Phase(Enum):
    """WindowAggregator phase.

    Attributes:
        PREAMBLE: No boundary observed yet; matches are not attributable.
        READY: Boundaries delimit test windows.
    """

    PREAMBLE = "preamble"
    READY = "ready"


@dataclass(frozen=True)
class Report:
    """Average current over one completed test window.

    Attributes:
        index: 1-based window number.
        average_current_micro_amps: Mean current of the window's samples.
        sample_count: Number of samples averaged.
    """

    index: int
    average_current_micro_amps: float
    sample_count: int = 0

    @property
    def average_current_milli_amps(self) -> float:
        """Return the average current in mA."""
        return self.average_current_micro_amps / 1000.0

    def __str__(self) -> str:
        return (
            f"Average current for report {self.index}: "
            f"{self.average_current_milli_amps:.8f} mA"
        )


class MeasurementMode(Enum):
    """PPK2 operating mode.

    Attributes:
        SOURCE: The PPK2 supplies the target at the configured voltage.
        AMPERE: The PPK2 measures current drawn from an external supply.
    """

    SOURCE = "source"
    AMPERE = "ampere"
