"""Pattern-matched decimation of raw PPK2 samples.

The PPK2 reports current and the eight logic channels at a fixed
100 kS/s. The configured sample rate groups consecutive raw samples; each
group becomes one classified event:

- ``Match``: at least one raw sample in the group satisfied the pin pattern.
  The event carries the mean current of the satisfying samples only and the
  pin levels of the last satisfying sample.
- ``NoMatch``: no raw sample in the group satisfied the pattern.

Raw reads arrive in arbitrary lengths, so incomplete groups are carried over
to the next call.
"""

from __future__ import annotations

from typing import Sequence

from powertest.types import (
    NO_MATCH,
    ClassifiedEvent,
    Match,
    Measurement,
    PinPattern,
    pins_from_bits,
)

RAW_SAMPLE_RATE = 100_000
"""PPK2 native sample rate in samples per second."""


def classify_group(
    currents: Sequence[float], bits: Sequence[int], pattern: PinPattern
) -> ClassifiedEvent:
    """Classify one group of raw samples against a pin pattern.

    Args:
        currents: Raw currents in uA.
        bits: Packed logic levels, one byte per raw sample.
        pattern: Pattern a sample must satisfy to be counted.

    Returns:
        ``Match`` averaging the satisfying samples, or ``NO_MATCH``.
    """
    total = 0.0
    count = 0
    last_bits = 0
    for current, sample_bits in zip(currents, bits):
        if pattern.matches_bits(sample_bits):
            total += current
            count += 1
            last_bits = sample_bits
    if count == 0:
        return NO_MATCH
    return Match(Measurement(total / count, pins_from_bits(last_bits)))


class MatchingDecimator:
    """Turns raw sample reads into classified events at a configured rate.

    Args:
        pattern: Pin pattern used to classify samples.
        samples_per_second: Output event rate (1 to 100000).

    Raises:
        ValueError: If the sample rate is out of range.
    """

    def __init__(self, pattern: PinPattern, samples_per_second: int) -> None:
        if not 1 <= samples_per_second <= RAW_SAMPLE_RATE:
            raise ValueError(
                f"samples_per_second must be 1-{RAW_SAMPLE_RATE}, got {samples_per_second}"
            )
        self._pattern = pattern
        self._group_size = RAW_SAMPLE_RATE // samples_per_second
        self._currents: list[float] = []
        self._bits: list[int] = []

    @property
    def group_size(self) -> int:
        """Number of raw samples combined into one event."""
        return self._group_size

    @property
    def pending(self) -> int:
        """Number of raw samples waiting for their group to complete."""
        return len(self._currents)

    def feed(self, currents: Sequence[float], bits: Sequence[int]) -> list[ClassifiedEvent]:
        """Add raw samples and return events for every completed group.

        Args:
            currents: Raw currents in uA.
            bits: Packed logic levels, same length as ``currents``.

        Returns:
            Classified events in sample order (possibly empty).

        Raises:
            ValueError: If the two sequences differ in length.
        """
        if len(currents) != len(bits):
            raise ValueError(
                f"got {len(currents)} currents but {len(bits)} logic samples"
            )
        self._currents.extend(currents)
        self._bits.extend(bits)

        size = self._group_size
        complete = len(self._currents) // size * size
        events = [
            classify_group(
                self._currents[start : start + size],
                self._bits[start : start + size],
                self._pattern,
            )
            for start in range(0, complete, size)
        ]
        del self._currents[:complete]
        del self._bits[:complete]
        return events
