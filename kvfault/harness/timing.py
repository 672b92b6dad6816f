"""
Time units and jitter distributions for the fault-injection harness.

All durations use seconds as the canonical unit. Helper functions provide
readable constructors for the millisecond values the harness paces itself
with (election timeouts, reshuffle jitter, recovery windows).
"""

from abc import ABC, abstractmethod
from typing import NewType

import numpy as np

# Explicit time unit - all durations are in seconds
Seconds = NewType("Seconds", float)


def milliseconds(ms: float) -> Seconds:
    """Convert milliseconds to seconds."""
    return Seconds(ms / 1000.0)


def seconds(s: float) -> Seconds:
    """Tag a plain number as a duration in seconds."""
    return Seconds(float(s))


# Base interval used to detect loss of leadership and to pace the
# partitioner's reshuffles and the post-heal stabilization waits.
ELECTION_TIMEOUT = seconds(1.0)

# Upper bound (exclusive) of the random delay added to each reshuffle.
PARTITION_JITTER = milliseconds(200)


class Distribution(ABC):
    """Abstract base class for duration distributions."""

    @abstractmethod
    def sample(self, rng: np.random.Generator) -> float:
        """Sample a value from the distribution.

        Args:
            rng: NumPy random number generator for reproducibility.

        Returns:
            A sampled value from the distribution.
        """
        pass

    @property
    @abstractmethod
    def mean(self) -> float:
        """Theoretical mean (expected value) of the distribution."""
        pass


class Uniform(Distribution):
    """Uniform distribution over [low, high).

    Args:
        low: Lower bound (inclusive).
        high: Upper bound (exclusive).
    """

    def __init__(self, low: float, high: float):
        if low >= high:
            raise ValueError(f"Low must be less than high, got low={low}, high={high}")
        self.low = low
        self.high = high

    @property
    def mean(self) -> float:
        return (self.low + self.high) / 2.0

    def sample(self, rng: np.random.Generator) -> float:
        """Sample a value uniformly from [low, high)."""
        return rng.uniform(self.low, self.high)

    def __repr__(self) -> str:
        return f"Uniform(low={self.low}, high={self.high})"


class Constant(Distribution):
    """Constant (deterministic) distribution.

    Always returns the same value. Useful for tests that need an exact
    reshuffle interval.

    Args:
        value: The constant value to return.
    """

    def __init__(self, value: float):
        self.value = value

    @property
    def mean(self) -> float:
        return self.value

    def sample(self, rng: np.random.Generator) -> float:
        """Return the constant value."""
        return self.value

    def __repr__(self) -> str:
        return f"Constant(value={self.value})"


def jitter(max_jitter: float) -> Distribution:
    """Distribution for a reshuffle jitter in [0, max_jitter).

    A non-positive bound yields no jitter at all.
    """
    if max_jitter <= 0:
        return Constant(0.0)
    return Uniform(0.0, max_jitter)
