"""HDR histogram of request latencies.

Wraps ``hdrh.histogram.HdrHistogram``, which only stores integers, so
latencies are recorded as whole microseconds and reported back in
milliseconds.
"""

from __future__ import annotations

from hdrh.histogram import HdrHistogram  # type: ignore[import-untyped]

# Range: 1 microsecond to 10 minutes (in microseconds)
_LOWEST_TRACKABLE_US = 1
_HIGHEST_TRACKABLE_US = 600_000_000
_SIGNIFICANT_DIGITS = 3


class LatencyHistogram:
    """Bounded-memory latency distribution with millisecond accessors.

    Values outside the trackable range are clamped instead of dropped, so
    every recorded request counts toward the total.

    Attributes:
        lowest_us: Lowest trackable value in microseconds.
        highest_us: Highest trackable value in microseconds.
    """

    def __init__(
        self,
        lowest_us: int = _LOWEST_TRACKABLE_US,
        highest_us: int = _HIGHEST_TRACKABLE_US,
        significant_digits: int = _SIGNIFICANT_DIGITS,
    ) -> None:
        self.lowest_us = lowest_us
        self.highest_us = highest_us
        self._histogram: HdrHistogram = HdrHistogram(  # type: ignore[no-any-unimported]
            lowest_us, highest_us, significant_digits
        )

    def record(self, latency_ms: float) -> None:
        """Record one latency in milliseconds, clamped to the trackable range."""
        value_us = int(latency_ms * 1000)
        value_us = max(self.lowest_us, min(value_us, self.highest_us))
        self._histogram.record_value(value_us)

    @property
    def count(self) -> int:
        """Return the number of recorded values."""
        return int(self._histogram.total_count)

    def percentile(self, percentile: float) -> float:
        """Return the latency at *percentile* (0-100) in ms, or 0.0 if empty."""
        if self.count == 0:
            return 0.0
        return float(self._histogram.get_value_at_percentile(percentile)) / 1000.0

    def min(self) -> float:
        """Return the smallest recorded latency in ms, or 0.0 if empty."""
        if self.count == 0:
            return 0.0
        return float(self._histogram.get_min_value()) / 1000.0

    def max(self) -> float:
        """Return the largest recorded latency in ms, or 0.0 if empty."""
        if self.count == 0:
            return 0.0
        return float(self._histogram.get_max_value()) / 1000.0

    def mean(self) -> float:
        """Return the mean recorded latency in ms, or 0.0 if empty."""
        if self.count == 0:
            return 0.0
        return float(self._histogram.get_mean_value()) / 1000.0
