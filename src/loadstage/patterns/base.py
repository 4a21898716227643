"""Abstract base class for virtual-user load patterns."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from loadstage._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Iterator


class LoadPattern(ABC):
    """Abstract base for load patterns.

    A load pattern defines how the target number of virtual users changes
    over elapsed time.  Concrete subclasses implement :meth:`target_at`,
    a pure function of elapsed seconds, and report their
    :attr:`total_duration`.  Past the total duration the target is 0.

    Example::

        pattern = StagedPattern([("30s", 500), ("1m30s", 500), ("20s", 0)])
        for elapsed, users in pattern.iter_concurrency(tick_interval=10.0):
            print(f"t={elapsed:.0f}s -> {users} users")
    """

    @property
    @abstractmethod
    def total_duration(self) -> float:
        """Return the number of seconds the pattern spans."""

    @abstractmethod
    def target_at(self, elapsed: float) -> int:
        """Return the target virtual-user count at *elapsed* seconds.

        Args:
            elapsed: Seconds since the start of the run.

        Returns:
            A non-negative virtual-user count.
        """

    @abstractmethod
    def describe(self) -> str:
        """Return a human-readable description of this pattern.

        Returns:
            A short string summarising the pattern configuration, suitable
            for logs and the console header.
        """

    def iter_concurrency(self, tick_interval: float = 1.0) -> Iterator[tuple[float, int]]:
        """Yield ``(elapsed_seconds, target)`` at each tick up to the end.

        The last tick is the total duration itself, where the target is 0.

        Args:
            tick_interval: Seconds between ticks.  Defaults to 1.0.

        Yields:
            ``(elapsed_seconds, target)`` tuples.
        """
        _validate_positive(tick_interval, "tick_interval")
        total = self.total_duration
        tick = 0
        while True:
            elapsed = tick * tick_interval
            if elapsed >= total:
                yield (total, self.target_at(total))
                return
            yield (elapsed, self.target_at(elapsed))
            tick += 1


def _validate_positive(value: float, name: str) -> None:
    """Raise :class:`ConfigError` if *value* is not strictly positive.

    Args:
        value: The numeric value to validate.
        name: Parameter name used in the error message.

    Raises:
        ConfigError: If *value* is not > 0.
    """
    if value <= 0:
        msg = f"{name} must be positive, got {value}"
        raise ConfigError(msg)


def _validate_non_negative(value: float, name: str) -> None:
    """Raise :class:`ConfigError` if *value* is negative.

    Args:
        value: The numeric value to validate.
        name: Parameter name used in the error message.

    Raises:
        ConfigError: If *value* is < 0.
    """
    if value < 0:
        msg = f"{name} must be non-negative, got {value}"
        raise ConfigError(msg)
