"""Clock-driven scheduler that turns a LoadPattern into scale commands."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from loadstage._internal.errors import EngineError
from loadstage.patterns.base import _validate_positive

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from loadstage.patterns.base import LoadPattern


class ScaleDirection(Enum):
    """Direction of a concurrency scale event."""

    UP = auto()
    DOWN = auto()
    HOLD = auto()


@dataclass(frozen=True)
class ScaleCommand:
    """A command to adjust the number of active virtual users.

    Attributes:
        elapsed_seconds: Time offset from the run start.
        target_concurrency: Desired number of active virtual users.
        direction: Whether this is scaling up, down, or holding steady.
        delta: Absolute change in virtual user count (always >= 0).
    """

    elapsed_seconds: float
    target_concurrency: int
    direction: ScaleDirection
    delta: int


def _make_command(elapsed: float, target: int, previous: int) -> ScaleCommand:
    delta = target - previous
    if delta > 0:
        direction = ScaleDirection.UP
    elif delta < 0:
        direction = ScaleDirection.DOWN
    else:
        direction = ScaleDirection.HOLD
    return ScaleCommand(
        elapsed_seconds=elapsed,
        target_concurrency=target,
        direction=direction,
        delta=abs(delta),
    )


class Scheduler:
    """Reads a monotonic clock and reports the pattern's target over time.

    The only state beyond the pattern is the clock reading taken by
    :meth:`start` and the last target handed out by :meth:`next_command`.

    Args:
        pattern: The load pattern to follow.
        tick_interval: Seconds between reconciliations.
        clock: Monotonic clock returning seconds.  Defaults to
            :func:`time.monotonic`.
    """

    def __init__(
        self,
        pattern: LoadPattern,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        _validate_positive(tick_interval, "tick_interval")
        self._pattern = pattern
        self._tick_interval = tick_interval
        self._clock = clock
        self._start: float | None = None
        self._last_target = 0

    @property
    def pattern(self) -> LoadPattern:
        """Return the pattern being followed."""
        return self._pattern

    @property
    def tick_interval(self) -> float:
        """Return the seconds between reconciliations."""
        return self._tick_interval

    @property
    def started(self) -> bool:
        """Return True once :meth:`start` has been called."""
        return self._start is not None

    def start(self) -> None:
        """Record the run start from the clock."""
        self._start = self._clock()
        self._last_target = 0

    def elapsed(self) -> float:
        """Return seconds since :meth:`start`.

        Raises:
            EngineError: If the scheduler has not been started.
        """
        if self._start is None:
            msg = "Scheduler has not been started"
            raise EngineError(msg)
        return self._clock() - self._start

    def current_target(self) -> int:
        """Return the pattern's target for the current clock reading."""
        return self._pattern.target_at(self.elapsed())

    def is_complete(self) -> bool:
        """Return True once every stage duration has elapsed."""
        return self.elapsed() >= self._pattern.total_duration

    def next_command(self) -> ScaleCommand:
        """Read the clock and return the command for the current tick.

        The delta is measured against the target of the previous call.
        """
        elapsed = self.elapsed()
        target = self._pattern.target_at(elapsed)
        command = _make_command(elapsed, target, self._last_target)
        self._last_target = target
        return command

    def iter_commands(self) -> Iterator[ScaleCommand]:
        """Yield the planned commands for every tick of the pattern.

        Does not read the clock; used for the run preview shown before
        the first tick.

        Yields:
            A ScaleCommand for each tick in the pattern's timeline.
        """
        prev_concurrency = 0
        for elapsed, target in self._pattern.iter_concurrency(self._tick_interval):
            yield _make_command(elapsed, target, prev_concurrency)
            prev_concurrency = target

    @property
    def total_ticks(self) -> int:
        """Return the expected number of ticks for this schedule."""
        return sum(1 for _ in self._pattern.iter_concurrency(self._tick_interval))

    @property
    def peak_target(self) -> int:
        """Return the highest target any planned tick will issue."""
        return max((c.target_concurrency for c in self.iter_commands()), default=0)
