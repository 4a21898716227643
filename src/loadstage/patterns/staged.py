"""Staged pattern: a sequence of linear ramps between virtual-user targets."""

from __future__ import annotations

import bisect
import itertools
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loadstage._internal.errors import ConfigError
from loadstage.patterns.base import LoadPattern, _validate_non_negative, _validate_positive

if TYPE_CHECKING:
    from collections.abc import Iterable

    from loadstage._internal.types import DurationLike

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: DurationLike) -> float:
    """Convert a duration to seconds.

    Accepts plain numbers (seconds), numeric strings, and k6-style duration
    strings made of ``h``, ``m``, ``s`` and ``ms`` parts such as ``"30s"``,
    ``"1m30s"`` or ``"1h5m"``.

    Args:
        value: Duration to convert.

    Returns:
        Duration in seconds.

    Raises:
        ConfigError: If the string is not a valid duration.
    """
    if isinstance(value, bool):
        msg = f"Invalid duration: {value!r}"
        raise ConfigError(msg)
    try:
        seconds = float(value)
    except TypeError:
        msg = f"Invalid duration: {value!r}"
        raise ConfigError(msg) from None
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            msg = f"Invalid duration: {value!r}"
            raise ConfigError(msg)
        return seconds

    text = value.strip()  # type: ignore[union-attr]

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        number, unit = match.groups()
        total += float(number) * _UNIT_SECONDS[unit]
        pos = match.end()

    if pos == 0 or pos != len(text):
        msg = f"Invalid duration: {value!r} (expected e.g. '30s', '1m30s', '500ms')"
        raise ConfigError(msg)
    return total


def format_duration(seconds: float) -> str:
    """Format seconds as a compact duration string (``"1m30s"``)."""
    if seconds < 1:
        return f"{seconds * 1000:g}ms"
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs:g}s")
    return "".join(parts)


@dataclass(frozen=True)
class Stage:
    """One ramp segment of a staged run.

    During the stage the target moves linearly from the previous stage's
    target (0 for the first stage) to *target*.

    Attributes:
        duration: Length of the stage in seconds.  Must be > 0.
        target: Virtual-user count reached at the end of the stage.
            Must be >= 0.
    """

    duration: float
    target: int

    def __post_init__(self) -> None:
        if isinstance(self.target, bool) or not isinstance(self.target, int):
            msg = f"stage target must be an integer, got {self.target!r}"
            raise ConfigError(msg)
        _validate_positive(self.duration, "stage duration")
        _validate_non_negative(self.target, "stage target")

    @classmethod
    def parse(cls, text: str) -> Stage:
        """Build a stage from ``"<duration>:<target>"`` text, e.g. ``"30s:500"``.

        Raises:
            ConfigError: If the text is malformed.
        """
        duration_text, sep, target_text = text.partition(":")
        if not sep:
            msg = f"Invalid stage {text!r}, expected '<duration>:<target>' (e.g. '30s:500')"
            raise ConfigError(msg)
        try:
            target = int(target_text)
        except ValueError:
            msg = f"Invalid stage target in {text!r}: {target_text!r}"
            raise ConfigError(msg) from None
        return cls(duration=parse_duration(duration_text), target=target)


StageLike = Stage | tuple["DurationLike", int] | Mapping[str, object]


def _coerce_stage(item: StageLike, index: int) -> Stage:
    if isinstance(item, Stage):
        return item
    if isinstance(item, Mapping):
        if "duration" not in item or "target" not in item:
            msg = f"stages[{index}] must have 'duration' and 'target' keys"
            raise ConfigError(msg)
        duration, target = item["duration"], item["target"]
    else:
        try:
            duration, target = item
        except (TypeError, ValueError):
            msg = f"stages[{index}] must be a Stage, a (duration, target) pair or a mapping"
            raise ConfigError(msg) from None
    return Stage(duration=parse_duration(duration), target=target)  # type: ignore[arg-type]


class StagedPattern(LoadPattern):
    """Virtual-user targets defined by an ordered list of stages.

    Within each stage the target is linearly interpolated between the stage's
    start target (the previous stage's target, or 0) and its own target, and
    rounded to the nearest integer.  Stages are half-open, so at a boundary
    the next stage takes effect immediately.  Once all stage durations are
    exhausted the target is 0.

    Args:
        stages: Stages in run order.  Items may be :class:`Stage` objects,
            ``(duration, target)`` pairs or ``{"duration": ..., "target": ...}``
            mappings; durations accept seconds or strings like ``"1m30s"``.

    Raises:
        ConfigError: If *stages* is empty or any stage is invalid.

    Example::

        pattern = StagedPattern([("30s", 500), ("1m30s", 500), ("20s", 0)])
        assert pattern.target_at(15.0) == 250
        assert pattern.target_at(60.0) == 500
        assert pattern.target_at(140.0) == 0
    """

    def __init__(self, stages: Iterable[StageLike]) -> None:
        validated = tuple(_coerce_stage(item, i) for i, item in enumerate(stages))
        if not validated:
            msg = "stages must contain at least one stage"
            raise ConfigError(msg)
        self._stages = validated
        self._ends = list(itertools.accumulate(s.duration for s in validated))

    @property
    def stages(self) -> tuple[Stage, ...]:
        """Return the validated stages."""
        return self._stages

    @property
    def total_duration(self) -> float:
        """Return the summed duration of all stages."""
        return self._ends[-1]

    def target_at(self, elapsed: float) -> int:
        """Return the interpolated target at *elapsed* seconds.

        Args:
            elapsed: Seconds since the start of the run.

        Returns:
            Target virtual-user count; 0 before the start and after the end.
        """
        if elapsed < 0 or elapsed >= self._ends[-1]:
            return 0
        index = bisect.bisect_right(self._ends, elapsed)
        stage = self._stages[index]
        stage_start = self._ends[index - 1] if index else 0.0
        start_target = self._stages[index - 1].target if index else 0
        fraction = (elapsed - stage_start) / stage.duration
        return round(start_target + (stage.target - start_target) * fraction)

    def describe(self) -> str:
        """Return a human-readable description.

        Returns:
            Description string listing each stage.
        """
        parts = ", ".join(f"{format_duration(s.duration)} -> {s.target}" for s in self._stages)
        return f"Stages: {parts} ({format_duration(self.total_duration)} total)"
