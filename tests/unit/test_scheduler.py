"""Tests for the clock-driven scheduler."""

from __future__ import annotations

import pytest

from loadstage._internal.errors import ConfigError, EngineError
from loadstage.engine.scheduler import ScaleCommand, ScaleDirection, Scheduler
from loadstage.patterns.staged import StagedPattern


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pattern() -> StagedPattern:
    return StagedPattern([("10s", 10), ("10s", 10), ("10s", 0)])


class TestScaleCommand:
    """Tests for the ScaleCommand dataclass."""

    def test_fields_are_set(self) -> None:
        cmd = ScaleCommand(
            elapsed_seconds=1.0,
            target_concurrency=10,
            direction=ScaleDirection.UP,
            delta=10,
        )
        assert cmd.elapsed_seconds == 1.0
        assert cmd.target_concurrency == 10
        assert cmd.direction == ScaleDirection.UP
        assert cmd.delta == 10

    def test_frozen_dataclass(self) -> None:
        cmd = ScaleCommand(
            elapsed_seconds=0.0,
            target_concurrency=5,
            direction=ScaleDirection.HOLD,
            delta=0,
        )
        with pytest.raises(AttributeError):
            cmd.delta = 99  # type: ignore[misc]


class TestSchedulerClock:
    """Tests for the live, clock-reading side of the scheduler."""

    def test_elapsed_before_start_raises(self, pattern: StagedPattern, clock: FakeClock) -> None:
        scheduler = Scheduler(pattern, clock=clock)
        assert not scheduler.started
        with pytest.raises(EngineError, match="not been started"):
            scheduler.elapsed()

    def test_elapsed_follows_clock(self, pattern: StagedPattern, clock: FakeClock) -> None:
        scheduler = Scheduler(pattern, clock=clock)
        scheduler.start()
        assert scheduler.started
        assert scheduler.elapsed() == 0.0
        clock.advance(7.5)
        assert scheduler.elapsed() == 7.5

    def test_current_target_tracks_pattern(
        self, pattern: StagedPattern, clock: FakeClock
    ) -> None:
        scheduler = Scheduler(pattern, clock=clock)
        scheduler.start()
        assert scheduler.current_target() == 0
        clock.advance(5.0)
        assert scheduler.current_target() == 5
        clock.advance(10.0)
        assert scheduler.current_target() == 10
        clock.advance(10.0)
        assert scheduler.current_target() == 5

    def test_is_complete_at_total_duration(
        self, pattern: StagedPattern, clock: FakeClock
    ) -> None:
        scheduler = Scheduler(pattern, clock=clock)
        scheduler.start()
        clock.advance(29.5)
        assert not scheduler.is_complete()
        clock.advance(0.5)
        assert scheduler.is_complete()
        assert scheduler.current_target() == 0

    def test_next_command_directions(self, pattern: StagedPattern, clock: FakeClock) -> None:
        scheduler = Scheduler(pattern, clock=clock)
        scheduler.start()

        clock.advance(4.0)
        up = scheduler.next_command()
        assert up.direction == ScaleDirection.UP
        assert up.target_concurrency == 4
        assert up.delta == 4

        clock.advance(11.0)
        reach_peak = scheduler.next_command()
        assert reach_peak.direction == ScaleDirection.UP
        assert reach_peak.delta == 6

        clock.advance(1.0)
        hold = scheduler.next_command()
        assert hold.direction == ScaleDirection.HOLD
        assert hold.delta == 0

        clock.advance(9.0)
        down = scheduler.next_command()
        assert down.direction == ScaleDirection.DOWN
        assert down.target_concurrency == 5
        assert down.delta == 5

    def test_restart_resets_last_target(self, pattern: StagedPattern, clock: FakeClock) -> None:
        scheduler = Scheduler(pattern, clock=clock)
        scheduler.start()
        clock.advance(10.0)
        scheduler.next_command()
        scheduler.start()
        clock.advance(5.0)
        cmd = scheduler.next_command()
        assert cmd.direction == ScaleDirection.UP
        assert cmd.delta == 5

    @pytest.mark.parametrize("tick", [0, -1.0])
    def test_invalid_tick_interval(self, pattern: StagedPattern, tick: float) -> None:
        with pytest.raises(ConfigError, match="tick_interval"):
            Scheduler(pattern, tick_interval=tick)


class TestSchedulerPreview:
    """Tests for the clock-free preview of a schedule."""

    def test_preview_starts_with_zero_and_ends_at_zero(self, pattern: StagedPattern) -> None:
        commands = list(Scheduler(pattern, tick_interval=5.0).iter_commands())
        assert commands[0].target_concurrency == 0
        assert commands[0].direction == ScaleDirection.HOLD
        assert commands[-1].elapsed_seconds == 30.0
        assert commands[-1].target_concurrency == 0

    def test_preview_directions(self, pattern: StagedPattern) -> None:
        commands = list(Scheduler(pattern, tick_interval=5.0).iter_commands())
        targets = [c.target_concurrency for c in commands]
        assert targets == [0, 5, 10, 10, 10, 5, 0]
        assert commands[1].direction == ScaleDirection.UP
        assert commands[3].direction == ScaleDirection.HOLD
        assert commands[5].direction == ScaleDirection.DOWN

    def test_total_ticks(self, pattern: StagedPattern) -> None:
        assert Scheduler(pattern, tick_interval=5.0).total_ticks == 7
        assert Scheduler(pattern, tick_interval=1.0).total_ticks == 31

    def test_preview_does_not_start(self, pattern: StagedPattern, clock: FakeClock) -> None:
        scheduler = Scheduler(pattern, clock=clock)
        list(scheduler.iter_commands())
        assert not scheduler.started

    def test_peak_target(self, pattern: StagedPattern) -> None:
        assert Scheduler(pattern, tick_interval=5.0).peak_target == 10

    def test_peak_target_is_at_tick_resolution(self) -> None:
        spike = StagedPattern([("1s", 10), ("1s", 0)])
        assert Scheduler(spike, tick_interval=0.3).peak_target == 9
        assert Scheduler(spike, tick_interval=0.5).peak_target == 10
