"""Engine: drives a staged run from first tick to final summary."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import signal
import sys
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from loadstage._internal.config import load_config
from loadstage._internal.errors import ConfigError, EngineError
from loadstage._internal.logging import get_logger, setup_logging
from loadstage.dsl.http_client import HttpTransport
from loadstage.engine.pool import ExecutorPool
from loadstage.engine.scheduler import ScaleDirection, Scheduler
from loadstage.metrics.models import RunSummary, StopReport
from loadstage.metrics.sink import MetricsSink
from loadstage.patterns.base import LoadPattern
from loadstage.patterns.staged import StagedPattern

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from loadstage._internal.config import LoadStageConfig
    from loadstage.dsl.http_client import Transport
    from loadstage.dsl.scenario import ScenarioDefinition
    from loadstage.metrics.models import IntervalSnapshot
    from loadstage.patterns.staged import StageLike

logger = get_logger("engine.session")


class EngineState(Enum):
    """State machine for a run.

    CREATED -> RUNNING -> STOPPING -> COMPLETED
                       -> FAILED (on error)
    """

    CREATED = auto()
    RUNNING = auto()
    STOPPING = auto()
    COMPLETED = auto()
    FAILED = auto()


@dataclass
class RunState:
    """Mutable state of a run in progress, owned by the engine.

    Attributes:
        started_at: Clock reading at the first tick.
        pool: Executor pool holding the virtual-user handles.
        sink: Metrics sink shared by every virtual user.
        elapsed: Seconds since start at the latest tick.
        target: Scheduler target at the latest tick.
        cancelled: True once a cancellation was requested.
        cancel_reason: Why the run was cancelled.
    """

    started_at: float
    pool: ExecutorPool
    sink: MetricsSink
    elapsed: float = 0.0
    target: int = 0
    cancelled: bool = False
    cancel_reason: str | None = None

    @property
    def active_users(self) -> int:
        """Return the number of active virtual users."""
        return self.pool.active_count()


def _resolve_pattern(
    scenario: ScenarioDefinition,
    stages: LoadPattern | Iterable[StageLike] | None,
) -> LoadPattern:
    if stages is None:
        if scenario.stages is None:
            msg = (
                f"No stages given for scenario {scenario.name!r}; pass stages "
                f"or declare them with @scenario(stages=...)"
            )
            raise ConfigError(msg)
        return scenario.stages
    if isinstance(stages, LoadPattern):
        return stages
    return StagedPattern(stages)


class Engine:
    """Runs a scenario through a staged virtual-user ramp.

    Every tick the engine reads the scheduler's target, reconciles the
    executor pool to it and flushes an interval snapshot.  The loop ends
    when all stages have elapsed or :meth:`cancel` is called; the pool is
    then drained with a grace period and the final summary is built from
    the metrics sink.

    Args:
        scenario: The scenario to execute.
        stages: Stages or a LoadPattern.  Defaults to the stages declared on
            the scenario.
        transport: Transport for all requests.  When omitted the engine
            opens and closes an :class:`HttpTransport` itself.
        config: Configuration; defaults to :func:`load_config`.
        base_url: Base URL for relative request paths that replaces the
            scenario's own.  Without it the scenario's base URL is used,
            then ``config.default_base_url``.
        tick_interval: Seconds between reconciliations.  Overrides config.
        grace_timeout: Seconds to let users drain at the end.  Overrides
            config.
        clock: Monotonic clock for the scheduler and metrics.
        on_snapshot: Called with every interval snapshot.
        handle_signals: Cancel the run on SIGINT/SIGTERM.

    Raises:
        ConfigError: If no stages are available or a setting is invalid.
    """

    def __init__(
        self,
        scenario: ScenarioDefinition,
        stages: LoadPattern | Iterable[StageLike] | None = None,
        *,
        transport: Transport | None = None,
        config: LoadStageConfig | None = None,
        base_url: str | None = None,
        tick_interval: float | None = None,
        grace_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_snapshot: Callable[[IntervalSnapshot], None] | None = None,
        handle_signals: bool = False,
    ) -> None:
        self._scenario = scenario
        self._pattern = _resolve_pattern(scenario, stages)
        self._config = config or load_config()
        self._transport = transport
        self._base_url = base_url
        self._tick_interval = (
            tick_interval if tick_interval is not None else self._config.tick_interval
        )
        self._grace_timeout = (
            grace_timeout if grace_timeout is not None else self._config.grace_timeout
        )
        if self._tick_interval <= 0:
            msg = f"tick_interval must be positive, got {self._tick_interval}"
            raise ConfigError(msg)
        if self._grace_timeout < 0:
            msg = f"grace_timeout must be non-negative, got {self._grace_timeout}"
            raise ConfigError(msg)

        self._clock = clock
        self._on_snapshot = on_snapshot
        self._handle_signals = handle_signals

        self._state = EngineState.CREATED
        self._cancel_event = asyncio.Event()
        self._cancel_reason: str | None = None
        self._run_state: RunState | None = None

    @property
    def state(self) -> EngineState:
        """Return the current engine state."""
        return self._state

    @property
    def pattern(self) -> LoadPattern:
        """Return the load pattern being followed."""
        return self._pattern

    @property
    def run_state(self) -> RunState | None:
        """Return the live run state, or None before :meth:`run`."""
        return self._run_state

    @property
    def active_user_count(self) -> int:
        """Return the number of active virtual users."""
        if self._run_state is None:
            return 0
        return self._run_state.active_users

    def cancel(self, reason: str = "cancelled") -> None:
        """Stop the run early.

        The tick loop wakes immediately and proceeds to drain the pool.
        Only the first reason is kept; calls after the tick loop has ended
        are ignored.

        Args:
            reason: Why the run is being cancelled.
        """
        if self._cancel_event.is_set() or self._state not in (
            EngineState.CREATED,
            EngineState.RUNNING,
        ):
            return
        self._cancel_reason = reason
        if self._run_state is not None:
            self._run_state.cancelled = True
            self._run_state.cancel_reason = reason
        logger.info("Cancellation requested: %s", reason)
        self._cancel_event.set()

    async def run(self) -> RunSummary:
        """Execute the run.

        Returns:
            The final run summary.

        Raises:
            EngineError: If the engine was already run or the tick loop
                fails unexpectedly.
        """
        if self._state is not EngineState.CREATED:
            msg = "Engine instances can only run once"
            raise EngineError(msg)

        async with contextlib.AsyncExitStack() as stack:
            transport = self._transport
            if transport is None:
                transport = await stack.enter_async_context(
                    HttpTransport(
                        timeout=self._config.request_timeout,
                        pool_size=self._config.connection_pool_size,
                    )
                )
            return await self._drive(transport)

    async def _drive(self, transport: Transport) -> RunSummary:
        sink = MetricsSink(clock=self._clock)
        pool = ExecutorPool(
            self._scenario,
            transport,
            sink,
            base_url=self._config.default_base_url,
            base_url_override=self._base_url,
        )
        scheduler = Scheduler(self._pattern, self._tick_interval, clock=self._clock)

        logger.info(
            "Starting run: scenario=%s, %s, tick=%.2fs",
            self._scenario.name,
            self._pattern.describe(),
            self._tick_interval,
        )

        scheduler.start()
        start_time = self._clock()
        state = RunState(
            started_at=start_time,
            pool=pool,
            sink=sink,
            cancelled=self._cancel_event.is_set(),
            cancel_reason=self._cancel_reason,
        )
        self._run_state = state
        snapshots: list[IntervalSnapshot] = []
        stop_report = StopReport()

        if self._handle_signals:
            self._install_signal_handlers()
        self._state = EngineState.RUNNING

        try:
            while not self._cancel_event.is_set() and not scheduler.is_complete():
                command = scheduler.next_command()
                pool.reconcile(command.target_concurrency)
                state.elapsed = command.elapsed_seconds
                state.target = command.target_concurrency

                snapshot = sink.flush_interval(
                    elapsed_seconds=command.elapsed_seconds,
                    active_users=pool.active_count(),
                    target_users=command.target_concurrency,
                )
                snapshots.append(snapshot)
                if self._on_snapshot is not None:
                    self._on_snapshot(snapshot)

                if command.direction is not ScaleDirection.HOLD:
                    logger.debug(
                        "Scaled %s by %d to %d users (draining=%d)",
                        command.direction.name.lower(),
                        command.delta,
                        command.target_concurrency,
                        pool.draining_count(),
                        extra={
                            "elapsed": round(command.elapsed_seconds, 3),
                            "target": command.target_concurrency,
                            "active": pool.active_count(),
                        },
                    )

                await self._wait_for_next_tick(scheduler)

        except Exception as exc:
            self._state = EngineState.FAILED
            logger.exception("Run failed")
            raise EngineError("Run failed") from exc
        finally:
            if self._state is not EngineState.FAILED:
                self._state = EngineState.STOPPING
            stop_report = await pool.stop_all(self._grace_timeout)
            if self._handle_signals:
                self._remove_signal_handlers()

        end_time = self._clock()
        total_duration = end_time - start_time

        snapshots.append(
            sink.flush_interval(
                elapsed_seconds=total_duration,
                active_users=0,
                target_users=0,
            )
        )
        final = sink.snapshot()

        self._state = EngineState.COMPLETED
        logger.info(
            "Run %s: duration=%.1fs, iterations=%d, requests=%d, failed_requests=%d, "
            "checks_failed=%d, crashed=%d, forced=%d, p95=%.1fms",
            "cancelled" if state.cancelled else "completed",
            total_duration,
            final.iterations,
            final.total_requests,
            final.failed_requests,
            final.checks_failed,
            final.runners_crashed,
            final.runners_forced,
            final.latency_p95,
        )

        return RunSummary(
            scenario_name=self._scenario.name,
            pattern_description=self._pattern.describe(),
            start_time=start_time,
            end_time=end_time,
            duration_seconds=total_duration,
            cancelled=state.cancelled,
            cancel_reason=state.cancel_reason,
            snapshots=snapshots,
            final=final,
            stop_report=stop_report,
        )

    async def _wait_for_next_tick(self, scheduler: Scheduler) -> None:
        """Sleep until the next tick boundary or the end of the stages, or until cancelled."""
        elapsed = scheduler.elapsed()
        next_tick = (math.floor(elapsed / self._tick_interval) + 1) * self._tick_interval
        delay = min(next_tick, self._pattern.total_duration) - elapsed
        if delay <= 0:
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)

    def _install_signal_handlers(self) -> None:
        """Cancel the run on SIGINT and SIGTERM."""
        loop = asyncio.get_running_loop()

        def _signal_handler() -> None:
            self.cancel("signal received")

        if sys.platform != "win32":
            loop.add_signal_handler(signal.SIGINT, _signal_handler)
            loop.add_signal_handler(signal.SIGTERM, _signal_handler)
        else:
            # Windows doesn't support add_signal_handler
            signal.signal(signal.SIGINT, lambda _s, _f: loop.call_soon_threadsafe(_signal_handler))
            signal.signal(signal.SIGTERM, lambda _s, _f: loop.call_soon_threadsafe(_signal_handler))

    def _remove_signal_handlers(self) -> None:
        """Remove the custom signal handlers, restoring defaults."""
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)


def run_engine(
    scenario: ScenarioDefinition,
    stages: LoadPattern | Iterable[StageLike] | None = None,
    *,
    log_level: int = logging.INFO,
    json_logs: bool = False,
    **engine_kwargs: object,
) -> RunSummary:
    """Run a scenario to completion in a fresh event loop.

    Sets up logging and installs SIGINT/SIGTERM handlers that cancel the
    run gracefully.

    Args:
        scenario: The scenario to execute.
        stages: Stages or a LoadPattern; defaults to the scenario's stages.
        log_level: Logging level.
        json_logs: Emit JSON log lines.
        **engine_kwargs: Extra keyword arguments for :class:`Engine`.

    Returns:
        The final run summary.
    """
    setup_logging(level=log_level, json_format=json_logs)
    engine = Engine(scenario, stages, handle_signals=True, **engine_kwargs)  # type: ignore[arg-type]
    return asyncio.run(engine.run())
