"""Virtual user: runs scenario iterations until told to stop."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from loadstage._internal.errors import EngineError, RequestError
from loadstage._internal.logging import get_logger
from loadstage.dsl.context import IterationContext

if TYPE_CHECKING:
    from loadstage.dsl.http_client import Transport
    from loadstage.dsl.scenario import ScenarioDefinition
    from loadstage.metrics.sink import MetricsSink

logger = get_logger("engine.user")


class UserState(Enum):
    """Lifecycle of a virtual user.

    IDLE -> RUNNING -> (SLEEPING -> RUNNING)* -> STOPPED
    RUNNING or SLEEPING -> STOPPING (stop requested) -> STOPPED
    RUNNING or STOPPING -> CRASHED (scenario error)
    """

    IDLE = auto()
    RUNNING = auto()
    SLEEPING = auto()
    STOPPING = auto()
    STOPPED = auto()
    CRASHED = auto()


@dataclass(frozen=True)
class UserExit:
    """Final status a virtual user reports when its loop ends.

    Attributes:
        user_id: The virtual user.
        state: STOPPED or CRASHED.
        iterations: Completed iterations.
        error_kind: Exception type name for a crash.
        error: Exception message for a crash.
    """

    user_id: int
    state: UserState
    iterations: int
    error_kind: str | None = None
    error: str | None = None

    @property
    def crashed(self) -> bool:
        """Return True if the user ended because of a scenario error."""
        return self.state is UserState.CRASHED


class VirtualUser:
    """A simulated client looping over the scenario.

    Each iteration calls the scenario function with a fresh
    :class:`IterationContext` and records the result in the sink.  After
    an iteration the user sleeps for the scenario's pause.

    Stop policy: :meth:`request_stop` never interrupts a request.  The
    current iteration runs to completion; a pause that is in progress is
    cut short.  Failed requests and failed checks are recorded and the loop
    continues; any other scenario exception crashes this user only.

    Args:
        user_id: Unique id within the run.
        scenario: The scenario to execute.
        transport: Transport used for every request of this user.
        sink: Metrics sink receiving iteration results.
        base_url: Base URL used when the scenario declares none.
        base_url_override: Base URL that replaces the scenario's own.
    """

    def __init__(
        self,
        user_id: int,
        scenario: ScenarioDefinition,
        transport: Transport,
        sink: MetricsSink,
        *,
        base_url: str = "",
        base_url_override: str | None = None,
    ) -> None:
        self.user_id = user_id
        self._scenario = scenario
        self._transport = transport
        self._sink = sink
        self._base_url = base_url_override or scenario.base_url or base_url
        self._stop_event = asyncio.Event()
        self._state = UserState.IDLE
        self._iterations = 0
        self._forced = False

    @property
    def state(self) -> UserState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def iterations(self) -> int:
        """Return the number of completed iterations."""
        return self._iterations

    @property
    def stop_requested(self) -> bool:
        """Return True once :meth:`request_stop` has been called."""
        return self._stop_event.is_set()

    @property
    def forced(self) -> bool:
        """Return True if the user was cancelled instead of draining."""
        return self._forced

    def request_stop(self) -> None:
        """Ask the user to stop after its current iteration.

        A started user moves to STOPPING until its loop ends.
        """
        self._stop_event.set()
        if self._state in (UserState.RUNNING, UserState.SLEEPING):
            self._state = UserState.STOPPING

    async def run(self) -> UserExit:
        """Loop over iterations until a stop is requested or the scenario crashes.

        Returns:
            The user's final status.

        Raises:
            EngineError: If the user was already started.
            asyncio.CancelledError: If the task is cancelled (forced stop).
        """
        if self._state is not UserState.IDLE:
            msg = f"Virtual user {self.user_id} was already started"
            raise EngineError(msg)

        self._state = UserState.RUNNING
        try:
            while not self._stop_event.is_set():
                await self._run_iteration()
                if self._stop_event.is_set():
                    break
                if self._scenario.pause > 0:
                    await self._pause(self._scenario.pause)
                else:
                    # Yield so a scenario that never suspends cannot starve the loop
                    await asyncio.sleep(0)
        except asyncio.CancelledError:
            self._forced = True
            self._state = UserState.STOPPED
            raise
        except Exception as exc:
            self._state = UserState.CRASHED
            kind = type(exc).__name__
            self._sink.record_crash(self.user_id, kind)
            logger.warning(
                "Virtual user %d crashed after %d iterations: %s: %s",
                self.user_id,
                self._iterations,
                kind,
                exc,
                extra={"user_id": self.user_id},
            )
            return UserExit(
                user_id=self.user_id,
                state=UserState.CRASHED,
                iterations=self._iterations,
                error_kind=kind,
                error=str(exc),
            )

        logger.debug("Virtual user %d stopped after %d iterations", self.user_id, self._iterations)
        self._state = UserState.STOPPED
        return UserExit(
            user_id=self.user_id,
            state=UserState.STOPPED,
            iterations=self._iterations,
        )

    async def _run_iteration(self) -> None:
        """Run the scenario once and record the result."""
        ctx = IterationContext(
            self._transport,
            user_id=self.user_id,
            iteration=self._iterations,
            base_url=self._base_url,
            headers=self._scenario.default_headers,
        )
        start = time.monotonic()
        try:
            await self._scenario.func(ctx)
        except RequestError:
            # Already recorded as a failed outcome; the iteration ends here.
            pass
        except Exception:
            self._sink.record(ctx.result((time.monotonic() - start) * 1000, aborted=True))
            raise

        self._sink.record(ctx.result((time.monotonic() - start) * 1000))
        self._iterations += 1

    async def _pause(self, seconds: float) -> None:
        """Sleep between iterations, waking early on a stop request."""
        self._state = UserState.SLEEPING
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass
        finally:
            if self._state is UserState.SLEEPING:
                self._state = UserState.RUNNING
