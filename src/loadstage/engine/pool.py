"""Executor pool that keeps the number of running virtual users on target."""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loadstage._internal.logging import get_logger
from loadstage.engine.user import VirtualUser
from loadstage.metrics.models import StopReport

if TYPE_CHECKING:
    from loadstage.dsl.http_client import Transport
    from loadstage.dsl.scenario import ScenarioDefinition
    from loadstage.engine.user import UserExit
    from loadstage.metrics.sink import MetricsSink

logger = get_logger("engine.pool")

# Seconds to wait for cancelled users to unwind after a forced stop.
_CANCEL_TIMEOUT = 2.0


@dataclass(frozen=True)
class ReconcileResult:
    """What one :meth:`ExecutorPool.reconcile` call changed.

    Attributes:
        target: Requested number of active users.
        spawned: Users started by this call.
        signalled: Users asked to stop by this call.
    """

    target: int
    spawned: int = 0
    signalled: int = 0


@dataclass(eq=False)
class _UserHandle:
    user: VirtualUser
    task: asyncio.Task[UserExit]


class ExecutorPool:
    """Owns the asyncio tasks of all virtual users in a run.

    Users are *active* from spawn until they are asked to stop or their
    task ends.  Users asked to stop by a scale-down move to the *draining*
    set and finish their current iteration; ``reconcile`` never cancels a
    task.  Only :meth:`stop_all` cancels, and only after its grace period.

    A crashed user leaves the active set as soon as its task ends.  The pool
    does not respawn it; the next ``reconcile`` tick spawns a replacement.

    Must be used from within a running event loop.

    Args:
        scenario: Scenario every user runs.
        transport: Transport shared by every user.
        sink: Metrics sink shared by every user.
        base_url: Base URL used when the scenario declares none.
        base_url_override: Base URL that replaces the scenario's own.
    """

    def __init__(
        self,
        scenario: ScenarioDefinition,
        transport: Transport,
        sink: MetricsSink,
        *,
        base_url: str = "",
        base_url_override: str | None = None,
    ) -> None:
        self._scenario = scenario
        self._transport = transport
        self._sink = sink
        self._base_url = base_url
        self._base_url_override = base_url_override
        self._active: list[_UserHandle] = []
        self._draining: list[_UserHandle] = []
        self._exits: list[UserExit] = []
        self._next_user_id = 0

    def active_count(self) -> int:
        """Return the number of users running and not asked to stop."""
        return len(self._active)

    def draining_count(self) -> int:
        """Return the number of users finishing an iteration after a stop request."""
        return len(self._draining)

    @property
    def spawned_count(self) -> int:
        """Return the number of users spawned over the pool's lifetime."""
        return self._next_user_id

    @property
    def exits(self) -> list[UserExit]:
        """Return the exit reports of users whose loops have ended."""
        return list(self._exits)

    def active_users(self) -> list[VirtualUser]:
        """Return the active users, oldest first."""
        return [h.user for h in self._active]

    def reconcile(self, target: int) -> ReconcileResult:
        """Grow or shrink the active set to *target* users.

        Scale-up spawns fresh users.  Scale-down asks the most recently
        spawned users to stop (LIFO) after their current iteration.

        Args:
            target: Desired number of active users.

        Returns:
            What was spawned and signalled.

        Raises:
            ValueError: If *target* is negative.
        """
        if target < 0:
            msg = f"target must be non-negative, got {target}"
            raise ValueError(msg)

        current = len(self._active)
        if target > current:
            for _ in range(target - current):
                self._spawn()
            return ReconcileResult(target=target, spawned=target - current)

        if target < current:
            for _ in range(current - target):
                handle = self._active.pop()
                handle.user.request_stop()
                self._draining.append(handle)
            return ReconcileResult(target=target, signalled=current - target)

        return ReconcileResult(target=target)

    def _spawn(self) -> None:
        user_id = self._next_user_id
        self._next_user_id += 1
        user = VirtualUser(
            user_id,
            self._scenario,
            self._transport,
            self._sink,
            base_url=self._base_url,
            base_url_override=self._base_url_override,
        )
        task = asyncio.create_task(user.run(), name=f"virtual-user-{user_id}")
        handle = _UserHandle(user=user, task=task)
        self._active.append(handle)
        task.add_done_callback(functools.partial(self._on_user_done, handle))

    def _on_user_done(self, handle: _UserHandle, task: asyncio.Task[UserExit]) -> None:
        if handle in self._active:
            self._active.remove(handle)
        elif handle in self._draining:
            self._draining.remove(handle)

        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                "Virtual user %d failed outside its scenario",
                handle.user.user_id,
                exc_info=exc,
            )
            return

        result = task.result()
        self._exits.append(result)
        if result.crashed:
            logger.warning(
                "Virtual user %d removed from pool after crash (%s); "
                "the next tick spawns a replacement",
                result.user_id,
                result.error_kind,
            )

    async def stop_all(self, grace_timeout: float) -> StopReport:
        """Stop every user, draining first and cancelling after *grace_timeout*.

        Args:
            grace_timeout: Seconds to wait for users to finish their
                current iteration.

        Returns:
            How many users drained and how many were force-stopped.  Forced
            stops are also recorded in the metrics sink.
        """
        handles = [*self._active, *self._draining]
        self._draining.extend(self._active)
        self._active.clear()

        if not handles:
            return StopReport()

        for handle in handles:
            handle.user.request_stop()

        tasks = [h.task for h in handles]
        _done, pending = await asyncio.wait(tasks, timeout=grace_timeout)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending, timeout=_CANCEL_TIMEOUT)
            logger.warning(
                "Force-stopped %d virtual users after %.1fs grace period",
                len(pending),
                grace_timeout,
            )

        forced = len(pending)
        self._sink.record_forced(forced)
        logger.debug("All virtual users stopped: graceful=%d, forced=%d", len(tasks) - forced, forced)
        return StopReport(graceful=len(tasks) - forced, forced=forced)
