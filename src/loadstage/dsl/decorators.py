"""Decorator for defining load test scenarios."""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING

from loadstage._internal.errors import ScenarioError
from loadstage.dsl.scenario import ScenarioDefinition, ScenarioFunction
from loadstage.patterns.staged import StagedPattern

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from loadstage.patterns.staged import StageLike


def scenario(
    *,
    name: str | None = None,
    pause: float = 0.0,
    stages: Iterable[StageLike] | None = None,
    base_url: str = "",
    default_headers: dict[str, str] | None = None,
) -> Callable[[ScenarioFunction], ScenarioDefinition]:
    """Decorate an async function as a LoadStage scenario.

    The function receives an :class:`~loadstage.dsl.context.IterationContext`
    and runs one iteration per call::

        @scenario(name="health", pause=1.0, stages=[("30s", 500), ("1m30s", 500), ("20s", 0)])
        async def health(vu: IterationContext) -> None:
            res = await vu.get("https://example.com/health")
            vu.check(res, {"status was 200": lambda r: r.status == 200})

    Args:
        name: Human-readable scenario name.  Defaults to the function name.
        pause: Seconds each virtual user sleeps after every iteration.
        stages: Optional default stages for runs of this scenario.
        base_url: Prefix for relative request URLs.
        default_headers: Headers applied to every request.

    Returns:
        A decorator that turns the function into a ScenarioDefinition.

    Raises:
        ScenarioError: If *pause* is negative or the decorated object is
            not a coroutine function.
        ConfigError: If *stages* is empty or contains an invalid stage.
    """
    if pause < 0:
        msg = f"Scenario pause must be non-negative, got {pause}"
        raise ScenarioError(msg)

    pattern: StagedPattern | None = None
    if stages is not None:
        pattern = StagedPattern(stages)

    def decorator(func: ScenarioFunction) -> ScenarioDefinition:
        if not inspect.iscoroutinefunction(func):
            msg = f"Scenario {getattr(func, '__name__', func)!r} must be an async function"
            raise ScenarioError(msg)

        return ScenarioDefinition(
            name=name or func.__name__,
            func=func,
            pause=pause,
            base_url=base_url,
            default_headers=dict(default_headers or {}),
            stages=pattern,
        )

    return decorator
