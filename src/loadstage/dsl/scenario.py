"""Scenario definition dataclass."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from loadstage.dsl.context import IterationContext
    from loadstage.patterns.staged import StagedPattern


class ScenarioFunction(Protocol):
    """Protocol for scenario functions.

    Matches ``async def fn(vu: IterationContext) -> None``.  One call is
    one iteration.
    """

    @property
    def __name__(self) -> str:
        """Function name."""
        ...

    async def __call__(self, vu: IterationContext) -> None:
        """Run one iteration."""
        ...


@dataclass
class ScenarioDefinition:
    """Complete definition of a load test scenario.

    Created by the ``@scenario`` decorator.

    Attributes:
        name: Human-readable name for this scenario.
        func: The async function executed once per iteration.
        pause: Seconds each virtual user sleeps after every iteration.
        base_url: Prefix for relative request URLs.
        default_headers: Headers applied to every request.
        stages: Stages declared alongside the scenario, used when the run
            does not supply its own.
    """

    name: str
    func: ScenarioFunction
    pause: float = 0.0
    base_url: str = ""
    default_headers: dict[str, str] = field(default_factory=dict)
    stages: StagedPattern | None = None
