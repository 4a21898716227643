"""LoadStage: staged virtual-user load testing for HTTP services."""

from __future__ import annotations

from loadstage.dsl.context import IterationContext
from loadstage.dsl.decorators import scenario
from loadstage.dsl.http_client import HttpTransport, Request, Response
from loadstage.engine.session import Engine, run_engine
from loadstage.metrics.models import MetricsSnapshot, RunSummary
from loadstage.patterns.staged import Stage, StagedPattern

__version__ = "0.1.0"

__all__ = [
    "Engine",
    "HttpTransport",
    "IterationContext",
    "MetricsSnapshot",
    "Request",
    "Response",
    "RunSummary",
    "Stage",
    "StagedPattern",
    "run_engine",
    "scenario",
]
