"""Result and metric dataclasses for LoadStage."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from loadstage.dsl.http_client import Request, Response

__all__ = [
    "CheckResult",
    "CheckStats",
    "IntervalSnapshot",
    "IterationResult",
    "MetricsSnapshot",
    "RequestOutcome",
    "RequestStats",
    "RunSummary",
    "StopReport",
]


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one named check evaluated against a response.

    Attributes:
        name: Check name (e.g., "status was 200").
        passed: Whether the check held.
    """

    name: str
    passed: bool


@dataclass(frozen=True)
class RequestOutcome:
    """One request issued during an iteration and what became of it.

    Attributes:
        request: The request that was sent.
        response: The response, or None if the request failed.
        latency_ms: Time spent on the request, including failed attempts.
        error_kind: Error classification when the request failed
            (``timeout``, ``dns``, ``connection``, ``http``).
        error: Error message when the request failed.
        checks: Checks evaluated against this request's response.
    """

    request: Request
    response: Response | None
    latency_ms: float
    error_kind: str | None = None
    error: str | None = None
    checks: tuple[CheckResult, ...] = ()

    @property
    def failed(self) -> bool:
        """Return True if no response was received."""
        return self.error_kind is not None


@dataclass(frozen=True)
class IterationResult:
    """Everything one scenario iteration produced.

    Attributes:
        user_id: Virtual user that ran the iteration.
        iteration: Zero-based iteration number within that user.
        outcomes: Requests in the order they were issued.
        duration_ms: Wall time of the iteration, excluding the pause.
        aborted: True when the scenario crashed part-way; the outcomes
            recorded before the crash are kept but the iteration does not
            count as completed.
    """

    user_id: int
    iteration: int
    outcomes: tuple[RequestOutcome, ...] = ()
    duration_ms: float = 0.0
    aborted: bool = False


@dataclass(frozen=True)
class CheckStats:
    """Pass/fail totals for one check name."""

    name: str
    passes: int = 0
    fails: int = 0

    @property
    def pass_rate(self) -> float:
        """Fraction of evaluations that passed (1.0 if never evaluated)."""
        total = self.passes + self.fails
        return self.passes / total if total else 1.0


@dataclass(frozen=True)
class RequestStats:
    """Aggregated metrics for one logical request name.

    Attributes:
        name: Logical request name (e.g., "List Items"), or the URL when the
            scenario gave none.
        requests: Requests issued under this name.
        failed: Requests under this name that got no response.
        latency_mean: Mean latency in milliseconds.
        latency_p50: 50th percentile latency in milliseconds.
        latency_p95: 95th percentile latency in milliseconds.
        latency_p99: 99th percentile latency in milliseconds.
    """

    name: str
    requests: int = 0
    failed: int = 0
    latency_mean: float = 0.0
    latency_p50: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0

    @property
    def success_rate(self) -> float:
        """Fraction of requests that got a response (1.0 if none were sent)."""
        return (self.requests - self.failed) / self.requests if self.requests else 1.0


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable point-in-time aggregate of everything recorded so far.

    Latencies are in milliseconds.  Request failures (no response), check
    failures and runner crashes are counted separately.

    Attributes:
        iterations: Completed iterations.
        aborted_iterations: Iterations cut short by a scenario crash.
        total_requests: Requests issued.
        failed_requests: Requests that got no response.
        request_success_rate: Fraction of requests that got a response.
        errors_by_kind: Failed requests keyed by error kind.
        status_counts: Responses keyed by HTTP status code.
        requests_by_name: Per-name request totals and latencies, in first-seen
            order.
        checks: Per-check pass/fail totals keyed by check name.
        checks_passed: Passed check evaluations.
        checks_failed: Failed check evaluations.
        check_pass_rate: Fraction of check evaluations that passed.
        latency_min: Minimum request latency.
        latency_max: Maximum request latency.
        latency_mean: Mean request latency.
        latency_p50: 50th percentile request latency.
        latency_p90: 90th percentile request latency.
        latency_p95: 95th percentile request latency.
        latency_p99: 99th percentile request latency.
        iteration_duration_avg: Mean completed-iteration wall time.
        runners_crashed: Virtual users ended by a scenario error.
        crashes_by_kind: Crashes keyed by exception type name.
        runners_forced: Virtual users force-stopped after the grace period.
    """

    iterations: int = 0
    aborted_iterations: int = 0
    total_requests: int = 0
    failed_requests: int = 0
    request_success_rate: float = 1.0
    errors_by_kind: dict[str, int] = field(default_factory=dict)
    status_counts: dict[int, int] = field(default_factory=dict)
    requests_by_name: dict[str, RequestStats] = field(default_factory=dict)
    checks: dict[str, CheckStats] = field(default_factory=dict)
    checks_passed: int = 0
    checks_failed: int = 0
    check_pass_rate: float = 1.0
    latency_min: float = 0.0
    latency_max: float = 0.0
    latency_mean: float = 0.0
    latency_p50: float = 0.0
    latency_p90: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0
    iteration_duration_avg: float = 0.0
    runners_crashed: int = 0
    crashes_by_kind: dict[str, int] = field(default_factory=dict)
    runners_forced: int = 0


@dataclass(frozen=True)
class IntervalSnapshot:
    """Metrics for one engine tick.

    Attributes:
        elapsed_seconds: Seconds since the run started.
        target_users: Scheduler target at this tick.
        active_users: Active virtual users after reconciliation.
        iterations: Iterations completed during the interval.
        requests: Requests issued during the interval.
        failed_requests: Requests without a response during the interval.
        failed_checks: Failed check evaluations during the interval.
        requests_per_second: Interval request throughput.
        latency_p50: Interval 50th percentile latency (ms).
        latency_p95: Interval 95th percentile latency (ms).
        latency_p99: Interval 99th percentile latency (ms).
    """

    elapsed_seconds: float
    target_users: int
    active_users: int
    iterations: int = 0
    requests: int = 0
    failed_requests: int = 0
    failed_checks: int = 0
    requests_per_second: float = 0.0
    latency_p50: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0


@dataclass(frozen=True)
class StopReport:
    """How the virtual users ended when the pool was stopped.

    Attributes:
        graceful: Users that finished their iteration within the grace period.
        forced: Users cancelled after the grace period expired.
    """

    graceful: int = 0
    forced: int = 0


@dataclass
class RunSummary:
    """Complete result of a staged run.

    Attributes:
        scenario_name: Name of the scenario that was executed.
        pattern_description: Human-readable description of the stages.
        start_time: Monotonic time when the run started.
        end_time: Monotonic time when the run finished.
        duration_seconds: Total wall-clock duration of the run.
        cancelled: True if the run was cancelled before the stages ended.
        cancel_reason: Why the run was cancelled, if it was.
        snapshots: Per-tick interval snapshots.
        final: Aggregate snapshot taken after all users stopped.
        stop_report: Graceful/forced stop counts from the final drain.
    """

    scenario_name: str
    pattern_description: str
    start_time: float
    end_time: float
    duration_seconds: float
    cancelled: bool = False
    cancel_reason: str | None = None
    snapshots: list[IntervalSnapshot] = field(default_factory=list)
    final: MetricsSnapshot = field(default_factory=MetricsSnapshot)
    stop_report: StopReport = field(default_factory=StopReport)
