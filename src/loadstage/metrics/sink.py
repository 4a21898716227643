"""Thread-safe aggregation of iteration results from all virtual users."""

from __future__ import annotations

import threading
import time
from collections import Counter
from typing import TYPE_CHECKING

import numpy as np

from loadstage._internal.logging import get_logger
from loadstage.metrics.histogram import LatencyHistogram
from loadstage.metrics.models import (
    CheckStats,
    IntervalSnapshot,
    MetricsSnapshot,
    RequestStats,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from loadstage.metrics.models import IterationResult

logger = get_logger("metrics.sink")

_INTERVAL_PERCENTILES = (50.0, 95.0, 99.0)


def _interval_percentiles(latencies: list[float]) -> tuple[float, float, float]:
    """Compute interval p50/p95/p99 from raw latencies (ms)."""
    if not latencies:
        return (0.0, 0.0, 0.0)
    arr = np.array(latencies, dtype=np.float64)
    p50, p95, p99 = np.percentile(arr, _INTERVAL_PERCENTILES)
    return (float(p50), float(p95), float(p99))


class MetricsSink:
    """Accumulates :class:`IterationResult` objects into aggregate counters.

    Every virtual user calls :meth:`record` once per iteration.  All state
    is guarded by one ``threading.Lock`` with a short critical section, so
    recording is effectively non-blocking and safe from coroutines and
    threads alike.  Each recorded result contributes exactly once.

    Two views are kept:

    - **Cumulative**: counters, an HDR latency histogram and one histogram
      per logical request name, read by :meth:`snapshot`.
    - **Interval**: raw latencies and counts since the last
      :meth:`flush_interval`, used for the per-tick time series.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()

        self._histogram = LatencyHistogram()
        self._iterations = 0
        self._aborted = 0
        self._requests = 0
        self._failed_requests = 0
        self._iteration_ms_total = 0.0
        self._errors_by_kind: Counter[str] = Counter()
        self._status_counts: Counter[int] = Counter()
        self._name_histograms: dict[str, LatencyHistogram] = {}
        self._name_failed: Counter[str] = Counter()
        self._check_passes: Counter[str] = Counter()
        self._check_fails: Counter[str] = Counter()
        self._check_names: dict[str, None] = {}
        self._crashes_by_kind: Counter[str] = Counter()
        self._forced = 0
        self._by_user: Counter[int] = Counter()

        self._interval_latencies: list[float] = []
        self._interval_iterations = 0
        self._interval_requests = 0
        self._interval_failed = 0
        self._interval_failed_checks = 0
        self._last_flush = clock()

    def record(self, result: IterationResult) -> None:
        """Add one iteration's outcomes to the aggregate.

        Args:
            result: The iteration result produced by a virtual user.
        """
        with self._lock:
            if result.aborted:
                self._aborted += 1
            else:
                self._iterations += 1
                self._interval_iterations += 1
                self._by_user[result.user_id] += 1
                self._iteration_ms_total += result.duration_ms

            for outcome in result.outcomes:
                self._requests += 1
                self._interval_requests += 1
                self._histogram.record(outcome.latency_ms)
                self._interval_latencies.append(outcome.latency_ms)

                name = outcome.request.name
                if name not in self._name_histograms:
                    self._name_histograms[name] = LatencyHistogram()
                self._name_histograms[name].record(outcome.latency_ms)

                if outcome.error_kind is not None:
                    self._failed_requests += 1
                    self._interval_failed += 1
                    self._errors_by_kind[outcome.error_kind] += 1
                    self._name_failed[name] += 1
                elif outcome.response is not None:
                    self._status_counts[outcome.response.status] += 1

                for check in outcome.checks:
                    self._check_names.setdefault(check.name, None)
                    if check.passed:
                        self._check_passes[check.name] += 1
                    else:
                        self._check_fails[check.name] += 1
                        self._interval_failed_checks += 1

    def record_crash(self, user_id: int, kind: str) -> None:
        """Count a virtual user ended by a scenario error.

        Args:
            user_id: The crashed virtual user.
            kind: Exception type name.
        """
        with self._lock:
            self._crashes_by_kind[kind] += 1
        logger.debug("Recorded crash of user %d (%s)", user_id, kind)

    def record_forced(self, count: int) -> None:
        """Count virtual users force-stopped after the grace period."""
        if count <= 0:
            return
        with self._lock:
            self._forced += count

    def iterations_by_user(self) -> dict[int, int]:
        """Return completed iteration counts keyed by virtual user id."""
        with self._lock:
            return dict(self._by_user)

    def snapshot(self) -> MetricsSnapshot:
        """Return an immutable copy of the cumulative aggregate."""
        with self._lock:
            checks = {
                name: CheckStats(
                    name=name,
                    passes=self._check_passes[name],
                    fails=self._check_fails[name],
                )
                for name in self._check_names
            }
            checks_passed = sum(self._check_passes.values())
            checks_failed = sum(self._check_fails.values())
            checks_total = checks_passed + checks_failed
            requests = self._requests
            by_name = {
                name: RequestStats(
                    name=name,
                    requests=hist.count,
                    failed=self._name_failed[name],
                    latency_mean=hist.mean(),
                    latency_p50=hist.percentile(50.0),
                    latency_p95=hist.percentile(95.0),
                    latency_p99=hist.percentile(99.0),
                )
                for name, hist in self._name_histograms.items()
            }

            return MetricsSnapshot(
                iterations=self._iterations,
                aborted_iterations=self._aborted,
                total_requests=requests,
                failed_requests=self._failed_requests,
                request_success_rate=(
                    (requests - self._failed_requests) / requests if requests else 1.0
                ),
                errors_by_kind=dict(self._errors_by_kind),
                status_counts=dict(self._status_counts),
                requests_by_name=by_name,
                checks=checks,
                checks_passed=checks_passed,
                checks_failed=checks_failed,
                check_pass_rate=checks_passed / checks_total if checks_total else 1.0,
                latency_min=self._histogram.min(),
                latency_max=self._histogram.max(),
                latency_mean=self._histogram.mean(),
                latency_p50=self._histogram.percentile(50.0),
                latency_p90=self._histogram.percentile(90.0),
                latency_p95=self._histogram.percentile(95.0),
                latency_p99=self._histogram.percentile(99.0),
                iteration_duration_avg=(
                    self._iteration_ms_total / self._iterations if self._iterations else 0.0
                ),
                runners_crashed=sum(self._crashes_by_kind.values()),
                crashes_by_kind=dict(self._crashes_by_kind),
                runners_forced=self._forced,
            )

    def flush_interval(
        self,
        elapsed_seconds: float,
        active_users: int,
        target_users: int,
    ) -> IntervalSnapshot:
        """Drain the interval counters into an :class:`IntervalSnapshot`.

        Args:
            elapsed_seconds: Seconds since the run started.
            active_users: Active virtual users after this tick's reconcile.
            target_users: Scheduler target at this tick.

        Returns:
            Snapshot covering everything recorded since the previous flush.
        """
        with self._lock:
            latencies = self._interval_latencies
            iterations = self._interval_iterations
            requests = self._interval_requests
            failed = self._interval_failed
            failed_checks = self._interval_failed_checks

            self._interval_latencies = []
            self._interval_iterations = 0
            self._interval_requests = 0
            self._interval_failed = 0
            self._interval_failed_checks = 0

            now = self._clock()
            interval = max(now - self._last_flush, 0.001)
            self._last_flush = now

        p50, p95, p99 = _interval_percentiles(latencies)
        return IntervalSnapshot(
            elapsed_seconds=elapsed_seconds,
            target_users=target_users,
            active_users=active_users,
            iterations=iterations,
            requests=requests,
            failed_requests=failed,
            failed_checks=failed_checks,
            requests_per_second=requests / interval,
            latency_p50=p50,
            latency_p95=p95,
            latency_p99=p99,
        )
