"""Integration tests for ExecutorPool reconciliation and shutdown."""

from __future__ import annotations

import asyncio

import pytest

from loadstage.dsl.decorators import scenario
from loadstage.engine.pool import ExecutorPool
from loadstage.engine.user import UserState
from loadstage.metrics.sink import MetricsSink


@scenario(name="health", pause=0.05, base_url="http://localhost:8080")
async def health(vu):
    res = await vu.get("/health")
    vu.check(res, {"status was 200": lambda r: r.status == 200})


@scenario(name="slow", base_url="http://localhost:8080")
async def slow(vu):
    await vu.get("/slow")


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            msg = "condition not reached in time"
            raise AssertionError(msg)
        await asyncio.sleep(0.01)


@pytest.mark.timeout(15)
class TestReconcile:
    """Tests for ExecutorPool.reconcile."""

    async def test_scale_up(self, fake_transport) -> None:
        pool = ExecutorPool(health, fake_transport, MetricsSink())
        result = pool.reconcile(5)

        assert result.spawned == 5
        assert result.signalled == 0
        assert pool.active_count() == 5
        assert pool.spawned_count == 5
        assert [u.user_id for u in pool.active_users()] == [0, 1, 2, 3, 4]
        await pool.stop_all(grace_timeout=1.0)

    async def test_hold_is_noop(self, fake_transport) -> None:
        pool = ExecutorPool(health, fake_transport, MetricsSink())
        pool.reconcile(3)
        result = pool.reconcile(3)
        assert result.spawned == 0
        assert result.signalled == 0
        assert pool.spawned_count == 3
        await pool.stop_all(grace_timeout=1.0)

    async def test_scale_down_stops_newest_first(self, fake_transport) -> None:
        pool = ExecutorPool(health, fake_transport, MetricsSink())
        pool.reconcile(5)
        users = pool.active_users()

        result = pool.reconcile(2)

        assert result.signalled == 3
        assert pool.active_count() == 2
        assert [u.user_id for u in pool.active_users()] == [0, 1]
        assert all(u.stop_requested for u in users[2:])
        assert not any(u.stop_requested for u in users[:2])
        await pool.stop_all(grace_timeout=1.0)

    async def test_scale_down_drains_without_cancelling(self, make_transport) -> None:
        transport = make_transport(delay=0.3)
        pool = ExecutorPool(slow, transport, MetricsSink())
        pool.reconcile(4)
        await _wait_for(lambda: len(transport.requests) == 4)
        users = pool.active_users()

        pool.reconcile(1)
        assert pool.draining_count() == 3
        assert all(u.state is UserState.STOPPING for u in users[1:])
        assert users[0].state is UserState.RUNNING

        await _wait_for(lambda: pool.draining_count() == 0)
        drained = [e for e in pool.exits if e.state is UserState.STOPPED]
        assert len(drained) == 3
        assert all(e.iterations == 1 for e in drained)
        await pool.stop_all(grace_timeout=1.0)

    async def test_scale_to_zero_then_up_spawns_fresh_users(self, fake_transport) -> None:
        pool = ExecutorPool(health, fake_transport, MetricsSink())
        pool.reconcile(2)
        pool.reconcile(0)
        assert pool.active_count() == 0

        pool.reconcile(2)
        assert [u.user_id for u in pool.active_users()] == [2, 3]
        await pool.stop_all(grace_timeout=1.0)

    async def test_base_url_override_reaches_users(self, fake_transport) -> None:
        pool = ExecutorPool(
            health,
            fake_transport,
            MetricsSink(),
            base_url_override="http://staging.example",
        )
        pool.reconcile(2)
        await _wait_for(lambda: len(fake_transport.requests) >= 2)
        await pool.stop_all(grace_timeout=1.0)
        assert {r.url for r in fake_transport.requests} == {"http://staging.example/health"}

    async def test_negative_target_rejected(self, fake_transport) -> None:
        pool = ExecutorPool(health, fake_transport, MetricsSink())
        with pytest.raises(ValueError, match="non-negative"):
            pool.reconcile(-1)

    async def test_crashed_user_leaves_pool_and_is_replaced(self, fake_transport) -> None:
        sink = MetricsSink()

        @scenario(base_url="http://localhost:8080")
        async def crash_first(vu):
            if vu.user_id == 0:
                msg = "boom"
                raise RuntimeError(msg)
            await vu.get("/health")
            await vu.sleep(0.01)

        pool = ExecutorPool(crash_first, fake_transport, sink)
        pool.reconcile(3)
        await _wait_for(lambda: pool.active_count() == 2)

        assert [u.user_id for u in pool.active_users()] == [1, 2]
        assert sink.snapshot().runners_crashed == 1
        assert pool.exits[0].crashed

        result = pool.reconcile(3)
        assert result.spawned == 1
        assert pool.active_count() == 3
        await pool.stop_all(grace_timeout=1.0)


@pytest.mark.timeout(15)
class TestStopAll:
    """Tests for ExecutorPool.stop_all."""

    async def test_graceful_stop(self, fake_transport) -> None:
        sink = MetricsSink()
        pool = ExecutorPool(health, fake_transport, sink)
        pool.reconcile(10)
        await asyncio.sleep(0.1)

        report = await pool.stop_all(grace_timeout=2.0)

        assert report.graceful == 10
        assert report.forced == 0
        assert pool.active_count() == 0
        assert pool.draining_count() == 0
        assert len(pool.exits) == 10
        assert sink.snapshot().runners_forced == 0

    async def test_forced_stop_after_grace(self, make_transport) -> None:
        sink = MetricsSink()
        transport = make_transport(delay=10.0)
        pool = ExecutorPool(slow, transport, sink)
        pool.reconcile(3)
        await _wait_for(lambda: len(transport.requests) == 3)

        report = await pool.stop_all(grace_timeout=0.1)

        assert report.forced == 3
        assert report.graceful == 0
        assert pool.active_count() == 0
        assert sink.snapshot().runners_forced == 3
        # Force-cancelled iterations are not recorded
        assert sink.snapshot().total_requests == 0

    async def test_stop_all_includes_draining_users(self, make_transport) -> None:
        transport = make_transport(delay=10.0)
        pool = ExecutorPool(slow, transport, MetricsSink())
        pool.reconcile(2)
        await _wait_for(lambda: len(transport.requests) == 2)
        pool.reconcile(0)

        report = await pool.stop_all(grace_timeout=0.05)
        assert report.forced == 2

    async def test_empty_pool(self, fake_transport) -> None:
        report = await ExecutorPool(health, fake_transport, MetricsSink()).stop_all(1.0)
        assert report.graceful == 0
        assert report.forced == 0
