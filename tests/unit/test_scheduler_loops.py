import asyncio
from datetime import datetime, timedelta

import pytest

from option_seller.infrastructure.broker.errors import AuthenticationError, FatalEngineError
from option_seller.scheduler.loops import DualCadenceScheduler
from option_seller.utils.time import IST


def now():
    return datetime.now(IST)


def make_scheduler(fast_tick, slow_tick, active=lambda: True, slow_every=0.03):
    return DualCadenceScheduler(
        fast_tick=fast_tick,
        slow_tick=slow_tick,
        now_fn=now,
        next_slow_at=lambda current: current + timedelta(seconds=slow_every),
        is_active=active,
        fast_interval_seconds=0.01,
    )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_both_loops_run_until_stopped():
    counts = {"fast": 0, "slow": 0}

    async def fast(ts):
        counts["fast"] += 1

    async def slow(ts):
        counts["slow"] += 1
        if counts["slow"] == 2:
            scheduler.stop("done")

    scheduler = make_scheduler(fast, slow)
    await asyncio.wait_for(scheduler.run(), timeout=5)

    assert scheduler.stop_reason == "done"
    assert counts["slow"] == 2
    assert counts["fast"] > counts["slow"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_tick_errors_are_logged_and_loop_continues(caplog):
    calls = []

    async def fast(ts):
        calls.append(ts)
        if len(calls) == 1:
            raise RuntimeError("transient glitch")
        if len(calls) == 3:
            scheduler.stop("enough")

    async def slow(ts):
        return None

    scheduler = make_scheduler(fast, slow, slow_every=10)
    await asyncio.wait_for(scheduler.run(), timeout=5)

    assert len(calls) == 3
    assert "tick failed" in caplog.text


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, prefix",
    [(AuthenticationError("token expired"), "authentication failure"), (FatalEngineError("no spot"), "fatal")],
)
async def test_fatal_errors_stop_both_loops(error, prefix):
    async def fast(ts):
        raise error

    slow_calls = []

    async def slow(ts):
        slow_calls.append(ts)

    scheduler = make_scheduler(fast, slow, slow_every=10)
    await asyncio.wait_for(scheduler.run(), timeout=5)

    assert scheduler.stop_reason.startswith(prefix)
    assert scheduler.stopped
    assert slow_calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_inactive_engine_ends_loops():
    state = {"active": True, "fast": 0}

    async def fast(ts):
        state["fast"] += 1
        if state["fast"] == 2:
            state["active"] = False

    async def slow(ts):
        return None

    scheduler = make_scheduler(fast, slow, active=lambda: state["active"], slow_every=10)
    await asyncio.wait_for(scheduler.run(), timeout=5)

    assert state["fast"] == 2
    assert scheduler.stop_reason == "engine inactive"
