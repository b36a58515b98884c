"""Single-flight execution tests."""

import asyncio

import pytest

from engine.sync.single_flight import SingleFlight


def gated_counter():
    state = {"calls": 0}
    gate = asyncio.Event()

    async def work():
        state["calls"] += 1
        n = state["calls"]
        await gate.wait()
        return n

    return state, gate, work


@pytest.mark.asyncio
async def test_requests_while_running_share_one_queued_call():
    state, gate, work = gated_counter()
    flight = SingleFlight(work)

    first = flight.request()
    queued = [flight.request() for _ in range(5)]
    assert flight.running and flight.queued
    assert all(f is queued[0] for f in queued)

    gate.set()
    assert await first == 1
    assert await asyncio.gather(*queued) == [2] * 5
    await flight.drain()
    assert state["calls"] == 2
    assert not flight.running and not flight.queued


@pytest.mark.asyncio
async def test_idle_request_runs_immediately():
    state, gate, work = gated_counter()
    gate.set()
    flight = SingleFlight(work)
    assert await flight.run() == 1
    assert await flight.run() == 2
    assert state["calls"] == 2


@pytest.mark.asyncio
async def test_failure_reaches_caller_and_queue_still_runs():
    calls = []

    async def work():
        calls.append(len(calls))
        await asyncio.sleep(0)
        if len(calls) == 1:
            raise ValueError("boom")
        return len(calls)

    flight = SingleFlight(work)
    first = flight.request()
    second = flight.request()
    with pytest.raises(ValueError):
        await first
    assert await second == 2


@pytest.mark.asyncio
async def test_cancel_drops_queued_call():
    state, gate, work = gated_counter()
    flight = SingleFlight(work)
    first = flight.request()
    queued = flight.request()
    await asyncio.sleep(0)
    flight.cancel()
    await flight.drain()
    assert first.cancelled()
    assert queued.cancelled()
    assert state["calls"] == 1
