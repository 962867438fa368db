from __future__ import annotations

import asyncio

import pytest

from stylist.jobs.broker import CompletionNotificationBroker


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


RECORD = {"tryOnUrlMap": {"A": "/uploads/try-on-a.png"}, "categorization": {"action": "CREATE_NEW"}}


@pytest.mark.asyncio
async def test_take_after_put_consumes_record_once() -> None:
    broker = CompletionNotificationBroker()

    await broker.put("b1", RECORD)

    assert await broker.take("b1") == {"status": "completed", **RECORD}
    assert await broker.take("b1") == {"status": "processing"}


@pytest.mark.asyncio
async def test_unknown_board_is_processing() -> None:
    broker = CompletionNotificationBroker()

    assert await broker.take("never-written") == {"status": "processing"}


@pytest.mark.asyncio
async def test_put_overwrites_unclaimed_record() -> None:
    broker = CompletionNotificationBroker()

    await broker.put("b1", {"newBoard": {"title": "first"}})
    await broker.put("b1", {"newBoard": {"title": "second"}})

    assert await broker.take("b1") == {"status": "completed", "newBoard": {"title": "second"}}
    assert len(broker) == 0


@pytest.mark.asyncio
async def test_record_expires_after_ttl() -> None:
    clock = FakeClock()
    broker = CompletionNotificationBroker(ttl_seconds=300, clock=clock)

    await broker.put("b1", RECORD)
    clock.now += 299
    await broker.put("b2", RECORD)
    clock.now += 1

    assert await broker.take("b1") == {"status": "processing"}
    assert await broker.take("b2") == {"status": "completed", **RECORD}


@pytest.mark.asyncio
async def test_put_sweeps_expired_records() -> None:
    clock = FakeClock()
    broker = CompletionNotificationBroker(ttl_seconds=10, clock=clock)

    await broker.put("old", RECORD)
    clock.now += 11
    await broker.put("new", RECORD)

    assert len(broker) == 1


@pytest.mark.asyncio
async def test_stored_record_is_isolated_from_caller_mutation() -> None:
    broker = CompletionNotificationBroker()
    record = {"newBoard": {"id": "b1"}}

    await broker.put("b1", record)
    record["extra"] = True

    assert "extra" not in await broker.take("b1")


@pytest.mark.asyncio
async def test_concurrent_takes_deliver_at_most_once() -> None:
    broker = CompletionNotificationBroker()
    await broker.put("b1", RECORD)

    results = await asyncio.gather(*(broker.take("b1") for _ in range(10)))

    assert sum(result["status"] == "completed" for result in results) == 1
