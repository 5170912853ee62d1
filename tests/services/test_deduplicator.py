import asyncio

import pytest

from gateway.services.deduplicator import RequestDeduplicator


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_request() -> None:
    dedup = RequestDeduplicator()
    calls = 0

    async def request() -> str:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.02)
        return "result"

    results = await asyncio.gather(*(dedup.dedupe("k", request) for _ in range(4)))

    assert results == ["result"] * 4
    assert calls == 1
    stats = dedup.get_stats()
    assert stats.total == 1
    assert stats.deduplicated == 3
    assert stats.in_flight == 0


@pytest.mark.asyncio
async def test_errors_reach_every_waiter() -> None:
    dedup = RequestDeduplicator()

    async def request() -> str:
        await asyncio.sleep(0.01)
        raise RuntimeError("boom")

    results = await asyncio.gather(
        dedup.dedupe("k", request), dedup.dedupe("k", request), return_exceptions=True
    )

    assert all(isinstance(r, RuntimeError) for r in results)
    assert dedup.get_in_flight_count() == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_request_running() -> None:
    dedup = RequestDeduplicator()
    release = asyncio.Event()

    async def request() -> str:
        await release.wait()
        return "done"

    first = asyncio.create_task(dedup.dedupe("k", request))
    second = asyncio.create_task(dedup.dedupe("k", request))
    await asyncio.sleep(0)

    first.cancel()
    await asyncio.sleep(0)
    release.set()

    assert await second == "done"
    assert first.cancelled()


@pytest.mark.asyncio
async def test_spawn_reports_who_started() -> None:
    dedup = RequestDeduplicator()

    async def request() -> int:
        await asyncio.sleep(0.01)
        return 1

    task, started = dedup.spawn("k", request)
    same, started_again = dedup.spawn("k", request)

    assert started is True
    assert started_again is False
    assert same is task
    assert await task == 1
    assert not dedup.is_in_flight("k")


@pytest.mark.asyncio
async def test_cancel_all() -> None:
    dedup = RequestDeduplicator()

    async def request() -> None:
        await asyncio.sleep(10)

    dedup.spawn("a", request)
    dedup.spawn("b", request)

    assert await dedup.cancel_all() == 2
    assert dedup.get_in_flight_count() == 0
