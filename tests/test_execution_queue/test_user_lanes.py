import asyncio

import pytest

from gravity_claw.exceptions import MemoryWriteError
from gravity_claw.execution_queue import BackgroundTaskSet, UserLaneQueue, resolve_user_lane


def test_resolve_user_lane() -> None:
    assert resolve_user_lane("42") == "user:42"
    assert resolve_user_lane("  ") == "user:default"


@pytest.mark.asyncio
async def test_same_user_runs_serially_in_arrival_order() -> None:
    queue = UserLaneQueue()
    order: list[str] = []
    first_started = asyncio.Event()
    release_first = asyncio.Event()

    async def first() -> str:
        order.append("first:start")
        first_started.set()
        await release_first.wait()
        order.append("first:end")
        return "a"

    async def second() -> str:
        order.append("second:start")
        return "b"

    t1 = asyncio.create_task(queue.run_for_user("u1", first))
    await first_started.wait()
    t2 = asyncio.create_task(queue.run_for_user("u1", second))
    await asyncio.sleep(0.01)

    assert order == ["first:start"]
    assert queue.get_queue_size("user:u1") == 2

    release_first.set()
    assert await t1 == "a"
    assert await t2 == "b"
    assert order == ["first:start", "first:end", "second:start"]


@pytest.mark.asyncio
async def test_different_users_run_concurrently() -> None:
    queue = UserLaneQueue()
    release = asyncio.Event()
    started: list[str] = []

    async def blocker(name: str) -> str:
        started.append(name)
        await release.wait()
        return name

    t1 = asyncio.create_task(queue.run_for_user("u1", lambda: blocker("u1")))
    t2 = asyncio.create_task(queue.run_for_user("u2", lambda: blocker("u2")))
    await asyncio.sleep(0.01)

    assert sorted(started) == ["u1", "u2"]
    release.set()
    assert await asyncio.gather(t1, t2) == ["u1", "u2"]


@pytest.mark.asyncio
async def test_lane_is_released_after_drain() -> None:
    queue = UserLaneQueue()

    async def work() -> int:
        return 1

    assert await queue.run_for_user("u1", work) == 1
    await asyncio.sleep(0)

    assert queue.lane_count == 0
    assert not queue.has_lane("user:u1")


@pytest.mark.asyncio
async def test_failure_reaches_caller_and_lane_keeps_working() -> None:
    queue = UserLaneQueue()

    async def boom() -> None:
        raise ValueError("boom")

    async def ok() -> str:
        return "ok"

    with pytest.raises(ValueError, match="boom"):
        await queue.run_for_user("u1", boom)

    assert await queue.run_for_user("u1", ok) == "ok"
    await asyncio.sleep(0)
    assert queue.lane_count == 0


@pytest.mark.asyncio
async def test_wait_callback_fires_for_queued_task() -> None:
    queue = UserLaneQueue()
    release = asyncio.Event()
    waits: list[tuple[int, int]] = []

    async def slow() -> None:
        await release.wait()

    async def quick() -> None:
        return None

    t1 = asyncio.create_task(queue.enqueue_in_lane("lane", slow))
    await asyncio.sleep(0)
    t2 = asyncio.create_task(
        queue.enqueue_in_lane("lane", quick, warn_after_ms=0, on_wait=lambda ms, ahead: waits.append((ms, ahead)))
    )
    await asyncio.sleep(0.01)
    release.set()
    await asyncio.gather(t1, t2)

    assert len(waits) == 1
    assert waits[0][1] == 0


@pytest.mark.asyncio
async def test_background_set_contains_failures() -> None:
    background = BackgroundTaskSet()
    done = asyncio.Event()

    async def fails_memory() -> None:
        raise MemoryWriteError("semantic_upsert", "disk full")

    async def fails_other() -> None:
        raise RuntimeError("unexpected")

    async def succeeds() -> None:
        done.set()

    background.spawn(fails_memory(), label="memory:u1")
    background.spawn(fails_other(), label="other")
    background.spawn(succeeds())

    assert await background.drain(timeout=1.0)
    assert done.is_set()
    assert len(background) == 0


@pytest.mark.asyncio
async def test_background_drain_times_out() -> None:
    background = BackgroundTaskSet()
    release = asyncio.Event()

    background.spawn(release.wait(), label="stuck")

    assert await background.drain(timeout=0.01) is False
    release.set()
    assert await background.drain(timeout=1.0)
