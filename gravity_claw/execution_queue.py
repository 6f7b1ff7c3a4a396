"""Per-user serial lanes and supervised background tasks."""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, TypeVar

from gravity_claw.exceptions import MemoryWriteError
from gravity_claw.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


@dataclass
class QueueEntry:
    task: Callable[[], Awaitable[object]]
    future: asyncio.Future[object]
    enqueued_at_ms: int
    warn_after_ms: int
    on_wait: Callable[[int, int], None] | None = None


@dataclass
class LaneState:
    lane: str
    queue: deque[QueueEntry] = field(default_factory=deque)
    active: bool = False
    draining: bool = False


def resolve_user_lane(user_id: str) -> str:
    cleaned = str(user_id).strip() if user_id is not None else ""
    return f"user:{cleaned or 'default'}"


class UserLaneQueue:
    """Runs tasks for one key strictly one at a time, in arrival order.

    Different keys never wait on each other. A lane's state is dropped as soon
    as it has no running and no queued task.
    """

    def __init__(self):
        self._lanes: dict[str, LaneState] = {}
        self._runners: set[asyncio.Task[None]] = set()

    def _get_lane_state(self, lane: str) -> LaneState:
        existing = self._lanes.get(lane)
        if existing:
            return existing
        created = LaneState(lane=lane)
        self._lanes[lane] = created
        return created

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        runner = asyncio.create_task(coro)
        self._runners.add(runner)
        runner.add_done_callback(self._runners.discard)

    def _release_if_idle(self, state: LaneState) -> None:
        if state.active or state.queue or state.draining:
            return
        if self._lanes.get(state.lane) is state:
            del self._lanes[state.lane]

    def _schedule_drain(self, state: LaneState) -> None:
        if state.draining:
            return
        state.draining = True
        self._spawn(self._drain_lane(state))

    async def _run_entry(self, state: LaneState, entry: QueueEntry) -> None:
        loop = asyncio.get_running_loop()
        started_ms = int(loop.time() * 1000)
        try:
            result = await entry.task()
        except asyncio.CancelledError:
            if not entry.future.done():
                entry.future.cancel()
            raise
        except Exception as e:
            elapsed = int(loop.time() * 1000) - started_ms
            log.error("lane task failed", lane=state.lane, duration_ms=elapsed, error=str(e))
            if not entry.future.done():
                entry.future.set_exception(e)
        else:
            elapsed = int(loop.time() * 1000) - started_ms
            log.debug("lane task complete", lane=state.lane, duration_ms=elapsed, queued=len(state.queue))
            if not entry.future.done():
                entry.future.set_result(result)
        finally:
            state.active = False
            if state.queue:
                self._schedule_drain(state)
            else:
                self._release_if_idle(state)

    async def _drain_lane(self, state: LaneState) -> None:
        try:
            if state.active or not state.queue:
                return
            entry = state.queue.popleft()
            waited_ms = int(asyncio.get_running_loop().time() * 1000) - entry.enqueued_at_ms
            if waited_ms >= entry.warn_after_ms:
                queued_ahead = len(state.queue)
                if entry.on_wait:
                    entry.on_wait(waited_ms, queued_ahead)
                log.warning("lane wait exceeded", lane=state.lane, waited_ms=waited_ms, queued_ahead=queued_ahead)
            state.active = True
            self._spawn(self._run_entry(state, entry))
        finally:
            state.draining = False
            self._release_if_idle(state)

    async def enqueue_in_lane(
        self,
        lane: str,
        task: Callable[[], Awaitable[T]],
        *,
        warn_after_ms: int = 2_000,
        on_wait: Callable[[int, int], None] | None = None,
    ) -> T:
        """Queue ``task`` behind everything already in ``lane`` and await its result."""
        state = self._get_lane_state(lane)
        loop = asyncio.get_running_loop()
        future: asyncio.Future[object] = loop.create_future()
        state.queue.append(
            QueueEntry(
                task=task,
                future=future,
                enqueued_at_ms=int(loop.time() * 1000),
                warn_after_ms=max(0, int(warn_after_ms)),
                on_wait=on_wait,
            )
        )
        self._schedule_drain(state)
        result = await future
        return result  # type: ignore[return-value]

    async def run_for_user(
        self,
        user_id: str,
        task: Callable[[], Awaitable[T]],
        *,
        warn_after_ms: int = 2_000,
    ) -> T:
        return await self.enqueue_in_lane(resolve_user_lane(user_id), task, warn_after_ms=warn_after_ms)

    def get_queue_size(self, lane: str) -> int:
        state = self._lanes.get(lane)
        if not state:
            return 0
        return len(state.queue) + (1 if state.active else 0)

    def has_lane(self, lane: str) -> bool:
        return lane in self._lanes

    @property
    def lane_count(self) -> int:
        return len(self._lanes)


class BackgroundTaskSet:
    """Fire-and-forget tasks that hold a reference until done and log their failures."""

    def __init__(self):
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, label: str = "background") -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=label)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if isinstance(error, MemoryWriteError):
            log.warning("Background memory write failed", task=task.get_name(), stage=error.stage, error=str(error))
        else:
            log.error("Background task failed", task=task.get_name(), error=str(error))

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight tasks; return False if the timeout elapsed first."""
        pending = set(self._tasks)
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending

    def __len__(self) -> int:
        return len(self._tasks)
