"""Rate-limited task queue for embedding provider calls.

Properties:

* **Serial** — a single worker coroutine runs one task at a time, so at
  most one provider call is ever in flight.
* **Rolling rate window** — no more than ``window_cap`` tasks start within
  any ``window_seconds`` interval.  When the budget is spent the worker
  waits for the oldest start to age out; tasks are delayed, never dropped.
* **Backoff retry** — a task failing with a *transient* error (one whose
  ``transient`` attribute is true) waits
  ``min(max_delay, base_delay * 2**attempt)`` and is then put back on the
  queue, so the retry obeys the same concurrency and rate limits.  After
  ``max_attempts`` retries, or on any other error, the task is failed.
  Failures never stop the queue.
* **Priorities** — interactive tasks are dispatched before queued
  background tasks; equal priorities dispatch in FIFO order.

``on_idle()`` resolves once every enqueued task has succeeded or failed.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from oraculum.config import SchedulerConfig

logger = logging.getLogger(__name__)


class TaskState(StrEnum):
    """Lifecycle of a scheduled task."""

    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Priority(IntEnum):
    """Dispatch order; lower values go first."""

    INTERACTIVE = 0
    BACKGROUND = 1


class SchedulerClosedError(RuntimeError):
    """The scheduler shut down before the task could finish."""


@dataclass(eq=False)
class ScheduledTask:
    """A unit of async work plus its retry bookkeeping."""

    name: str
    run: Callable[[], Awaitable[Any]]
    priority: Priority = Priority.BACKGROUND
    attempt: int = 0
    state: TaskState = TaskState.PENDING
    result: Any = None
    error: BaseException | None = None
    # Called once the task reaches a terminal state
    on_done: Callable[[ScheduledTask], None] | None = field(default=None, repr=False)
    _done: asyncio.Future[None] | None = field(default=None, repr=False)

    @property
    def finished(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED)

    async def wait(self) -> Any:
        """Wait for a terminal state; return the result or raise the final error."""
        if self._done is None:
            raise RuntimeError(f"Task {self.name!r} was never enqueued")
        await asyncio.shield(self._done)
        if self.error is not None:
            raise self.error
        return self.result


def _is_transient(error: BaseException) -> bool:
    return getattr(error, "transient", False) is True


class RateLimitedScheduler:
    """Serial, rate-budgeted, retrying task queue.

    Must be used from a running event loop. *clock* and *sleep* are
    injectable so tests can drive time deterministically.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        is_transient: Callable[[BaseException], bool] = _is_transient,
    ) -> None:
        self.config = config
        self._clock = clock
        self._sleep = sleep
        self._is_transient = is_transient

        self._queue: list[tuple[int, int, ScheduledTask]] = []
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._outstanding = 0

        # Start times of recently dispatched tasks (rolling window)
        self._starts: deque[float] = deque()

        self._worker: asyncio.Task[None] | None = None
        self._retries: set[asyncio.Task[None]] = set()
        self._waiting_retry: set[ScheduledTask] = set()
        self._running: ScheduledTask | None = None

        self.succeeded_count = 0
        self.failed_count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, task: ScheduledTask) -> ScheduledTask:
        """Queue *task* for execution and return it."""
        loop = asyncio.get_running_loop()
        if task._done is None:
            task._done = loop.create_future()
        self._outstanding += 1
        self._idle.clear()
        self._push(task)
        self._ensure_worker(loop)
        logger.debug("Queued %s (%s priority)", task.name, task.priority.name.lower())
        return task

    async def on_idle(self) -> None:
        """Wait until no task is pending, running or waiting to retry."""
        await self._idle.wait()

    @property
    def pending_count(self) -> int:
        """Tasks queued or sleeping before a retry."""
        return len(self._queue) + len(self._waiting_retry)

    @property
    def running(self) -> ScheduledTask | None:
        return self._running

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1``."""
        return min(
            self.config.max_delay_seconds,
            self.config.base_delay_seconds * (2**attempt),
        )

    async def close(self) -> None:
        """Stop the worker; tasks that have not finished fail with SchedulerClosedError."""
        pending = [t for _, _, t in self._queue] + list(self._waiting_retry)
        if self._running is not None:
            pending.append(self._running)

        for retry in list(self._retries):
            retry.cancel()
        if self._worker is not None:
            self._worker.cancel()
        await asyncio.gather(*self._retries, return_exceptions=True)
        if self._worker is not None:
            await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None

        self._queue.clear()
        self._waiting_retry.clear()
        self._running = None
        for task in pending:
            if not task.finished:
                task.state = TaskState.FAILED
                task.error = SchedulerClosedError(f"Scheduler closed before {task.name} finished")
                self._finish(task)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _push(self, task: ScheduledTask) -> None:
        task.state = TaskState.PENDING
        heapq.heappush(self._queue, (int(task.priority), next(self._seq), task))
        self._wakeup.set()

    def _ensure_worker(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run())

    async def _run(self) -> None:
        while True:
            while not self._queue:
                self._wakeup.clear()
                await self._wakeup.wait()

            await self._acquire_slot()
            # Pop only after the wait, so interactive work queued meanwhile goes first
            _, _, task = heapq.heappop(self._queue)
            await self._execute(task)

    async def _acquire_slot(self) -> None:
        """Block until starting one more task keeps within the rate window."""
        window = self.config.window_seconds
        cap = self.config.window_cap
        while True:
            now = self._clock()
            while self._starts and now - self._starts[0] >= window:
                self._starts.popleft()
            if len(self._starts) < cap:
                self._starts.append(now)
                return

            delay = self._starts[0] + window - now
            logger.debug(
                "Rate budget spent (%d starts in %.1fs) — waiting %.2fs",
                len(self._starts),
                window,
                delay,
            )
            await self._sleep(delay)

    async def _execute(self, task: ScheduledTask) -> None:
        task.state = TaskState.RUNNING
        self._running = task
        try:
            result = await task.run()
        except Exception as e:
            self._running = None
            self._handle_failure(task, e)
            return
        self._running = None

        task.state = TaskState.SUCCEEDED
        task.result = result
        task.error = None
        if task.attempt:
            logger.info("%s succeeded after %d retries", task.name, task.attempt)
        self.succeeded_count += 1
        self._finish(task)

    def _handle_failure(self, task: ScheduledTask, error: Exception) -> None:
        transient = self._is_transient(error)
        if transient and task.attempt < self.config.max_attempts:
            delay = self.backoff_delay(task.attempt)
            task.attempt += 1
            task.state = TaskState.RETRYING
            logger.warning(
                "%s failed transiently (retry %d/%d in %.1fs): %s",
                task.name,
                task.attempt,
                self.config.max_attempts,
                delay,
                error,
            )
            self._waiting_retry.add(task)
            retry = asyncio.get_running_loop().create_task(self._retry_after(task, delay))
            self._retries.add(retry)
            retry.add_done_callback(self._retries.discard)
            return

        task.state = TaskState.FAILED
        task.error = error
        self.failed_count += 1
        if transient:
            logger.error("%s failed after %d retries: %s", task.name, task.attempt, error)
        elif hasattr(error, "transient"):
            logger.error("%s failed: %s", task.name, error)
        else:
            logger.error("%s failed unexpectedly", task.name, exc_info=error)
        self._finish(task)

    async def _retry_after(self, task: ScheduledTask, delay: float) -> None:
        await self._sleep(delay)
        self._waiting_retry.discard(task)
        self._push(task)

    def _finish(self, task: ScheduledTask) -> None:
        if task.on_done is not None:
            try:
                task.on_done(task)
            except Exception:
                logger.exception("Completion callback for %s failed", task.name)
        if task._done is not None and not task._done.done():
            task._done.set_result(None)
        self._outstanding -= 1
        if self._outstanding <= 0:
            self._outstanding = 0
            self._idle.set()
