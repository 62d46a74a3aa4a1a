"""Keyed reconcile work queue with requeue-with-backoff.

A key is never processed by two workers at once.  Enqueuing a key that is
already waiting is a no-op; enqueuing a key that is being processed marks
it dirty so it runs once more after the current pass.

Results drive requeueing:
    ok                   -- forget failures; honour ``requeue_after`` if set.
    retry                -- requeue after ``base * 2**failures`` (capped).
    fatal                -- park the key until something enqueues it again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from kubefeature.errors import ReconcileOutcome, ReconcileResult
from kubefeature.models.state import StateKey
from kubefeature.observability.logging import get_logger

_logger = get_logger("controller.queue")


class ReconcileQueue:
    """Bounded-concurrency queue of state keys.

    Args:
        process_fn:   Coroutine run for each dequeued key.
        workers:      Number of concurrent workers.
        backoff_base: First retry delay in seconds.
        backoff_max:  Upper bound on the retry delay.
    """

    def __init__(
        self,
        process_fn: Callable[[StateKey], Awaitable[ReconcileResult]],
        workers: int = 10,
        backoff_base: float = 5.0,
        backoff_max: float = 300.0,
    ) -> None:
        self._process_fn = process_fn
        self._workers = workers
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._queue: asyncio.Queue[StateKey] = asyncio.Queue()
        self._queued: set[StateKey] = set()
        self._processing: set[StateKey] = set()
        self._dirty: set[StateKey] = set()
        self._failures: dict[StateKey, int] = {}
        self._timers: dict[StateKey, asyncio.TimerHandle] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

    def __len__(self) -> int:
        return len(self._queued)

    def failures(self, key: StateKey) -> int:
        return self._failures.get(key, 0)

    def enqueue(self, key: StateKey) -> None:
        """Schedule *key* for processing as soon as a worker is free."""
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def enqueue_after(self, key: StateKey, delay: float) -> None:
        """Schedule *key* after *delay* seconds, unless it is scheduled sooner."""
        if key in self._queued or key in self._timers:
            return
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def _fire(self, key: StateKey) -> None:
        self._timers.pop(key, None)
        if self._running:
            self.enqueue(key)

    def backoff(self, key: StateKey) -> float:
        failures = self._failures.get(key, 0)
        return min(self._backoff_base * (2 ** max(failures - 1, 0)), self._backoff_max)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for i in range(self._workers):
            self._tasks.append(asyncio.create_task(self._worker(), name=f"reconcile-worker-{i}"))
        _logger.info("reconcile_queue_started", workers=self._workers)

    async def stop(self) -> None:
        self._running = False
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        _logger.info("reconcile_queue_stopped")

    async def join(self) -> None:
        """Wait until no key is queued or being processed."""
        await self._queue.join()

    async def _worker(self) -> None:
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            self._processing.add(key)
            try:
                result = await self._process_fn(key)
                self._handle_result(key, result)
            except Exception as exc:  # noqa: BLE001
                # a crashing reconcile must not kill the worker
                self._failures[key] = self._failures.get(key, 0) + 1
                _logger.error("reconcile_crashed", key=str(key), error=str(exc), exc_info=True)
                self.enqueue_after(key, self.backoff(key))
            finally:
                self._processing.discard(key)
                if key in self._dirty:
                    self._dirty.discard(key)
                    self.enqueue(key)
                self._queue.task_done()

    def _handle_result(self, key: StateKey, result: ReconcileResult) -> None:
        if result.outcome is ReconcileOutcome.RETRY:
            self._failures[key] = self._failures.get(key, 0) + 1
            delay = self.backoff(key)
            _logger.info("reconcile_requeued", key=str(key), delay=delay, failures=self._failures[key])
            self.enqueue_after(key, delay)
            return
        self._failures.pop(key, None)
        if result.outcome is ReconcileOutcome.FATAL:
            _logger.warning("reconcile_parked", key=str(key), error=str(result.error))
            return
        if result.requeue_after is not None:
            self.enqueue_after(key, result.requeue_after)
