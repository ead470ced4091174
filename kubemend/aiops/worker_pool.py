"""
Bounded action queue drained by a fixed pool of long-lived workers.

The queue capacity is the only backpressure in the engine: submission never
blocks, it either enqueues or reports the queue as full. The number of
workers bounds how many actions execute at once regardless of queue depth.
"""

import asyncio
from typing import Awaitable, Callable

import structlog

from kubemend.aiops.models import RemediationAction

logger = structlog.get_logger()


class ActionWorkerPool:
    """
    Usage:
        pool = ActionWorkerPool(executor.execute, workers=5, queue_size=100)
        pool.start()
        pool.try_submit(action)
        ...
        await pool.stop()
    """

    def __init__(
        self,
        handler: Callable[[RemediationAction], Awaitable[None]],
        workers: int = 5,
        queue_size: int = 100,
    ) -> None:
        self._handler = handler
        self._size = workers
        self._queue: asyncio.Queue[RemediationAction] = asyncio.Queue(maxsize=queue_size)
        self._workers: list[asyncio.Task] = []
        self._busy: set[asyncio.Task] = set()
        # Actions waiting in the queue or running on a worker
        self._tracked: set[str] = set()
        self._stopping = False

    @property
    def is_running(self) -> bool:
        return bool(self._workers) and not self._stopping

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    @property
    def active(self) -> int:
        return len(self._busy)

    def start(self) -> None:
        """Spawn the worker tasks; must be called from a running event loop."""
        if self.is_running:
            return
        self._stopping = False
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"remediation-worker-{i}")
            for i in range(self._size)
        ]
        logger.info("worker_pool_started", workers=self._size, queue_size=self._queue.maxsize)

    def try_submit(self, action: RemediationAction) -> bool:
        """Enqueue without blocking; False if the queue is full or the pool stopped."""
        if self._stopping:
            logger.warning("worker_pool_stopped_rejecting", action_id=action.id)
            return False
        try:
            self._queue.put_nowait(action)
        except asyncio.QueueFull:
            return False
        self._tracked.add(action.id)
        logger.debug("action_enqueued", action_id=action.id, depth=self._queue.qsize())
        return True

    def is_tracked(self, action_id: str) -> bool:
        return action_id in self._tracked

    async def join(self) -> None:
        """Wait until every submitted action has been handled."""
        await self._queue.join()

    async def stop(self, drain: bool = False) -> None:
        """
        Stop taking work. Idle workers exit at once; busy workers finish the
        action in hand and then exit. With ``drain`` wait for them to do so.
        """
        self._stopping = True
        for task in self._workers:
            if task not in self._busy and not task.done():
                task.cancel()
        if drain:
            await asyncio.gather(*self._workers, return_exceptions=True)
        logger.info("worker_pool_stopped", in_flight=len(self._busy), left_in_queue=self._queue.qsize())

    async def _worker(self, index: int) -> None:
        task = asyncio.current_task()
        while not self._stopping:
            action = await self._queue.get()
            self._busy.add(task)
            try:
                await self._handler(action)
            except Exception as e:
                logger.error("action_worker_error", worker=index, action_id=action.id, error=str(e))
            finally:
                self._busy.discard(task)
                self._tracked.discard(action.id)
                self._queue.task_done()
