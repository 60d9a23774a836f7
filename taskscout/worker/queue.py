"""Bounded in-process work queue.

Request handlers hand slow work (research runs, webhook-triggered syncs)
to a fixed pool of asyncio workers and return immediately. When the queue
is full ``enqueue`` returns False instead of blocking the caller; the
periodic sync sweep picks up anything that was dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger().bind(component="worker.queue")

JobFactory = Callable[[], Awaitable[object]]


@dataclass
class _Job:
    name: str
    factory: JobFactory


class WorkQueue:
    def __init__(self, maxsize: int = 100, workers: int = 2) -> None:
        self._queue: asyncio.Queue[_Job] = asyncio.Queue(maxsize=maxsize)
        self._worker_count = max(1, workers)
        self._workers: list[asyncio.Task] = []
        self.processed = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, name: str, factory: JobFactory) -> bool:
        """Schedule ``factory()`` on a worker. False when the queue is full."""
        try:
            self._queue.put_nowait(_Job(name, factory))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("work_queue_full", job=name, size=self._queue.maxsize)
            return False
        logger.debug("job_enqueued", job=name, pending=self._queue.qsize())
        return True

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await job.factory()
                self.processed += 1
            except Exception as exc:
                self.failed += 1
                logger.error("job_failed", job=job.name, worker=index, error=str(exc), exc_info=True)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"taskscout-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("work_queue_started", workers=self._worker_count)

    async def join(self) -> None:
        """Wait until every enqueued job has finished."""
        await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        if drain and self._workers:
            await self.join()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("work_queue_stopped", processed=self.processed, failed=self.failed)
