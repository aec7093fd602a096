"""
Bounded background task runner.

A fixed set of asyncio worker tasks drains a bounded queue. Work is submitted
as a coroutine factory so nothing starts until a worker picks it up. Task
failures are logged here and never reach the submitter.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from familyos.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CoroFactory = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class _Job:
    name: str
    factory: CoroFactory
    enqueued_at: float


class BackgroundTaskRunner:
    def __init__(self, workers: int = 4, queue_size: int = 100, drain_timeout: float = 10.0):
        self.worker_count = workers
        self.queue_size = queue_size
        self.drain_timeout = drain_timeout
        self._queue: asyncio.Queue[_Job] | None = None
        self._workers: list[asyncio.Task] = []
        self._running = False
        self.completed = 0
        self.failed = 0
        self.rejected = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Background runner already started")
            return

        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"background-worker-{i}")
            for i in range(self.worker_count)
        ]
        self._running = True
        logger.info(
            "Background runner started", workers=self.worker_count, queue_size=self.queue_size
        )

    async def stop(self) -> None:
        """Let queued work finish (bounded by drain_timeout), then cancel workers."""
        if not self._running:
            return

        self._running = False
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self.drain_timeout)
        except TimeoutError:
            logger.warning(
                "Background runner drain timed out, cancelling remaining work",
                pending=self._queue.qsize(),
            )

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        logger.info(
            "Background runner stopped",
            completed=self.completed,
            failed=self.failed,
            rejected=self.rejected,
        )

    def submit(self, name: str, factory: CoroFactory) -> bool:
        """
        Enqueue work without waiting.

        Returns False when the runner is stopped or the queue is full; the
        caller is never blocked.
        """
        if not self._running or self._queue is None:
            self.rejected += 1
            logger.warning("Background task rejected, runner not running", task=name)
            return False

        try:
            self._queue.put_nowait(_Job(name=name, factory=factory, enqueued_at=time.monotonic()))
        except asyncio.QueueFull:
            self.rejected += 1
            logger.warning("Background queue full, task dropped", task=name, queue_size=self.queue_size)
            return False

        return True

    async def join(self) -> None:
        """Wait until everything queued so far has been processed."""
        if self._queue is not None:
            await self._queue.join()

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "workers": len(self._workers),
            "queued": self._queue.qsize() if self._queue else 0,
            "completed": self.completed,
            "failed": self.failed,
            "rejected": self.rejected,
        }

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            started = time.monotonic()
            try:
                await job.factory()
                self.completed += 1
                logger.debug(
                    "Background task completed",
                    task=job.name,
                    worker=index,
                    queued_ms=round((started - job.enqueued_at) * 1000, 1),
                    duration_ms=round((time.monotonic() - started) * 1000, 1),
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error(
                    "Background task failed",
                    task=job.name,
                    worker=index,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._queue.task_done()
