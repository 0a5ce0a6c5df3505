"""Queue worker: startup recovery plus periodic and event-driven drains.

One QueueWorker per process. Drains are single-flight per instance; the
generation pipeline itself is in workers.generation_processor.
"""

import asyncio
from typing import Callable

import structlog

from genqueue.core.config import Settings
from genqueue.services.image_generation.fallback import ImageGenerationClient
from genqueue.services.image_storage import ImageStorage
from genqueue.workers.generation_processor import process_queue

logger = structlog.get_logger(__name__)

# Safety-net poll in addition to the trigger fired on enqueue
POLL_INTERVAL_SECONDS = 10


class QueueWorker:
    """Per-process queue scheduler.

    Example:
        worker = QueueWorker(uow_factory, client, storage, settings)
        await worker.start()
        ...
        worker.trigger()  # after enqueueing
        ...
        await worker.stop()
    """

    def __init__(
        self,
        uow_factory: Callable,
        client: ImageGenerationClient,
        storage: ImageStorage,
        settings: Settings,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ):
        self.uow_factory = uow_factory
        self.client = client
        self.storage = storage
        self.settings = settings
        self.poll_interval = poll_interval

        self._drain_lock = asyncio.Lock()
        self._poll_task: asyncio.Task | None = None
        self._triggered: set[asyncio.Task] = set()
        self._started = False
        self._recovered = False

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self) -> None:
        """Begin polling; the recovery sweep runs on the first start only.

        Calling start() while already running is a no-op. A start() after
        stop() resumes polling without sweeping again.
        """
        if self._started:
            return
        self._started = True

        logger.info("queue_worker.starting", poll_interval=self.poll_interval)
        if not self._recovered:
            self._recovered = True
            await self.recover()
        self._poll_task = asyncio.create_task(self._poll_loop(), name="queue-worker-poll")

    async def recover(self) -> None:
        """Reset items abandoned by a crashed worker and drop stale locks.

        Failures are logged; the worker starts regardless.
        """
        try:
            async with await self.uow_factory() as uow:
                reset_count = await uow.locks.reset_stale_processing_items()
                stale_locks = await uow.locks.cleanup_stale_locks()
        except Exception as e:
            logger.error(
                "queue_worker.recovery_failed",
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )
            return

        logger.info("queue_worker.recovery", items_reset=reset_count, stale_locks_removed=stale_locks)

    async def run_processing_cycle(self) -> bool:
        """Drain the queue unless a drain is already running.

        Returns:
            False if skipped because another drain was in progress, True otherwise
        """
        if self._drain_lock.locked():
            logger.debug("queue_worker.cycle_skipped")
            return False

        async with self._drain_lock:
            try:
                await process_queue(self.uow_factory, self.client, self.storage, self.settings)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "queue_worker.cycle_failed",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
        return True

    def trigger(self) -> None:
        """Schedule a drain in the background (used right after enqueueing)."""
        task = asyncio.create_task(self.run_processing_cycle())
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)

    async def stop(self) -> None:
        """Cancel polling and any triggered drains and wait for them to finish."""
        tasks = list(self._triggered)
        if self._poll_task is not None:
            tasks.append(self._poll_task)

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._poll_task = None
        self._started = False
        logger.info("queue_worker.stopped")

    async def _poll_loop(self) -> None:
        while True:
            await self.run_processing_cycle()
            await asyncio.sleep(self.poll_interval)
