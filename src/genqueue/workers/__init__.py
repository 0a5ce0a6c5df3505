"""Background workers for queue processing."""

from genqueue.workers.generation_processor import process_queue, process_queue_item
from genqueue.workers.queue_worker import POLL_INTERVAL_SECONDS, QueueWorker

__all__ = [
    "QueueWorker",
    "POLL_INTERVAL_SECONDS",
    "process_queue",
    "process_queue_item",
]
