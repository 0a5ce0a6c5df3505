"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from genqueue.models.generation import Generation, GenerationStatus
from genqueue.models.generation_tag import GenerationTag
from genqueue.models.queue_item import InvalidStateTransition, QueueItem, QueueStatus
from genqueue.models.queue_lock import QueueLock
from genqueue.models.reference_photo import ReferencePhoto

__all__ = [
    "Generation",
    "GenerationStatus",
    "GenerationTag",
    "QueueItem",
    "QueueStatus",
    "InvalidStateTransition",
    "QueueLock",
    "ReferencePhoto",
]
