"""Repository layer for the generation queue.

Provides data access abstractions for all domain entities.
Each repository is self-contained and bound to one session.
"""

from genqueue.repositories.generation import GenerationRepository
from genqueue.repositories.queue import QueueRepository
from genqueue.repositories.queue_lock import QueueLockRepository
from genqueue.repositories.reference import ReferenceRepository
from genqueue.repositories.tag import TagRepository

__all__ = [
    "QueueRepository",
    "QueueLockRepository",
    "GenerationRepository",
    "ReferenceRepository",
    "TagRepository",
]
