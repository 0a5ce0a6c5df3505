"""Crash-recovery planning for the generation queue.

Pure functions over (queue rows, lock rows, current time). The lock repository
loads the rows and applies the resulting plan in one transaction; keeping the
decision here lets it be tested without a database or a real clock.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from genqueue.models.queue_item import QueueItem, QueueStatus
from genqueue.models.queue_lock import QueueLock

# A lease whose heartbeat is older than this is considered abandoned
LOCK_TIMEOUT = timedelta(minutes=5)


@dataclass(frozen=True)
class RecoveryPlan:
    """What the recovery sweep will change.

    Attributes:
        items_to_reset: Processing queue items to move back to queued
        generation_ids: Generations linked to those items (reset if generating)
        locks_to_delete: Queue item IDs whose stale lock rows are removed
        orphaned_item_ids: Subset of items_to_reset that had no lock row at all
    """

    items_to_reset: list[str] = field(default_factory=list)
    generation_ids: list[str] = field(default_factory=list)
    locks_to_delete: list[str] = field(default_factory=list)
    orphaned_item_ids: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.items_to_reset and not self.locks_to_delete


def stale_cutoff(now: datetime, timeout: timedelta = LOCK_TIMEOUT) -> datetime:
    """Return the heartbeat time at or before which a lock is stale."""
    return now - timeout


def is_lock_stale(heartbeat_at: datetime, now: datetime, timeout: timedelta = LOCK_TIMEOUT) -> bool:
    return heartbeat_at <= stale_cutoff(now, timeout)


def plan_recovery(
    processing_items: Iterable[QueueItem],
    locks: Iterable[QueueLock],
    now: datetime,
    timeout: timedelta = LOCK_TIMEOUT,
) -> RecoveryPlan:
    """Decide which items and locks the startup sweep resets.

    An item is reset when its status is processing and either its lock is
    stale or it has no lock row at all (the process died before locking it).
    Every stale lock row is deleted, whatever its item's status.

    Args:
        processing_items: Queue items (only those in processing are considered)
        locks: All lock rows
        now: Reference time
        timeout: Lease timeout

    Returns:
        RecoveryPlan describing the changes
    """
    locks = list(locks)
    locked_item_ids = {lock.queue_item_id for lock in locks}
    stale_item_ids = {
        lock.queue_item_id for lock in locks if is_lock_stale(lock.heartbeat_at, now, timeout)
    }

    items_to_reset = []
    generation_ids = []
    orphaned = []
    for item in processing_items:
        if item.status != QueueStatus.PROCESSING:
            continue
        if item.id not in locked_item_ids:
            orphaned.append(item.id)
        elif item.id not in stale_item_ids:
            continue
        items_to_reset.append(item.id)
        if item.generation_id:
            generation_ids.append(item.generation_id)

    return RecoveryPlan(
        items_to_reset=items_to_reset,
        generation_ids=generation_ids,
        locks_to_delete=sorted(stale_item_ids),
        orphaned_item_ids=orphaned,
    )
