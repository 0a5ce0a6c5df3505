"""QueueLock repository for the generation queue.

Provides heartbeat-leased mutual exclusion per queue item and the startup
crash-recovery sweep.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from genqueue.core.timezone import utcnow
from genqueue.models.generation import Generation, GenerationStatus
from genqueue.models.queue_item import QueueItem, QueueStatus
from genqueue.models.queue_lock import QueueLock
from genqueue.services.queue_recovery import (
    RecoveryPlan,
    is_lock_stale,
    plan_recovery,
    stale_cutoff,
)

# How often a lock holder renews its heartbeat
HEARTBEAT_INTERVAL_SECONDS = 30


class QueueLockRepository:
    """Repository for QueueLock leases.

    Claiming relies on two atomic primitives that both SQLite and PostgreSQL
    provide: INSERT ... ON CONFLICT DO NOTHING on the unique queue_item_id,
    and a conditional UPDATE keyed on the previously read heartbeat_at
    (compare-and-swap) for stale takeovers.

    Every time-dependent method accepts `now` so tests can pin the clock.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def acquire_lock(self, queue_item_id: str, now: datetime | None = None) -> QueueLock | None:
        """Try to take the lease on a queue item.

        Workflow:
        1. INSERT ... ON CONFLICT (queue_item_id) DO NOTHING
        2. If a row already existed, read it
        3. If its heartbeat is stale, UPDATE ... WHERE heartbeat_at = <value read>
           so that only one of several concurrent takeovers can win

        Args:
            queue_item_id: Queue item to lock
            now: Reference time (defaults to current UTC time)

        Returns:
            The new lock on success, None if the item is held by a live lease
            or another claimer won the race
        """
        now = now or utcnow()
        lock_id = str(uuid4())

        insert = self._dialect_insert()
        stmt = (
            insert(QueueLock.__table__)  # type: ignore[attr-defined]
            .values(id=lock_id, queue_item_id=queue_item_id, locked_at=now, heartbeat_at=now)
            .on_conflict_do_nothing(index_elements=["queue_item_id"])
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 1:  # type: ignore[attr-defined]
            return QueueLock(id=lock_id, queue_item_id=queue_item_id, locked_at=now, heartbeat_at=now)

        existing = await self.get_lock_for_item(queue_item_id)
        if existing is None or not is_lock_stale(existing.heartbeat_at, now):
            return None

        takeover = await self.session.execute(
            update(QueueLock)
            .where(QueueLock.queue_item_id == queue_item_id)  # type: ignore[arg-type]
            .where(QueueLock.heartbeat_at == existing.heartbeat_at)  # type: ignore[arg-type]
            .values(id=lock_id, locked_at=now, heartbeat_at=now)
            .execution_options(synchronize_session=False)
        )
        if takeover.rowcount == 1:  # type: ignore[attr-defined]
            return QueueLock(id=lock_id, queue_item_id=queue_item_id, locked_at=now, heartbeat_at=now)

        return None

    async def get_lock_for_item(self, queue_item_id: str) -> QueueLock | None:
        """Retrieve the lock row for a queue item, stale or not."""
        result = await self.session.execute(
            select(QueueLock)
            .where(QueueLock.queue_item_id == queue_item_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_heartbeat(self, lock_id: str, now: datetime | None = None) -> bool:
        """Renew a lease by bumping heartbeat_at.

        Args:
            lock_id: Lease token returned by acquire_lock()
            now: Reference time (defaults to current UTC time)

        Returns:
            True if the lease still exists, False if it was released or taken over
        """
        result = await self.session.execute(
            update(QueueLock)
            .where(QueueLock.id == lock_id)  # type: ignore[arg-type]
            .values(heartbeat_at=now or utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def release_lock(self, lock_id: str) -> None:
        """Delete a lease by token (idempotent)."""
        await self.session.execute(
            delete(QueueLock)
            .where(QueueLock.id == lock_id)  # type: ignore[arg-type]
            .execution_options(synchronize_session=False)
        )

    async def release_lock_for_item(self, queue_item_id: str) -> None:
        """Delete whatever lease exists on a queue item (idempotent)."""
        await self.session.execute(
            delete(QueueLock)
            .where(QueueLock.queue_item_id == queue_item_id)  # type: ignore[arg-type]
            .execution_options(synchronize_session=False)
        )

    async def is_item_locked(self, queue_item_id: str, now: datetime | None = None) -> bool:
        """Return True if the item has a lease with a fresh heartbeat."""
        cutoff = stale_cutoff(now or utcnow())
        result = await self.session.execute(
            select(func.count())
            .select_from(QueueLock)
            .where(QueueLock.queue_item_id == queue_item_id)  # type: ignore[arg-type]
            .where(QueueLock.heartbeat_at > cutoff)  # type: ignore[arg-type]
        )
        return result.scalar_one() > 0

    async def get_active_lock_count(self, now: datetime | None = None) -> int:
        """Count leases with a fresh heartbeat."""
        cutoff = stale_cutoff(now or utcnow())
        result = await self.session.execute(
            select(func.count()).select_from(QueueLock).where(QueueLock.heartbeat_at > cutoff)  # type: ignore[arg-type]
        )
        return result.scalar_one()

    async def plan_stale_recovery(self, now: datetime | None = None) -> RecoveryPlan:
        """Load processing items and lock rows and compute the recovery plan.

        Does not modify anything; used by reset_stale_processing_items() and
        by the CLI dry run.
        """
        items = await self.session.execute(
            select(QueueItem).where(QueueItem.status == QueueStatus.PROCESSING)  # type: ignore[arg-type]
        )
        locks = await self.session.execute(select(QueueLock))
        return plan_recovery(
            list(items.scalars().all()), list(locks.scalars().all()), now or utcnow()
        )

    async def reset_stale_processing_items(self, now: datetime | None = None) -> int:
        """Put items abandoned by a crashed worker back in the queue.

        Targets processing items whose lock is stale and processing items with
        no lock row at all. Within the caller's transaction:
        - queue item: status -> queued, started_at -> NULL
        - linked generation: generating -> pending
        - stale lock rows: deleted

        Args:
            now: Reference time (defaults to current UTC time)

        Returns:
            Number of queue items reset
        """
        now = now or utcnow()
        plan = await self.plan_stale_recovery(now)
        if plan.is_empty:
            return 0

        reset_count = 0
        if plan.items_to_reset:
            result = await self.session.execute(
                update(QueueItem)
                .where(QueueItem.id.in_(plan.items_to_reset))  # type: ignore[attr-defined]
                .where(QueueItem.status == QueueStatus.PROCESSING)  # type: ignore[arg-type]
                .values(status=QueueStatus.QUEUED, started_at=None)
                .execution_options(synchronize_session=False)
            )
            reset_count = result.rowcount  # type: ignore[attr-defined]

        if plan.generation_ids:
            await self.session.execute(
                update(Generation)
                .where(Generation.id.in_(plan.generation_ids))  # type: ignore[attr-defined]
                .where(Generation.status == GenerationStatus.GENERATING)  # type: ignore[arg-type]
                .values(status=GenerationStatus.PENDING)
                .execution_options(synchronize_session=False)
            )

        if plan.locks_to_delete:
            # Re-check staleness so a heartbeat that landed meanwhile keeps its lease
            await self.session.execute(
                delete(QueueLock)
                .where(QueueLock.queue_item_id.in_(plan.locks_to_delete))  # type: ignore[attr-defined]
                .where(QueueLock.heartbeat_at <= stale_cutoff(now))  # type: ignore[arg-type]
                .execution_options(synchronize_session=False)
            )

        await self.session.flush()
        return reset_count

    async def cleanup_stale_locks(self, now: datetime | None = None) -> int:
        """Delete all stale lock rows without touching queue items.

        Returns:
            Number of lock rows deleted
        """
        result = await self.session.execute(
            delete(QueueLock)
            .where(QueueLock.heartbeat_at <= stale_cutoff(now or utcnow()))  # type: ignore[arg-type]
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # type: ignore[attr-defined]

    def _dialect_insert(self):
        """Return the dialect's insert() supporting ON CONFLICT DO NOTHING."""
        if self.session.get_bind().dialect.name == "sqlite":
            return sqlite.insert
        return postgresql.insert
