"""Queue repository for the generation queue.

Provides the durable queue store: enqueueing, FIFO claiming under a global
concurrency cap, status transitions, position accounting, cancellation and
history retention.
"""

from collections.abc import Collection
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from genqueue.core.timezone import utcnow
from genqueue.models.generation import Generation, GenerationStatus
from genqueue.models.queue_item import TERMINAL_QUEUE_STATUSES, QueueItem, QueueStatus
from genqueue.models.queue_lock import QueueLock
from genqueue.services.exceptions import InvalidQueueStateError, QueueItemNotFoundError

# Maximum number of items allowed in 'processing' at once, across all workers
MAX_CONCURRENT = 5

# Number of terminal rows kept by cleanup_queue()
QUEUE_HISTORY_RETENTION = 100

CANCELLED_MESSAGE = "Cancelled by user"


@dataclass
class QueueStatusInfo:
    """Backlog counts plus the 1-based position of one item."""

    active: int
    queued: int
    position: int | None


@dataclass
class QueueItemWithPosition:
    item: QueueItem
    position: int | None


@dataclass
class QueueMetrics:
    total_queued: int
    total_processing: int
    avg_wait_time_seconds: float | None
    success_rate_1h: float | None
    completed_1h: int
    failed_1h: int


@dataclass
class QueueHistoryEntry:
    item: QueueItem
    duration_seconds: float | None
    image_path: str | None


@dataclass
class QueueHistoryPage:
    items: list[QueueHistoryEntry]
    total: int
    page: int
    limit: int


class QueueRepository:
    """Repository for QueueItem entities.

    The cap check in get_next_in_queue() is a plain count-then-select. It does
    not reserve a slot; callers that run several workers coordinate through
    QueueLockRepository.acquire_lock().
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def enqueue(
        self,
        prompt_json: dict,
        generation_id: str | None,
        *,
        reference_photo_ids: list[str] | None = None,
        inline_reference_paths: list[str] | None = None,
        google_search: bool = False,
        safety_override: bool = False,
    ) -> QueueItem:
        """Create a new queued item.

        The prompt payload is stored as-is; it is not validated here.

        Args:
            prompt_json: Structured prompt payload
            generation_id: Linked generation record (optional)
            reference_photo_ids: Ordered reference photo IDs for identity preservation
            inline_reference_paths: Passed through untouched
            google_search: Request search grounding
            safety_override: Request relaxed safety settings

        Returns:
            Persisted queue item with status 'queued'
        """
        item = QueueItem(
            prompt_json=prompt_json,
            generation_id=generation_id,
            status=QueueStatus.QUEUED,
            created_at=utcnow(),
            reference_photo_ids=reference_photo_ids,
            inline_reference_paths=inline_reference_paths,
            google_search=google_search,
            safety_override=safety_override,
        )
        self.session.add(item)
        await self.session.flush()
        return item

    async def get_queue_item(self, item_id: str) -> QueueItem | None:
        """Retrieve queue item by ID.

        Args:
            item_id: Queue item identifier

        Returns:
            QueueItem if found, None otherwise
        """
        result = await self.session.execute(select(QueueItem).where(QueueItem.id == item_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_queue_status(self, item_id: str | None = None) -> QueueStatusInfo:
        """Return backlog counts and, optionally, one item's position.

        Position rules:
        - queued item: number of queued items ahead of it, itself included
          (created_at order, ties broken by enqueue_seq)
        - processing item: 0
        - anything else (terminal, unknown, no item_id): None

        Args:
            item_id: Queue item to locate (optional)

        Returns:
            QueueStatusInfo with active, queued and position
        """
        active = await self._count_by_status(QueueStatus.PROCESSING)
        queued = await self._count_by_status(QueueStatus.QUEUED)

        position = None
        if item_id:
            item = await self.get_queue_item(item_id)
            if item and item.status == QueueStatus.QUEUED:
                result = await self.session.execute(
                    select(func.count())
                    .select_from(QueueItem)
                    .where(QueueItem.status == QueueStatus.QUEUED)  # type: ignore[arg-type]
                    .where(
                        or_(
                            QueueItem.created_at < item.created_at,  # type: ignore[arg-type]
                            and_(
                                QueueItem.created_at == item.created_at,  # type: ignore[arg-type]
                                QueueItem.enqueue_seq <= item.enqueue_seq,  # type: ignore[arg-type]
                            ),
                        )
                    )
                )
                position = result.scalar_one()
            elif item and item.status == QueueStatus.PROCESSING:
                position = 0

        return QueueStatusInfo(active=active, queued=queued, position=position)

    async def get_next_in_queue(self, exclude_ids: Collection[str] = ()) -> QueueItem | None:
        """Retrieve the oldest queued item if the concurrency cap allows it.

        Query explanation:
        - COUNT(status = 'processing') >= MAX_CONCURRENT: backpressure, return None
        - WHERE status = 'queued' ORDER BY created_at, enqueue_seq LIMIT 1: FIFO

        Args:
            exclude_ids: Queued items to pass over (e.g. held by another lease)

        Returns:
            Oldest queued item, or None if the queue is empty or the cap is reached
        """
        active = await self._count_by_status(QueueStatus.PROCESSING)
        if active >= MAX_CONCURRENT:
            return None

        query = (
            select(QueueItem)
            .where(QueueItem.status == QueueStatus.QUEUED)  # type: ignore[arg-type]
            .order_by(QueueItem.created_at.asc(), QueueItem.enqueue_seq.asc())  # type: ignore[attr-defined]
            .limit(1)
        )
        if exclude_ids:
            query = query.where(QueueItem.id.not_in(list(exclude_ids)))  # type: ignore[attr-defined]

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def update_queue_status(
        self,
        item_id: str,
        status: QueueStatus,
        *,
        started_at: bool = False,
        completed_at: bool = False,
    ) -> QueueItem | None:
        """Move an item forward in its lifecycle and stamp timestamps.

        Args:
            item_id: Queue item identifier
            status: Target status
            started_at: Stamp started_at with the current time
            completed_at: Stamp completed_at with the current time

        Returns:
            Updated item, or None if the item no longer exists (cancelled)

        Raises:
            InvalidStateTransition: If the transition is not forward
        """
        item = await self.get_queue_item(item_id)
        if item is None:
            return None

        item.transition_to(status)
        now = utcnow()
        if started_at:
            item.started_at = now
        if completed_at:
            item.completed_at = now

        self.session.add(item)
        await self.session.flush()
        return item

    async def delete_queue_item(self, item_id: str) -> None:
        """Cancel a queue item.

        Within the caller's transaction:
        1. Release any lock on the item
        2. Fail the linked generation if it is still pending/generating
        3. Delete the queue row (cancelled items do not become failed rows)

        Args:
            item_id: Queue item identifier

        Raises:
            QueueItemNotFoundError: If the item does not exist
            InvalidQueueStateError: If the item is already completed or failed
        """
        item = await self.get_queue_item(item_id)
        if item is None:
            raise QueueItemNotFoundError(f"Queue item {item_id} not found")
        if item.is_terminal:
            raise InvalidQueueStateError(
                f"Cannot cancel queue item in {item.status.value} state"
            )

        await self.session.execute(
            delete(QueueLock)
            .where(QueueLock.queue_item_id == item_id)  # type: ignore[arg-type]
            .execution_options(synchronize_session=False)
        )

        if item.generation_id:
            await self.session.execute(
                update(Generation)
                .where(Generation.id == item.generation_id)  # type: ignore[arg-type]
                .where(
                    Generation.status.in_(  # type: ignore[attr-defined]
                        [GenerationStatus.PENDING, GenerationStatus.GENERATING]
                    )
                )
                .values(
                    status=GenerationStatus.FAILED,
                    error_message=CANCELLED_MESSAGE,
                    completed_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )

        await self.session.delete(item)
        await self.session.flush()

    async def cleanup_queue(self) -> int:
        """Delete terminal rows beyond the most recent QUEUE_HISTORY_RETENTION.

        Returns:
            Number of rows deleted
        """
        keep = (
            select(QueueItem.id)
            .where(QueueItem.status.in_(TERMINAL_QUEUE_STATUSES))  # type: ignore[attr-defined]
            .order_by(QueueItem.completed_at.desc())  # type: ignore[union-attr]
            .limit(QUEUE_HISTORY_RETENTION)
        )
        result = await self.session.execute(
            delete(QueueItem)
            .where(QueueItem.status.in_(TERMINAL_QUEUE_STATUSES))  # type: ignore[attr-defined]
            .where(QueueItem.id.not_in(keep))  # type: ignore[attr-defined]
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount  # type: ignore[attr-defined]

    async def get_active_items(self) -> list[QueueItemWithPosition]:
        """Retrieve processing and queued items for the queue dashboard.

        Processing items come first, then queued items oldest first. Queued
        items carry their position; processing items carry None.
        """
        result = await self.session.execute(
            select(QueueItem)
            .where(
                QueueItem.status.in_([QueueStatus.QUEUED, QueueStatus.PROCESSING])  # type: ignore[attr-defined]
            )
            .order_by(
                case((QueueItem.status == QueueStatus.PROCESSING, 0), else_=1),  # type: ignore[arg-type]
                QueueItem.created_at.asc(),  # type: ignore[attr-defined]
                QueueItem.enqueue_seq.asc(),  # type: ignore[attr-defined]
            )
        )

        entries = []
        position = 0
        for item in result.scalars().all():
            if item.status == QueueStatus.QUEUED:
                position += 1
                entries.append(QueueItemWithPosition(item=item, position=position))
            else:
                entries.append(QueueItemWithPosition(item=item, position=None))
        return entries

    async def get_metrics(self, now: datetime | None = None) -> QueueMetrics:
        """Compute backlog and last-hour throughput metrics.

        Args:
            now: Reference time (defaults to current UTC time)
        """
        now = now or utcnow()
        hour_ago = now - timedelta(hours=1)

        total_queued = await self._count_by_status(QueueStatus.QUEUED)
        total_processing = await self._count_by_status(QueueStatus.PROCESSING)

        waits = await self.session.execute(
            select(QueueItem.created_at, QueueItem.started_at)
            .where(QueueItem.started_at.is_not(None))  # type: ignore[union-attr]
            .where(QueueItem.created_at >= hour_ago)  # type: ignore[arg-type]
        )
        wait_seconds = [(started - created).total_seconds() for created, started in waits.all()]
        avg_wait = sum(wait_seconds) / len(wait_seconds) if wait_seconds else None

        outcomes = await self.session.execute(
            select(QueueItem.status, func.count())
            .where(QueueItem.status.in_(TERMINAL_QUEUE_STATUSES))  # type: ignore[attr-defined]
            .where(QueueItem.completed_at >= hour_ago)  # type: ignore[operator]
            .group_by(QueueItem.status)
        )
        counts = {status: count for status, count in outcomes.all()}
        completed = counts.get(QueueStatus.COMPLETED, 0)
        failed = counts.get(QueueStatus.FAILED, 0)
        total = completed + failed

        return QueueMetrics(
            total_queued=total_queued,
            total_processing=total_processing,
            avg_wait_time_seconds=avg_wait,
            success_rate_1h=(completed / total) * 100 if total else None,
            completed_1h=completed,
            failed_1h=failed,
        )

    async def get_history(
        self, page: int = 1, limit: int = 20, status_filter: str = "all"
    ) -> QueueHistoryPage:
        """Retrieve terminal items, most recently completed first.

        Args:
            page: 1-based page number
            limit: Page size
            status_filter: "completed", "failed" or "all"

        Returns:
            QueueHistoryPage with duration and linked image path per item
        """
        if status_filter == "completed":
            statuses: tuple = (QueueStatus.COMPLETED,)
        elif status_filter == "failed":
            statuses = (QueueStatus.FAILED,)
        else:
            statuses = TERMINAL_QUEUE_STATUSES

        page = max(page, 1)
        total_result = await self.session.execute(
            select(func.count())
            .select_from(QueueItem)
            .where(QueueItem.status.in_(statuses))  # type: ignore[attr-defined]
        )
        total = total_result.scalar_one()

        result = await self.session.execute(
            select(QueueItem, Generation.image_path)
            .outerjoin(Generation, QueueItem.generation_id == Generation.id)  # type: ignore[arg-type]
            .where(QueueItem.status.in_(statuses))  # type: ignore[attr-defined]
            .order_by(QueueItem.completed_at.desc())  # type: ignore[union-attr]
            .offset((page - 1) * limit)
            .limit(limit)
        )

        entries = []
        for item, image_path in result.all():
            duration = None
            if item.completed_at is not None and item.created_at is not None:
                duration = (item.completed_at - item.created_at).total_seconds()
            entries.append(
                QueueHistoryEntry(item=item, duration_seconds=duration, image_path=image_path)
            )

        return QueueHistoryPage(items=entries, total=total, page=page, limit=limit)

    async def _count_by_status(self, status: QueueStatus) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(QueueItem).where(QueueItem.status == status)  # type: ignore[arg-type]
        )
        return result.scalar_one()
