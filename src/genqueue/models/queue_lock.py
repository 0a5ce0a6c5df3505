"""QueueLock entity - Heartbeat lease over a single queue item."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from genqueue.core.timezone import utcnow


class QueueLock(SQLModel, table=True):
    """QueueLock is a time-bounded claim of ownership over one queue item.

    At most one row exists per queue item (unique constraint). The row's id is
    the lease token; a stale takeover rewrites it.
    """

    __tablename__ = "queue_locks"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    queue_item_id: str = Field(unique=True, max_length=36)
    locked_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False)
    )
    heartbeat_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False, index=True)
    )
