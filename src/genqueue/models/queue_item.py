"""QueueItem entity - One enqueued unit of generation work."""

import time
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, BigInteger, Column, DateTime
from sqlmodel import Field, SQLModel

from genqueue.core.timezone import utcnow


class QueueStatus(str, Enum):
    """Queue item lifecycle status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_QUEUE_STATUSES = (QueueStatus.COMPLETED, QueueStatus.FAILED)

_FORWARD_TRANSITIONS = {
    QueueStatus.QUEUED: {QueueStatus.PROCESSING},
    QueueStatus.PROCESSING: {QueueStatus.COMPLETED, QueueStatus.FAILED},
    QueueStatus.COMPLETED: set(),
    QueueStatus.FAILED: set(),
}


_last_enqueue_seq = 0


def next_enqueue_seq() -> int:
    """Insertion order tiebreaker for rows that share a created_at.

    Strictly increasing within a process; nanosecond wall clock across
    processes.
    """
    global _last_enqueue_seq
    _last_enqueue_seq = max(time.time_ns(), _last_enqueue_seq + 1)
    return _last_enqueue_seq


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid queue item state transition."""

    pass


class QueueItem(SQLModel, table=True):
    """QueueItem is one persisted generation request with its own lifecycle.

    The prompt payload is opaque to the queue; it is handed to the generation
    service untouched.
    """

    __tablename__ = "generation_queue"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    prompt_json: dict = Field(sa_column=Column(JSON, nullable=False))
    generation_id: Optional[str] = Field(
        default=None, foreign_key="generations.id", index=True, max_length=36
    )
    status: QueueStatus = Field(default=QueueStatus.QUEUED, index=True)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False, index=True)
    )
    enqueue_seq: int = Field(
        default_factory=next_enqueue_seq,
        sa_column=Column(BigInteger, nullable=False, index=True),
    )
    started_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))

    # Request options, passed through to the pipeline
    reference_photo_ids: Optional[list] = Field(default=None, sa_column=Column(JSON))
    inline_reference_paths: Optional[list] = Field(default=None, sa_column=Column(JSON))
    google_search: bool = Field(default=False)
    safety_override: bool = Field(default=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_QUEUE_STATUSES

    def transition_to(self, status: QueueStatus) -> None:
        """Move forward along queued -> processing -> {completed, failed}.

        Args:
            status: Target status

        Raises:
            InvalidStateTransition: If the move is backwards, repeats the
                current status, or leaves a terminal state
        """
        if status not in _FORWARD_TRANSITIONS[self.status]:
            raise InvalidStateTransition(
                f"Cannot move queue item from {self.status.value} to {status.value}."
            )
        self.status = status
