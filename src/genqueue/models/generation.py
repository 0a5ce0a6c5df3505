"""Generation entity - Outcome record for one image generation request."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Text
from sqlmodel import Field, SQLModel

from genqueue.core.timezone import utcnow


class GenerationStatus(str, Enum):
    """Generation lifecycle status."""

    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class Generation(SQLModel, table=True):
    """Generation carries the user-visible result of a queued request.

    The queue row only tracks scheduling; image paths, fallback flags and
    error details live here.
    """

    __tablename__ = "generations"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    prompt_json: dict = Field(sa_column=Column(JSON, nullable=False))
    status: GenerationStatus = Field(default=GenerationStatus.PENDING, index=True)
    image_path: Optional[str] = Field(default=None, max_length=255)
    pre_swap_image_path: Optional[str] = Field(default=None, max_length=255)
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text))
    api_response_text: Optional[str] = Field(default=None, sa_column=Column(Text))
    used_fallback: bool = Field(default=False)
    face_swap_failed: bool = Field(default=False)
    reference_photo_ids: Optional[list] = Field(default=None, sa_column=Column(JSON))
    components_used: Optional[list] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False, index=True)
    )
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime))
