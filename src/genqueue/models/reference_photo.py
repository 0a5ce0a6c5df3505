"""ReferencePhoto entity - Uploaded identity reference image."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from genqueue.core.timezone import utcnow


class ReferencePhoto(SQLModel, table=True):
    """ReferencePhoto points at an image file under the public directory."""

    __tablename__ = "reference_photos"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    name: str = Field(max_length=255)
    image_path: str = Field(max_length=255)  # e.g. "/references/<uuid>.png"
    original_filename: Optional[str] = Field(default=None, max_length=255)
    mime_type: str = Field(default="image/png", max_length=50)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False)
    )
