"""GenerationTag entity - Searchable tag derived from a completed generation."""

from typing import Optional

from sqlmodel import Field, SQLModel


class GenerationTag(SQLModel, table=True):
    """GenerationTag stores one `prefix:value` tag for a generation."""

    __tablename__ = "generation_tags"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    generation_id: str = Field(foreign_key="generations.id", index=True, max_length=36)
    tag: str = Field(max_length=100, index=True)
    category: Optional[str] = Field(default=None, max_length=50)
