"""create_queue_tables

Revision ID: 3b9e51c2d7a4
Revises:
Create Date: 2026-10-18 09:12:41.203318

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b9e51c2d7a4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names
generation_status = sa.Enum("PENDING", "GENERATING", "COMPLETED", "FAILED", name="generationstatus")
queue_status = sa.Enum("QUEUED", "PROCESSING", "COMPLETED", "FAILED", name="queuestatus")


def upgrade() -> None:
    """Create generations, reference photos, tags, queue and lock tables."""
    op.create_table(
        "generations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("prompt_json", sa.JSON(), nullable=False),
        sa.Column("status", generation_status, nullable=False),
        sa.Column("image_path", sa.String(length=255), nullable=True),
        sa.Column("pre_swap_image_path", sa.String(length=255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("api_response_text", sa.Text(), nullable=True),
        sa.Column("used_fallback", sa.Boolean(), nullable=False),
        sa.Column("face_swap_failed", sa.Boolean(), nullable=False),
        sa.Column("reference_photo_ids", sa.JSON(), nullable=True),
        sa.Column("components_used", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generations_status", "generations", ["status"])
    op.create_index("ix_generations_created_at", "generations", ["created_at"])

    op.create_table(
        "reference_photos",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("image_path", sa.String(length=255), nullable=False),
        sa.Column("original_filename", sa.String(length=255), nullable=True),
        sa.Column("mime_type", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "generation_tags",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("generation_id", sa.String(length=36), nullable=False),
        sa.Column("tag", sa.String(length=100), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=True),
        sa.ForeignKeyConstraint(["generation_id"], ["generations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_tags_generation_id", "generation_tags", ["generation_id"])
    op.create_index("ix_generation_tags_tag", "generation_tags", ["tag"])

    op.create_table(
        "generation_queue",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("prompt_json", sa.JSON(), nullable=False),
        sa.Column("generation_id", sa.String(length=36), nullable=True),
        sa.Column("status", queue_status, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("enqueue_seq", sa.BigInteger(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("reference_photo_ids", sa.JSON(), nullable=True),
        sa.Column("inline_reference_paths", sa.JSON(), nullable=True),
        sa.Column("google_search", sa.Boolean(), nullable=False),
        sa.Column("safety_override", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["generation_id"], ["generations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_queue_generation_id", "generation_queue", ["generation_id"])
    op.create_index("ix_generation_queue_status", "generation_queue", ["status"])
    op.create_index("ix_generation_queue_created_at", "generation_queue", ["created_at"])
    op.create_index("ix_generation_queue_enqueue_seq", "generation_queue", ["enqueue_seq"])

    op.create_table(
        "queue_locks",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("queue_item_id", sa.String(length=36), nullable=False),
        sa.Column("locked_at", sa.DateTime(), nullable=False),
        sa.Column("heartbeat_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("queue_item_id"),
    )
    op.create_index("ix_queue_locks_heartbeat_at", "queue_locks", ["heartbeat_at"])


def downgrade() -> None:
    """Drop all queue tables."""
    op.drop_index("ix_queue_locks_heartbeat_at", table_name="queue_locks")
    op.drop_table("queue_locks")
    op.drop_index("ix_generation_queue_enqueue_seq", table_name="generation_queue")
    op.drop_index("ix_generation_queue_created_at", table_name="generation_queue")
    op.drop_index("ix_generation_queue_status", table_name="generation_queue")
    op.drop_index("ix_generation_queue_generation_id", table_name="generation_queue")
    op.drop_table("generation_queue")
    op.drop_index("ix_generation_tags_tag", table_name="generation_tags")
    op.drop_index("ix_generation_tags_generation_id", table_name="generation_tags")
    op.drop_table("generation_tags")
    op.drop_table("reference_photos")
    op.drop_index("ix_generations_created_at", table_name="generations")
    op.drop_index("ix_generations_status", table_name="generations")
    op.drop_table("generations")
    generation_status.drop(op.get_bind(), checkfirst=True)
    queue_status.drop(op.get_bind(), checkfirst=True)
