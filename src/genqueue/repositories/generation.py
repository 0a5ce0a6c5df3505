"""Generation repository for the generation queue.

Provides data access methods for Generation outcome records.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from genqueue.core.timezone import utcnow
from genqueue.models.generation import Generation, GenerationStatus


class GenerationRepository:
    """Repository for Generation entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def create(
        self,
        prompt_json: dict,
        reference_photo_ids: list[str] | None = None,
        components_used: list[dict] | None = None,
    ) -> Generation:
        """Persist a new pending generation.

        Args:
            prompt_json: Prompt payload the generation was requested with
            reference_photo_ids: Reference photos requested for identity preservation
            components_used: Prompt-builder components, used for tagging

        Returns:
            Persisted generation with status 'pending'
        """
        generation = Generation(
            prompt_json=prompt_json,
            status=GenerationStatus.PENDING,
            reference_photo_ids=reference_photo_ids,
            components_used=components_used,
        )
        self.session.add(generation)
        await self.session.flush()
        return generation

    async def get(self, generation_id: str) -> Generation | None:
        """Retrieve generation by ID.

        Args:
            generation_id: Generation identifier

        Returns:
            Generation if found, None otherwise
        """
        result = await self.session.execute(
            select(Generation)
            .where(Generation.id == generation_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update(
        self,
        generation_id: str,
        *,
        status: GenerationStatus | None = None,
        image_path: str | None = None,
        pre_swap_image_path: str | None = None,
        error_message: str | None = None,
        api_response_text: str | None = None,
        used_fallback: bool | None = None,
        face_swap_failed: bool | None = None,
        completed_at: bool = False,
    ) -> Generation | None:
        """Apply a partial update; arguments left as None are not touched.

        Args:
            generation_id: Generation identifier
            completed_at: Stamp completed_at with the current time

        Returns:
            Updated generation, or None if it does not exist
        """
        generation = await self.get(generation_id)
        if generation is None:
            return None

        if status is not None:
            generation.status = status
        if image_path is not None:
            generation.image_path = image_path
        if pre_swap_image_path is not None:
            generation.pre_swap_image_path = pre_swap_image_path
        if error_message is not None:
            generation.error_message = error_message
        if api_response_text is not None:
            generation.api_response_text = api_response_text
        if used_fallback is not None:
            generation.used_fallback = used_fallback
        if face_swap_failed is not None:
            generation.face_swap_failed = face_swap_failed
        if completed_at:
            generation.completed_at = utcnow()

        self.session.add(generation)
        await self.session.flush()
        return generation
